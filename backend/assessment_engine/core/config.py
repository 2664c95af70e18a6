from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore',
    )

    DATABASE_URL: str
    JWT_SECRET_KEY: str
    APP_ENV: str = 'development'
    CORS_ORIGINS: str = 'http://localhost:3001'
    LOG_LEVEL: str = 'INFO'

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    JWT_ALGORITHM: str = 'HS256'

    ATTEMPT_SWEEP_BATCH_SIZE: int = 200
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        if not value.startswith(('postgresql', 'sqlite')):
            raise ValueError('DATABASE_URL must point to PostgreSQL (or SQLite for tests)')
        return value

    @field_validator('JWT_SECRET_KEY')
    @classmethod
    def validate_jwt_secret_strength(cls, value: str) -> str:
        if len(value) < 32:
            raise ValueError('JWT secrets must be at least 32 characters')
        return value

    @field_validator('LOG_LEVEL')
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.CORS_ORIGINS.split(',') if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
