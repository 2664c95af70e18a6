from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from assessment_engine.core.config import settings


class TokenDecodeError(Exception):
    pass


def create_access_token(subject: str, roles: list[str] | None = None) -> str:
    data: dict[str, Any] = {
        'sub': subject,
        'roles': list(roles or []),
        'token_type': 'access',
        'exp': datetime.now(UTC) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(data, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise TokenDecodeError('Invalid access token') from exc

    if payload.get('token_type') != 'access':
        raise TokenDecodeError('Unexpected token type for access token')
    return payload
