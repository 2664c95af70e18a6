from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int


class ErrorOut(BaseModel):
    detail: str
    code: str
