"""Base Pydantic schemas with CamelCase conversion."""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from humps import camelize


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    return camelize(string)


class CamelModel(BaseModel):
    """
    Base model that converts snake_case fields to camelCase in JSON.

    Usage:
        class TemplateResponse(CamelModel):
            procedure_id: str   # JSON: procedureId
            designer_state: dict  # JSON: designerState
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


T = TypeVar("T")


class PaginationMeta(CamelModel):
    """Pagination metadata."""

    page: int
    limit: int
    total: int
    total_pages: int


class PaginatedResponse(CamelModel, Generic[T]):
    """Generic paginated response wrapper."""

    data: list[T]
    meta: PaginationMeta


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class ErrorDetail(CamelModel):
    """Error detail for API error responses."""

    code: str
    message: str
    category: Optional[str] = None
    details: Any = None


class ErrorResponse(CamelModel):
    """Standard error response format."""

    error: ErrorDetail
