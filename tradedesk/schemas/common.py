from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApiEnvelope(ApiModel, Generic[T]):
    """Standard `{success, message, data, errors}` response wrapper."""

    success: bool = False
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[list[str]] = None
    correlation_id: Optional[str] = None


class Pagination(ApiModel):
    page: int = 1
    limit: int = Field(default=20, ge=1)
    total: int = 0
    total_pages: int = 0
