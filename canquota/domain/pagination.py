from __future__ import annotations

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Limit/offset query parameters for audit listings."""

    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class PaginationMeta(BaseModel):
    """Metadata describing a paginated response."""

    limit: int
    offset: int
    count: int
    total: int
    has_more: bool
    next_offset: int | None = None

    @classmethod
    def for_page(cls, params: PaginationParams, *, count: int, total: int) -> "PaginationMeta":
        end = params.offset + count
        next_offset = end if end < total else None
        return cls(
            limit=params.limit,
            offset=params.offset,
            count=count,
            total=total,
            has_more=next_offset is not None,
            next_offset=next_offset,
        )
