"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field


class Pagination(BaseModel):
    """Page metadata returned alongside paginated lists."""

    total: int
    page: int
    limit: int
    pages: int
    has_more: bool = Field(..., serialization_alias="hasMore")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def build(cls, *, total: int, page: int, limit: int, returned: int) -> Pagination:
        """Compute page metadata for ``returned`` rows fetched at ``page``."""
        skip = (page - 1) * limit
        return cls(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if limit else 0,
            has_more=skip + returned < total,
        )
