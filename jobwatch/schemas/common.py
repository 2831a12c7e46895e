from typing import Literal

from pydantic import BaseModel

ReadSource = Literal["cache", "database", "database-forced"]


class Pagination(BaseModel):
    """Offset pagination block returned with every list."""

    limit: int
    offset: int
    total: int
    hasMore: bool


class OkResponse(BaseModel):
    """Plain acknowledgement."""

    success: bool = True
    message: str | None = None
