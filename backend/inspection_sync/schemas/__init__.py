"""Shared schema utilities."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PageInfo(BaseModel):
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: str | None = None
    end_cursor: str | None = None
    total_count: int | None = None


class PaginatedResult(BaseModel, Generic[T]):
    data: list[T]
    page_info: PageInfo
