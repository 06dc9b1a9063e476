"""
Pagination helpers
"""
from typing import Any, Callable, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Pagination parameters"""
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=50, ge=1, le=500, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PageResult(BaseModel, Generic[T]):
    """One page of results"""
    model_config = {"arbitrary_types_allowed": True}

    items: List[T]
    total: int
    page: int
    page_size: int
    pages: int


class Paginator:
    """Runs a count query and a sliced query for the same statement."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def paginate(
        self,
        query: Select,
        params: PaginationParams,
        transformer: Optional[Callable[[Any], Any]] = None,
    ) -> PageResult:
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        pages = (total + params.page_size - 1) // params.page_size if params.page_size > 0 else 0

        result = await self.db.execute(query.offset(params.offset).limit(params.limit))
        items = list(result.scalars().all())

        if transformer:
            items = [transformer(item) for item in items]

        return PageResult(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            pages=pages,
        )
