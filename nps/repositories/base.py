"""
Base repository - shared query helpers
"""
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nps.common.pagination import PageResult, PaginationParams, Paginator
from nps.core.database import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Usage:
        class FindingRepository(BaseRepository[Finding]):
            def __init__(self, db: AsyncSession):
                super().__init__(Finding, db)
    """

    def __init__(self, model: Type[T], db: AsyncSession):
        self.model = model
        self.db = db

    async def get(self, id: Any) -> Optional[T]:
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    def _filtered(self, filters: Optional[Dict[str, Any]]):
        query = select(self.model)
        for key, value in (filters or {}).items():
            if hasattr(self.model, key):
                query = query.where(getattr(self.model, key) == value)
        return query

    async def find_paginated(
        self,
        params: PaginationParams,
        filters: Dict[str, Any] = None,
        order_by: str = "created_at",
        order_desc: bool = True,
    ) -> PageResult[T]:
        query = self._filtered(filters)
        if order_by and hasattr(self.model, order_by):
            column = getattr(self.model, order_by)
            query = query.order_by(column.desc() if order_desc else column.asc(), self.model.id)
        return await Paginator(self.db).paginate(query, params)

    async def count(self, filters: Dict[str, Any] = None) -> int:
        query = select(func.count()).select_from(self._filtered(filters).subquery())
        result = await self.db.execute(query)
        return result.scalar() or 0
