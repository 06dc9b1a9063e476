"""
Finding moderation and reporting
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nps.common.exceptions import NotFoundException
from nps.common.pagination import PageResult, PaginationParams
from nps.models.finding import Finding
from nps.repositories.finding import FindingRepository
from nps.schemas.finding import FindingFilters, FindingRead
from .base import BaseService


class FindingService(BaseService):
    def __init__(self, db: AsyncSession):
        super().__init__(db)
        self.repo = FindingRepository(db)

    async def list_findings(self, filters: FindingFilters, params: PaginationParams) -> PageResult:
        page = await self.repo.find_paginated(params, filters=filters.as_columns())
        page.items = [self._to_read(item) for item in page.items]
        return page

    async def get_finding(self, finding_id: str) -> dict:
        finding = await self.repo.get(finding_id)
        if finding is None:
            raise NotFoundException("Finding not found", data={"id": finding_id})
        return self._to_read(finding)

    async def update_flags(
        self,
        finding_id: str,
        *,
        ignore: Optional[bool] = None,
        false_positive: Optional[bool] = None,
    ) -> dict:
        """Change the moderation flags of exactly one finding."""
        matched = await self.repo.set_flags(finding_id, ignore=ignore, false_positive=false_positive)
        if not matched:
            raise NotFoundException("Finding not found", data={"id": finding_id})
        await self.commit()
        return await self.get_finding(finding_id)

    async def total_findings(self) -> int:
        return await self.repo.count()

    @staticmethod
    def _to_read(finding: Finding) -> dict:
        return FindingRead.model_validate(finding).model_dump(by_alias=True)
