"""
Finding moderation
- GET    /api/v0/findings                         list (filters + pagination)
- GET    /api/v0/findings/{id}                    detail
- POST   /api/v0/findings/{id}                    update ignore/falsePositive
- POST|DELETE /api/v0/findings/{id}/ignore        set/clear ignore
- POST|DELETE /api/v0/findings/{id}/falsePositive set/clear falsePositive
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from nps.common.dependencies import get_db
from nps.common.exceptions import BadRequestException
from nps.common.pagination import PaginationParams
from nps.common.response import paginated_response, success_response
from nps.schemas.finding import FindingFilters, FindingFlagsUpdate
from nps.services.finding_service import FindingService

router = APIRouter(prefix="/findings", tags=["Findings"])


@router.get("")
async def list_findings(
    package_name: Optional[str] = Query(default=None, alias="packageName"),
    package_version: Optional[str] = Query(default=None, alias="packageVersion"),
    found_by: Optional[str] = Query(default=None, alias="foundBy"),
    key: Optional[str] = Query(default=None),
    ignore: Optional[bool] = Query(default=None),
    false_positive: Optional[bool] = Query(default=None, alias="falsePositive"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    filters = FindingFilters(
        package_name=package_name,
        package_version=package_version,
        found_by=found_by,
        key=key,
        ignore=ignore,
        false_positive=false_positive,
    )
    result = await FindingService(db).list_findings(filters, PaginationParams(page=page, page_size=page_size))
    return paginated_response(result.items, result.total, page=result.page, page_size=result.page_size)


@router.get("/{finding_id}")
async def get_finding(finding_id: str, db: AsyncSession = Depends(get_db)):
    data = await FindingService(db).get_finding(finding_id)
    return success_response(data)


@router.api_route("/{finding_id}", methods=["POST", "PUT"])
async def update_finding(finding_id: str, payload: FindingFlagsUpdate, db: AsyncSession = Depends(get_db)):
    if payload.ignore is None and payload.false_positive is None:
        raise BadRequestException("Nothing to update: send ignore and/or falsePositive", data={"id": finding_id})
    data = await FindingService(db).update_flags(
        finding_id,
        ignore=payload.ignore,
        false_positive=payload.false_positive,
    )
    return success_response(data)


@router.api_route("/{finding_id}/ignore", methods=["POST", "PUT"])
async def set_ignore(finding_id: str, db: AsyncSession = Depends(get_db)):
    data = await FindingService(db).update_flags(finding_id, ignore=True)
    return success_response(data)


@router.delete("/{finding_id}/ignore")
async def clear_ignore(finding_id: str, db: AsyncSession = Depends(get_db)):
    data = await FindingService(db).update_flags(finding_id, ignore=False)
    return success_response(data)


@router.api_route("/{finding_id}/falsePositive", methods=["POST", "PUT"])
async def set_false_positive(finding_id: str, db: AsyncSession = Depends(get_db)):
    data = await FindingService(db).update_flags(finding_id, false_positive=True)
    return success_response(data)


@router.delete("/{finding_id}/falsePositive")
async def clear_false_positive(finding_id: str, db: AsyncSession = Depends(get_db)):
    data = await FindingService(db).update_flags(finding_id, false_positive=False)
    return success_response(data)
