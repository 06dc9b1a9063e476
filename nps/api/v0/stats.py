"""
Pipeline statistics
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from nps.common.dependencies import get_db, get_queue, get_settings
from nps.common.response import success_response
from nps.core.queue import WorkQueue
from nps.services.finding_service import FindingService

router = APIRouter(tags=["Stats"])


@router.get("/")
async def index():
    return {"msg": "ok"}


@router.get("/stats")
async def stats(
    db: AsyncSession = Depends(get_db),
    queue: WorkQueue = Depends(get_queue),
    settings=Depends(get_settings),
):
    total = await FindingService(db).total_findings()
    queues = {
        name: await queue.stats(name)
        for name in (settings.work_queue, settings.result_queue)
    }
    return success_response({"totalFindings": total, "queues": queues})
