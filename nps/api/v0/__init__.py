from fastapi import APIRouter

from .findings import router as findings_router
from .stats import router as stats_router

api_router = APIRouter(prefix="/v0")
api_router.include_router(stats_router)
api_router.include_router(findings_router)

__all__ = ["api_router"]
