"""
API routes

- /api/v0/... moderation and statistics endpoints
"""
from fastapi import APIRouter

from .v0 import api_router as api_v0_router

api_router = APIRouter()
api_router.include_router(api_v0_router)

__all__ = ["api_router"]
