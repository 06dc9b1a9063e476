"""
FastAPI dependencies
"""
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from nps.core.queue import WorkQueue


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Session per request; writes are committed by the service."""
    async with request.app.state.database.session() as session:
        yield session


def get_queue(request: Request) -> WorkQueue:
    return request.app.state.queue


def get_settings(request: Request):
    return request.app.state.settings
