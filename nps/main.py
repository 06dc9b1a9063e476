"""
Administrative UI application (served by the `ui` worker role)
"""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger

from nps import __version__
from nps.api import api_router
from nps.common.exceptions import register_exception_handlers
from nps.common.logging import LoggingMiddleware
from nps.core.database import Database
from nps.core.queue import WorkQueue
from nps.core.redis import RedisClient


def create_app(
    settings,
    database: Optional[Database] = None,
    queue: Optional[WorkQueue] = None,
) -> FastAPI:
    """
    Build the UI app.

    `database` and `queue` default to ones built from settings; tests pass
    their own.
    """
    redis: Optional[RedisClient] = None
    if queue is None:
        redis = RedisClient.from_settings(settings)
        queue = WorkQueue.from_settings(redis.client, settings)
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        await database.create_all()
        if redis is not None and not await redis.health_check():
            logger.warning(f"ui.redis_unavailable url={settings.redis_url}")
        yield
        await database.dispose()
        if redis is not None:
            await redis.close()

    app = FastAPI(
        title="NPS",
        version=__version__,
        description="Node package scanner findings",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.queue = queue

    register_exception_handlers(app)
    app.add_middleware(LoggingMiddleware)

    @app.get("/heartbeat", response_class=PlainTextResponse)
    async def heartbeat():
        return "ok"

    app.include_router(api_router, prefix="/api")

    if settings.ui_static_path and Path(settings.ui_static_path).is_dir():
        app.mount("/", StaticFiles(directory=settings.ui_static_path, html=True), name="ui")

    return app


async def serve_ui(settings) -> None:
    """Run the UI until the process is told to stop."""
    config = uvicorn.Config(
        create_app(settings),
        host=settings.ui_host,
        port=settings.ui_port,
        log_config=None,
        access_log=False,
    )
    logger.info(f"ui.listening host={settings.ui_host} port={settings.ui_port}")
    await uvicorn.Server(config).serve()
