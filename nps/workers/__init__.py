"""
Worker roles

`run_worker` builds the collaborators for one role from settings and runs it
until stopped. Each role owns its own event loop in its own process.
"""
from loguru import logger

from nps.core.database import Database
from nps.core.queue import WorkQueue
from nps.core.redis import RedisClient
from nps.core.stager import Stager
from nps.plugins.base import ResultEmitter
from nps.plugins.loader import load_plugins, load_rule_sets
from .base import QueueWorker
from .reporter import ReporterWorker
from .scanner import ScannerWorker

ROLES = ("scanner", "reporter", "ui")


async def run_scanner(settings) -> None:
    redis = RedisClient.from_settings(settings)
    try:
        queue = WorkQueue.from_settings(await redis.connect(), settings)
        emitter = ResultEmitter(queue, settings.result_queue, batch_size=settings.result_batch_size)
        plugins = load_plugins(settings, load_rule_sets(settings.ruleset_path), emitter)
        worker = ScannerWorker(queue, settings.work_queue, Stager.from_settings(settings), plugins)
        worker.install_signal_handlers()
        await worker.run()
    finally:
        await redis.close()


async def run_reporter(settings) -> None:
    redis = RedisClient.from_settings(settings)
    database = Database.from_settings(settings)
    try:
        queue = WorkQueue.from_settings(await redis.connect(), settings)
        await database.create_all()
        worker = ReporterWorker(queue, settings.result_queue, database, settings.staging_path)
        worker.install_signal_handlers()
        await worker.run()
    finally:
        await database.dispose()
        await redis.close()


async def run_worker(role: str, settings) -> None:
    """Run the worker loop for `role`."""
    logger.info(f"worker.boot role={role}")
    if role == "scanner":
        await run_scanner(settings)
    elif role == "reporter":
        await run_reporter(settings)
    elif role == "ui":
        from nps.main import serve_ui

        await serve_ui(settings)
    else:
        raise ValueError(f"unknown worker role: {role!r}")


__all__ = ["ROLES", "QueueWorker", "ReporterWorker", "ScannerWorker", "run_worker"]
