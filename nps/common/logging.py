"""
Logging setup and HTTP request logging middleware

Every process (master and each worker role) calls `setup_logging` once at
start-up. Records carry the process role and pid so interleaved output from
the pool can be told apart.
"""
import os
import sys
import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "{extra[role]}[{process}] | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[role]}[{process}] | "
    "trace_id={extra[trace_id]} | {name}:{function}:{line} | {message}"
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """HTTP request logging"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        method = request.method
        path = request.url.path
        client_host = request.client.host if request.client else "unknown"

        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.trace_id = trace_id
        log = logger.bind(trace_id=trace_id, method=method, path=path, client=client_host)

        log.debug(f"request.start {method} {path}")

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            status_code = response.status_code
            message = f"request.completed {method} {path} status={status_code} duration={process_time:.3f}s"

            if status_code >= 500:
                log.error(message)
            elif status_code >= 400:
                log.warning(message)
            else:
                log.info(message)

            response.headers["X-Process-Time"] = str(process_time)
            response.headers["X-Trace-Id"] = trace_id
            return response

        except Exception as e:
            process_time = time.time() - start_time
            log.opt(exception=True).error(f"request.failed duration={process_time:.3f}s error={type(e).__name__}")
            raise


def setup_logging(settings, role: str = "master") -> None:
    """
    Configure loguru sinks for this process.

    Console output always; rotating files under `settings.log_dir` when the
    directory can be created.
    """
    logger.remove()
    logger.configure(extra={"role": role, "trace_id": "-", "method": "-", "path": "-", "client": "-"})

    level = settings.log_level.upper()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if not settings.log_dir:
        return

    try:
        os.makedirs(settings.log_dir, exist_ok=True)
        logger.add(
            os.path.join(settings.log_dir, "nps.log"),
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            format=FILE_FORMAT,
            level=level,
            enqueue=True,
        )
        logger.add(
            os.path.join(settings.log_dir, "error.log"),
            rotation="50 MB",
            retention="30 days",
            compression="zip",
            format=FILE_FORMAT,
            level="ERROR",
            enqueue=True,
        )
    except (PermissionError, OSError) as e:
        # console only
        logger.warning(f"logging.file_sink_disabled dir={settings.log_dir} error={e}")
