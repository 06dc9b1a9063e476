"""
Exception hierarchy (single entry point)

- **Domain errors**: `NpsError` and its subclasses are raised by the queue, the
  stager and the plugin engine. Workers translate them into queue `fail()`
  calls; only `StoreUnavailableError` is allowed to escape a worker loop.
- **HTTP errors**: `AppException(HTTPException)` separates the HTTP
  `status_code` from the business `code` and carries extra detail in `data`.
- **Handlers**: `register_exception_handlers` wires FastAPI so every error is
  rendered with `nps.common.response.error_response`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from nps.common.response import error_response


# Domain errors


class NpsError(Exception):
    """Base class for scanner pipeline errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = " ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class NotFoundError(NpsError):
    """A referenced archive or staged directory does not exist."""


class InsufficientSpaceError(NpsError):
    """Admission control rejected an archive before extraction."""


class ExtractionError(NpsError):
    """The archive is malformed or contains a forbidden entry."""

    def __init__(self, message: str, staged_path: Any = None, **context: Any):
        super().__init__(message, **context)
        self.staged_path = staged_path


class StoreUnavailableError(NpsError):
    """The queue store could not be reached."""


class RuleParseError(NpsError):
    """A rule-set document could not be parsed; the document is skipped."""


class RuleMatchError(NpsError):
    """A single rule failed to compile or match; the rule is skipped."""


class PluginLoadError(NpsError):
    """A configured plugin is not registered."""


# HTTP errors


class AppException(HTTPException):
    """Base API exception."""

    code: int
    data: Any

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        message: str = "Internal Server Error",
        *,
        code: int | None = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = status_code if code is None else code
        self.data = data


class NotFoundException(AppException):
    """Resource not found (404)"""

    def __init__(self, message: str = "Resource not found", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message, code=code, data=data)


class BadRequestException(AppException):
    """Bad request (400)"""

    def __init__(self, message: str = "Bad request", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message, code=code, data=data)


# Handlers


def create_error_response(*, status_code: int, code: int, message: str, data: Any = None) -> Response:
    return JSONResponse(
        status_code=status_code,
        content=error_response(message=message, code=code, data=data),
    )


async def app_exception_handler(request: Request, exc: AppException) -> Response:
    return create_error_response(
        status_code=exc.status_code,
        code=getattr(exc, "code", exc.status_code),
        message=str(exc.detail),
        data=getattr(exc, "data", None),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    return create_error_response(
        status_code=exc.status_code,
        code=exc.status_code,
        message=str(exc.detail),
        data=getattr(exc, "data", None),
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> Response:
    logger.warning(f"store.unavailable error={exc}")
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Queue store unavailable",
    )


def _format_validation_errors(errors: Iterable[Mapping[str, Any]]) -> List[dict[str, Any]]:
    formatted: List[dict[str, Any]] = []
    for err in errors:
        loc = err.get("loc", ())
        formatted.append(
            {
                "field": ".".join(str(x) for x in loc),
                "message": err.get("msg"),
                "type": err.get("type"),
            }
        )
    return formatted


async def request_validation_exception_handler(request: Request, exc: Exception) -> Response:
    errors: List[dict[str, Any]] = []
    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        errors = _format_validation_errors(exc.errors())

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Request parameter validation failed",
        data={"validation_errors": errors} if errors else None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> Response:
    logger.exception("Unhandled exception: {}", exc)

    settings = getattr(request.app.state, "settings", None)
    debug = bool(getattr(settings, "debug", False))

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=str(exc) if debug else "Internal Server Error",
        data={"error_type": type(exc).__name__} if debug else None,
    )


def register_exception_handlers(app: Any) -> None:
    """Register every handler on a FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
