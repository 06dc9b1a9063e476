"""
Uniform response envelope
"""

from datetime import datetime, timezone
from typing import Any, List


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = 200,
) -> dict:
    """Success envelope"""
    return {
        "success": True,
        "code": code,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }


def error_response(
    message: str = "Error",
    code: int = 400,
    data: Any = None,
) -> dict:
    """Error envelope"""
    return {
        "success": False,
        "code": code,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }


def paginated_response(
    items: List[Any],
    total: int,
    page: int = 1,
    page_size: int = 50,
    message: str = "Success",
) -> dict:
    """Paginated envelope"""
    pages = (total + page_size - 1) // page_size if page_size > 0 else 0
    return success_response(
        data={
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": pages,
        },
        message=message,
    )
