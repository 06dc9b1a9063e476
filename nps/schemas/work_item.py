"""
Queue wire format
"""
import hashlib
import secrets
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_item_id() -> str:
    """Random 128 bits, hashed to a 256-bit hex id."""
    return hashlib.sha256(secrets.token_bytes(16)).hexdigest()


def new_lease_token() -> str:
    return secrets.token_hex(8)


class WorkItem(BaseModel):
    """
    One unit of work on a queue.

    `started` (epoch ms) and `lease` are only set while the item sits in the
    processing list. Items written by older producers may lack `retries`,
    `started` and `lease`.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_item_id)
    data: Any = None
    retries: int = Field(default=0, ge=0)
    started: Optional[int] = None
    lease: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw: str) -> "WorkItem":
        return cls.model_validate_json(raw)
