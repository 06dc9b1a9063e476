"""
Finding schemas: the queue payload emitted by plugins and the API views
"""
import hashlib
import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def finding_id(
    package_name: Optional[str],
    package_version: Optional[str],
    found_by: str,
    line_number: Optional[int],
    key: str,
) -> str:
    """Dedup id: a pure function of package identity, plugin, line and rule."""
    material = json.dumps(
        [package_name, package_version, found_by, line_number, key],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FindingPayload(CamelModel):
    """A match as produced by a plugin, before persistence."""

    found_by: str
    key: str
    fancy_name: str = ""
    tarball_name: str
    package_name: Optional[str] = None
    package_version: Optional[str] = None
    file_path: str
    file_excerpt: Optional[str] = None
    line_number: Optional[int] = Field(default=None, ge=1)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class FindingRead(CamelModel):
    """A persisted finding."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    found_by: str
    key: str
    fancy_name: str
    tarball_name: str
    package_name: Optional[str] = None
    package_version: Optional[str] = None
    file_path: str
    file_excerpt: Optional[str] = None
    line_number: Optional[int] = None
    ignore: bool = False
    false_positive: bool = False


class FindingFlagsUpdate(CamelModel):
    """Moderation flags; absent fields keep their stored value."""

    ignore: Optional[bool] = None
    false_positive: Optional[bool] = None


class FindingFilters(CamelModel):
    """Whitelisted list filters."""

    package_name: Optional[str] = None
    package_version: Optional[str] = None
    found_by: Optional[str] = None
    key: Optional[str] = None
    ignore: Optional[bool] = None
    false_positive: Optional[bool] = None

    def as_columns(self) -> dict:
        return self.model_dump(exclude_none=True)
