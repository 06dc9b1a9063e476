"""
Persisted findings
"""
from typing import Optional

from sqlalchemy import Boolean, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from nps.core.database import Base
from nps.models.base import TimestampMixin


class Finding(Base, TimestampMixin):
    """
    One reported match, keyed by its dedup id.

    Column names keep the camelCase spelling the reporting UI queries.
    `ignore` and `false_positive` are moderation flags written only through
    the API.
    """

    __tablename__ = "result"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    found_by: Mapped[str] = mapped_column("foundBy", String(64), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    fancy_name: Mapped[str] = mapped_column("fancyName", String(255), nullable=False, default="")
    tarball_name: Mapped[str] = mapped_column("tarballName", String(512), nullable=False)
    package_name: Mapped[Optional[str]] = mapped_column("packageName", String(255), index=True)
    package_version: Mapped[Optional[str]] = mapped_column("packageVersion", String(128), index=True)
    file_path: Mapped[str] = mapped_column("filePath", Text, nullable=False)
    file_excerpt: Mapped[Optional[str]] = mapped_column("fileExcerpt", Text)
    line_number: Mapped[Optional[int]] = mapped_column("lineNumber", Integer)
    ignore: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    false_positive: Mapped[bool] = mapped_column(
        "falsePositive", Boolean, nullable=False, default=False, server_default=false()
    )

    def __repr__(self) -> str:
        return f"<Finding {self.id[:12]} {self.package_name}@{self.package_version} {self.key}>"
