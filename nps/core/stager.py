"""
Archive staging

Extracts one package archive into a private directory under the staging root,
after checking that its uncompressed size fits on the staging volume.
"""
import asyncio
import hashlib
import os
import secrets
import shutil
import struct
import tarfile
import time
import zlib
from pathlib import Path
from typing import Callable, Union

import psutil
from loguru import logger

from nps.common.exceptions import ExtractionError, InsufficientSpaceError, NotFoundError

GZIP_MAGIC = b"\x1f\x8b"

PathLike = Union[str, os.PathLike]


def uncompressed_size(archive_path: PathLike) -> int:
    """
    Size of the archive once decompressed, read without decompressing.

    For gzip this is the ISIZE trailer (the length modulo 2**32 of the last
    member). Anything else is assumed to be a plain tar and its size is used.
    """
    with open(archive_path, "rb") as f:
        magic = f.read(2)
        if magic != GZIP_MAGIC:
            f.seek(0, os.SEEK_END)
            return f.tell()
        f.seek(-4, os.SEEK_END)
        (isize,) = struct.unpack("<I", f.read(4))
    return isize


def disk_free(path: PathLike) -> int:
    return psutil.disk_usage(str(path)).free


class Stager:
    """Admission-controlled extraction into `staging_root/<hash>`."""

    def __init__(self, staging_root: PathLike, free_space: Callable[[PathLike], int] = disk_free):
        self.staging_root = Path(staging_root)
        self._free_space = free_space
        self._salt = secrets.token_hex(16)

    @classmethod
    def from_settings(cls, settings) -> "Stager":
        return cls(settings.staging_path)

    def directory_name(self, archive_path: PathLike) -> str:
        basename = os.path.basename(archive_path)
        material = f"{time.time_ns()}:{self._salt}:{basename}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    async def stage(self, archive_path: PathLike) -> Path:
        """
        Extract `archive_path` and return the staged directory.

        Raises:
            NotFoundError: the archive does not exist.
            InsufficientSpaceError: the uncompressed size exceeds free space;
                nothing is created.
            ExtractionError: the archive is malformed or has an unsafe entry.
                `staged_path` names the partial directory, which the caller
                still has to unstage.
        """
        archive_path = Path(archive_path)
        if not archive_path.is_file():
            raise NotFoundError("archive not found", path=str(archive_path))

        await asyncio.to_thread(self.staging_root.mkdir, parents=True, exist_ok=True)

        try:
            required = await asyncio.to_thread(uncompressed_size, archive_path)
        except OSError as e:
            raise ExtractionError("archive unreadable", path=str(archive_path), error=e) from e
        available = await asyncio.to_thread(self._free_space, self.staging_root)
        if required > available:
            raise InsufficientSpaceError(
                "archive too large for staging volume",
                path=str(archive_path),
                required=required,
                available=available,
            )

        target = self.staging_root / self.directory_name(archive_path)
        await asyncio.to_thread(target.mkdir)

        try:
            await asyncio.to_thread(self._extract, archive_path, target)
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            raise ExtractionError("extraction failed", staged_path=target, path=str(archive_path), error=e) from e

        logger.debug(f"stager.staged archive={archive_path.name} dir={target}")
        return target

    @staticmethod
    def _extract(archive_path: Path, target: Path) -> None:
        with tarfile.open(archive_path, "r:*") as tar:
            tar.errorlevel = 2
            tar.extractall(target, filter="data")

    async def unstage(self, staged: PathLike) -> None:
        """Remove a staged directory tree. Filesystem errors propagate."""
        await asyncio.to_thread(shutil.rmtree, staged)
        logger.debug(f"stager.unstaged dir={staged}")
