"""
Scanner worker

Per work item: stage the archive, work out the package identity, run every
plugin over the extracted files concurrently, unstage, then ack or fail.
"""
import asyncio
import json
import os
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from nps.common.exceptions import ExtractionError, NpsError
from nps.core.queue import WorkQueue
from nps.core.stager import Stager
from nps.plugins.base import BasePlugin, ScanTarget
from nps.schemas.work_item import WorkItem
from .base import QueueWorker

MANIFEST_NAME = "package.json"

# version has to start with a digit so "left-pad-1.0.0" splits after "left-pad"
ARCHIVE_NAME_PATTERNS = (
    re.compile(r"^(?P<name>[\w.-]+?)-(?P<version>\d[^/]*)\.tgz$"),
    re.compile(r"^(?P<name>[\w.-]+)-(?P<version>.*)\.tgz$"),
)

Identity = Tuple[Optional[str], Optional[str]]


def parse_archive_name(archive_path: str) -> Identity:
    """Name and version from a `<name>-<version>.tgz` file name."""
    basename = os.path.basename(archive_path)
    for pattern in ARCHIVE_NAME_PATTERNS:
        match = pattern.match(basename)
        if match:
            return match.group("name"), match.group("version")
    return None, None


def read_manifest(path: str) -> Identity:
    try:
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"scanner.manifest_unreadable path={path} error={e}")
        return None, None
    if not isinstance(manifest, dict):
        return None, None
    name, version = manifest.get("name"), manifest.get("version")
    return (
        name if isinstance(name, str) else None,
        version if isinstance(version, str) else None,
    )


def enumerate_files(root: Path) -> List[str]:
    """Absolute paths of every regular file below `root`, sorted."""
    files = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            if os.path.isfile(path) and not os.path.islink(path):
                files.append(os.path.abspath(path))
    files.sort()
    return files


def resolve_identity(files: Sequence[str], archive_path: str) -> Identity:
    """
    Package name and version, best effort.

    The shallowest manifest wins, so dependencies bundled under nested
    directories do not override the package itself. Missing parts fall back
    to the archive file name.
    """
    manifests = sorted(
        (path for path in files if os.path.basename(path) == MANIFEST_NAME),
        key=lambda path: (path.count(os.sep), path),
    )
    name = version = None
    if manifests:
        name, version = read_manifest(manifests[0])
    if name and version:
        return name, version

    fallback_name, fallback_version = parse_archive_name(archive_path)
    return name or fallback_name, version or fallback_version


class ScannerWorker(QueueWorker):
    role = "scanner"

    def __init__(self, queue: WorkQueue, queue_name: str, stager: Stager, plugins: List[BasePlugin]):
        super().__init__(queue, queue_name)
        self.stager = stager
        self.plugins = plugins

    async def process(self, item: WorkItem) -> bool:
        archive_path = item.data
        if not isinstance(archive_path, str) or not archive_path:
            logger.error(f"scanner.bad_payload id={item.id} data={item.data!r}")
            await self.queue.fail(self.queue_name, item, immediate=True)
            return False

        log = logger.bind(item_id=item.id)
        staged: Optional[Path] = None
        ok = True
        try:
            staged = await self.stager.stage(archive_path)
            ok = await self.scan(staged, archive_path)
        except ExtractionError as e:
            staged = e.staged_path
            log.warning(f"scanner.extraction_failed archive={archive_path} error={e}")
            ok = False
        except NpsError as e:
            log.warning(f"scanner.stage_failed archive={archive_path} error={e}")
            ok = False
        except Exception:
            log.opt(exception=True).error(f"scanner.failed archive={archive_path}")
            ok = False
        finally:
            if staged is not None:
                try:
                    await self.stager.unstage(staged)
                except OSError as e:
                    log.error(f"scanner.unstage_failed dir={staged} error={e}")
                    ok = False

        if ok:
            await self.queue.ack(self.queue_name, item)
            log.info(f"scanner.done archive={os.path.basename(archive_path)}")
        else:
            await self.queue.fail(self.queue_name, item)
        return ok

    async def scan(self, staged: Path, archive_path: str) -> bool:
        """Run every plugin over the staged tree. False if any plugin raised."""
        files = await asyncio.to_thread(enumerate_files, staged)
        name, version = await asyncio.to_thread(resolve_identity, files, archive_path)
        if not name or not version:
            logger.warning(f"scanner.identity_incomplete archive={archive_path} name={name} version={version}")

        target = ScanTarget(
            name=name,
            version=version,
            tarball_path=archive_path,
            target_files=tuple(files),
            root=os.path.abspath(staged),
        )
        logger.debug(f"scanner.scanning package={name}@{version} files={len(files)} plugins={len(self.plugins)}")

        results = await asyncio.gather(
            *(plugin.scan(target) for plugin in self.plugins),
            return_exceptions=True,
        )
        ok = True
        for plugin, result in zip(self.plugins, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(f"scanner.plugin_failed plugin={plugin.name} package={name}")
                ok = False
        return ok
