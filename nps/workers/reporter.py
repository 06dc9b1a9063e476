"""
Reporter worker

Drains the result queue into the finding store. Inserts are idempotent on the
dedup id, so redelivered or rescanned findings collapse into one row.
"""
import os
from typing import Any, Dict, List

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from nps.core.database import Database
from nps.core.queue import WorkQueue
from nps.repositories.finding import FindingRepository
from nps.schemas.finding import FindingPayload, finding_id
from nps.schemas.work_item import WorkItem
from .base import QueueWorker


def relative_to_root(path: str, root: str) -> str:
    """Strip the staging root prefix from `path`."""
    root = root.rstrip(os.sep)
    if root and (path == root or path.startswith(root + os.sep)):
        return path[len(root):].lstrip(os.sep)
    return path


class ReporterWorker(QueueWorker):
    role = "reporter"

    def __init__(self, queue: WorkQueue, queue_name: str, database: Database, staging_root: str):
        super().__init__(queue, queue_name)
        self.database = database
        self.staging_root = os.path.abspath(staging_root)

    def to_row(self, finding: FindingPayload) -> Dict[str, Any]:
        """Map a payload onto the persisted columns. Moderation flags are left to their defaults."""
        return {
            "id": finding_id(
                finding.package_name,
                finding.package_version,
                finding.found_by,
                finding.line_number,
                finding.key,
            ),
            "found_by": finding.found_by,
            "key": finding.key,
            "fancy_name": finding.fancy_name,
            "tarball_name": os.path.basename(finding.tarball_name),
            "package_name": finding.package_name,
            "package_version": finding.package_version,
            "file_path": relative_to_root(finding.file_path, self.staging_root),
            "file_excerpt": finding.file_excerpt,
            "line_number": finding.line_number,
        }

    def parse(self, data: Any) -> List[Dict[str, Any]]:
        """Rows for a single finding or a list of findings, unique by id."""
        entries = data if isinstance(data, list) else [data]
        rows: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            row = self.to_row(FindingPayload.model_validate(entry))
            rows.setdefault(row["id"], row)
        return list(rows.values())

    async def process(self, item: WorkItem) -> bool:
        try:
            rows = self.parse(item.data)
        except ValidationError as e:
            logger.error(f"reporter.bad_payload id={item.id} errors={e.error_count()}")
            await self.queue.fail(self.queue_name, item, immediate=True)
            return False

        try:
            async with self.database.session() as session:
                inserted = await FindingRepository(session).insert_ignore(rows)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"reporter.persist_failed id={item.id} error={type(e).__name__}: {e}")
            await self.queue.fail(self.queue_name, item)
            return False

        await self.queue.ack(self.queue_name, item)
        logger.debug(f"reporter.persisted id={item.id} findings={len(rows)} inserted={inserted}")
        return True
