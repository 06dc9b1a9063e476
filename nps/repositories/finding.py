"""
Finding repository
"""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from nps.models.finding import Finding
from .base import BaseRepository

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class FindingRepository(BaseRepository[Finding]):
    def __init__(self, db: AsyncSession):
        super().__init__(Finding, db)

    async def insert_ignore(self, rows: List[Dict[str, Any]]) -> int:
        """
        Insert findings, skipping ids that already exist.

        Returns the number of rows actually inserted where the driver reports it.
        """
        if not rows:
            return 0

        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            return await self._insert_missing(rows)

        # the table is addressed by column name, the rows by attribute name
        columns = Finding.__mapper__.columns
        table_rows = [{columns[name].key: value for name, value in row.items()} for row in rows]
        stmt = insert(Finding.__table__).values(table_rows).on_conflict_do_nothing(index_elements=["id"])
        result = await self.db.execute(stmt)
        return max(result.rowcount or 0, 0)

    async def _insert_missing(self, rows: List[Dict[str, Any]]) -> int:
        inserted = 0
        for row in rows:
            if await self.db.get(Finding, row["id"]) is None:
                self.db.add(Finding(**row))
                inserted += 1
        await self.db.flush()
        return inserted

    async def set_flags(self, finding_id: str, **flags: bool) -> int:
        """Update moderation flags of one finding. Returns matched rows."""
        changes = {getattr(Finding, name): value for name, value in flags.items() if value is not None}
        if not changes:
            return 1 if await self.get(finding_id) is not None else 0
        stmt = update(Finding).where(Finding.id == finding_id).values(changes)
        result = await self.db.execute(stmt)
        return result.rowcount or 0
