"""
Shared fixtures: settings rooted in tmp_path, an in-process Redis, a SQLite
finding store and a tarball builder.
"""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path
from typing import Dict, Union

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

from nps.core.database import Database
from nps.core.queue import WorkQueue
from nps.core.settings import Settings


class FakeClock:
    """Settable wall clock in seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tarball(path: Path, files: Dict[str, Union[str, bytes]]) -> Path:
    """Write a gzip tarball holding `files` (archive name -> content)."""
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return path


def write_rule_set(directory: Path, filename: str, document: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


AWS_RULE_SET = {
    "updated": 1700000000,
    "for_plugin": "grep",
    "rules": [{"id": "aws-key", "regex": "AKIA[0-9A-Z]{16}", "fancyName": "AWS Access Key"}],
}


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        staging_path=str(tmp_path / "staging"),
        ruleset_path=str(tmp_path / "rules"),
        log_dir="",
        database_dsn=f"sqlite+aiosqlite:///{tmp_path / 'nps.db'}",
        queue_reap_interval_seconds=3600,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def redis():
    client = FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def queue(redis, clock) -> WorkQueue:
    return WorkQueue(redis, max_retries=3, lease_timeout_seconds=300, dequeue_timeout_seconds=1, clock=clock)


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.create_all()
    yield db
    await db.dispose()
