"""
Tests for the scanner worker: identity resolution and the per-item pipeline.
"""

from __future__ import annotations

import json
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from nps.core.queue import WorkQueue
from nps.core.stager import Stager
from nps.plugins.base import ResultEmitter
from nps.plugins.loader import load_plugins, load_rule_sets
from nps.workers.scanner import ScannerWorker, parse_archive_name, resolve_identity
from tests.conftest import AWS_RULE_SET, make_tarball, write_rule_set

LEFTPAD_SOURCE = "'use strict';\nmodule.exports = leftpad;\nconst secret = \"AKIAabcdef1234567890\";\n"


@pytest.fixture
def rules_dir(settings, tmp_path):
    write_rule_set(
        tmp_path / "rules",
        "aws.json",
        {**AWS_RULE_SET, "rules": [{"id": "aws-key", "regex": "AKIA[0-9A-Za-z]{16}", "fancyName": "AWS"}]},
    )
    return tmp_path / "rules"


@pytest.fixture
def scanner(settings, queue, rules_dir):
    emitter = ResultEmitter(queue, settings.result_queue, batch_size=settings.result_batch_size)
    plugins = load_plugins(settings, load_rule_sets(rules_dir), emitter)
    return ScannerWorker(queue, settings.work_queue, Stager(settings.staging_path), plugins)


async def _results(redis, settings):
    raw = await redis.lrange(WorkQueue.inbox(settings.result_queue), 0, -1)
    return [json.loads(entry)["data"] for entry in raw]


class TestArchiveName:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/srv/leftpad-1.0.0.tgz", ("leftpad", "1.0.0")),
            ("left-pad-1.3.0.tgz", ("left-pad", "1.3.0")),
            ("foo-1.0.0-beta.1.tgz", ("foo", "1.0.0-beta.1")),
            ("lib-next.tgz", ("lib", "next")),
            ("README.md", (None, None)),
        ],
    )
    def test_parse_archive_name(self, path, expected):
        assert parse_archive_name(path) == expected


class TestResolveIdentity:
    def test_shallowest_manifest_wins(self, tmp_path):
        root = tmp_path / "package"
        nested = root / "vendor" / "dep"
        nested.mkdir(parents=True)
        (root / "package.json").write_text(json.dumps({"name": "outer", "version": "2.0.0"}))
        (nested / "package.json").write_text(json.dumps({"name": "inner", "version": "0.1.0"}))
        files = sorted(str(p) for p in tmp_path.rglob("package.json"))

        assert resolve_identity(files, "/srv/whatever-9.9.9.tgz") == ("outer", "2.0.0")

    def test_incomplete_manifest_falls_back_to_file_name(self, tmp_path):
        manifest = tmp_path / "package.json"
        manifest.write_text(json.dumps({"name": "from-manifest"}))

        assert resolve_identity([str(manifest)], "/srv/leftpad-1.0.0.tgz") == ("from-manifest", "1.0.0")

    def test_unresolvable_identity_is_not_fatal(self, tmp_path):
        manifest = tmp_path / "package.json"
        manifest.write_text("not json")

        assert resolve_identity([str(manifest)], "/srv/weird.tar") == (None, None)


class TestProcess:
    @pytest.mark.asyncio
    async def test_end_to_end_emits_single_finding(self, scanner, queue, redis, settings, tmp_path):
        archive = make_tarball(tmp_path / "leftpad-1.0.0.tgz", {"package/index.js": LEFTPAD_SOURCE})
        await queue.enqueue(settings.work_queue, str(archive))
        item = await queue.dequeue(settings.work_queue)

        assert await scanner.process(item) is True

        (batch,) = await _results(redis, settings)
        assert len(batch) == 1
        finding = batch[0]
        assert finding["key"] == "aws-key"
        assert finding["packageName"] == "leftpad"
        assert finding["packageVersion"] == "1.0.0"
        assert finding["lineNumber"] == 3
        assert finding["filePath"].endswith(os.path.join("package", "index.js"))
        assert await queue.stats(settings.work_queue) == {"waiting": 0, "processing": 0, "dead": 0}
        assert os.listdir(settings.staging_path) == []

    @pytest.mark.asyncio
    async def test_staging_under_node_modules_still_scans(self, settings, queue, redis, rules_dir, tmp_path):
        nested = settings.model_copy(update={"staging_path": str(tmp_path / "node_modules" / "staging")})
        emitter = ResultEmitter(queue, nested.result_queue)
        worker = ScannerWorker(
            queue, nested.work_queue, Stager(nested.staging_path), load_plugins(nested, load_rule_sets(rules_dir), emitter)
        )
        archive = make_tarball(tmp_path / "leftpad-1.0.0.tgz", {"package/index.js": LEFTPAD_SOURCE})
        await queue.enqueue(nested.work_queue, str(archive))

        assert await worker.process(await queue.dequeue(nested.work_queue)) is True

        (batch,) = await _results(redis, nested)
        assert batch[0]["key"] == "aws-key"

    @pytest.mark.asyncio
    async def test_manifest_identity_takes_precedence(self, scanner, queue, redis, settings, tmp_path):
        archive = make_tarball(
            tmp_path / "renamed-0.0.1.tgz",
            {
                "package/package.json": json.dumps({"name": "leftpad", "version": "1.0.0"}),
                "package/index.js": LEFTPAD_SOURCE,
            },
        )
        await queue.enqueue(settings.work_queue, str(archive))

        await scanner.process(await queue.dequeue(settings.work_queue))

        (batch,) = await _results(redis, settings)
        assert (batch[0]["packageName"], batch[0]["packageVersion"]) == ("leftpad", "1.0.0")

    @pytest.mark.asyncio
    async def test_missing_archive_is_retried(self, scanner, queue, settings, tmp_path):
        await queue.enqueue(settings.work_queue, str(tmp_path / "gone-1.0.0.tgz"))
        item = await queue.dequeue(settings.work_queue)

        assert await scanner.process(item) is False

        retry = await queue.dequeue(settings.work_queue)
        assert retry.id == item.id
        assert retry.retries == 1

    @pytest.mark.asyncio
    async def test_malformed_archive_is_retried_and_cleaned_up(self, scanner, queue, settings, tmp_path):
        broken = tmp_path / "broken-1.0.0.tgz"
        broken.write_bytes(b"garbage")
        await queue.enqueue(settings.work_queue, str(broken))

        assert await scanner.process(await queue.dequeue(settings.work_queue)) is False

        assert os.listdir(settings.staging_path) == []
        assert (await queue.stats(settings.work_queue))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_plugin_failure_fails_item_after_all_plugins_finish(self, queue, settings, tmp_path):
        archive = make_tarball(tmp_path / "leftpad-1.0.0.tgz", {"package/index.js": "x"})
        broken = MagicMock(name="broken")
        broken.name = "broken"
        broken.scan = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock(name="healthy")
        healthy.name = "healthy"
        healthy.scan = AsyncMock()
        worker = ScannerWorker(queue, settings.work_queue, Stager(settings.staging_path), [broken, healthy])
        await queue.enqueue(settings.work_queue, str(archive))

        assert await worker.process(await queue.dequeue(settings.work_queue)) is False

        healthy.scan.assert_awaited_once()
        target = healthy.scan.await_args.args[0]
        assert target.name == "leftpad"
        assert os.listdir(settings.staging_path) == []
        assert (await queue.stats(settings.work_queue))["waiting"] == 1

    @pytest.mark.asyncio
    async def test_non_path_payload_is_dead_lettered(self, scanner, queue, settings):
        await queue.enqueue(settings.work_queue, {"unexpected": True})

        await scanner.process(await queue.dequeue(settings.work_queue))

        assert (await queue.stats(settings.work_queue))["dead"] == 1
