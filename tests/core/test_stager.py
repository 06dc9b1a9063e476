"""
Tests for archive staging and admission control.
"""

from __future__ import annotations

import gzip
import io
import tarfile

import pytest

from nps.common.exceptions import ExtractionError, InsufficientSpaceError, NotFoundError
from nps.core.stager import Stager, uncompressed_size
from tests.conftest import make_tarball


@pytest.fixture
def archive(tmp_path):
    return make_tarball(
        tmp_path / "leftpad-1.0.0.tgz",
        {"package/package.json": '{"name": "leftpad", "version": "1.0.0"}', "package/index.js": "module.exports = 1;\n"},
    )


class TestStage:
    @pytest.mark.asyncio
    async def test_extracts_into_private_directory(self, tmp_path, archive):
        stager = Stager(tmp_path / "staging")

        staged = await stager.stage(archive)

        assert staged.parent == tmp_path / "staging"
        assert len(staged.name) == 64
        assert (staged / "package" / "index.js").read_text() == "module.exports = 1;\n"

    @pytest.mark.asyncio
    async def test_missing_archive(self, tmp_path):
        with pytest.raises(NotFoundError):
            await Stager(tmp_path / "staging").stage(tmp_path / "nope.tgz")

    @pytest.mark.asyncio
    async def test_rejects_archive_larger_than_free_space(self, tmp_path, archive):
        root = tmp_path / "staging"
        stager = Stager(root, free_space=lambda path: 16)

        with pytest.raises(InsufficientSpaceError) as exc_info:
            await stager.stage(archive)

        assert exc_info.value.context["available"] == 16
        assert list(root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_malformed_archive(self, tmp_path):
        bogus = tmp_path / "broken-1.0.0.tgz"
        bogus.write_bytes(b"this is not a tarball at all")
        stager = Stager(tmp_path / "staging")

        with pytest.raises(ExtractionError) as exc_info:
            await stager.stage(bogus)

        assert exc_info.value.staged_path is not None
        await stager.unstage(exc_info.value.staged_path)
        assert list((tmp_path / "staging").iterdir()) == []

    @pytest.mark.asyncio
    async def test_path_traversal_entry_is_rejected(self, tmp_path):
        evil = make_tarball(tmp_path / "evil-1.0.0.tgz", {"../../escaped.txt": "gotcha"})
        stager = Stager(tmp_path / "staging")

        with pytest.raises(ExtractionError) as exc_info:
            await stager.stage(evil)

        assert not (tmp_path / "escaped.txt").exists()
        await stager.unstage(exc_info.value.staged_path)

    @pytest.mark.asyncio
    async def test_unstage_removes_tree(self, tmp_path, archive):
        stager = Stager(tmp_path / "staging")
        staged = await stager.stage(archive)

        await stager.unstage(staged)

        assert not staged.exists()

    @pytest.mark.asyncio
    async def test_unstage_missing_directory_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await Stager(tmp_path).unstage(tmp_path / "gone")


class TestDirectoryNames:
    def test_distinct_archives_never_collide(self, tmp_path):
        stager = Stager(tmp_path)
        assert stager.directory_name("/a/left-1.0.0.tgz") != stager.directory_name("/a/right-1.0.0.tgz")

    def test_salt_is_per_instance(self, tmp_path):
        assert Stager(tmp_path)._salt != Stager(tmp_path)._salt


class TestUncompressedSize:
    def test_reads_gzip_trailer(self, tmp_path):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            data = b"x" * 5000
            info = tarfile.TarInfo("package/big.js")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        raw = buffer.getvalue()
        path = tmp_path / "big-1.0.0.tgz"
        path.write_bytes(gzip.compress(raw))

        assert uncompressed_size(path) == len(raw)

    def test_plain_file_uses_its_size(self, tmp_path):
        path = tmp_path / "plain.tar"
        path.write_bytes(b"a" * 1234)
        assert uncompressed_size(path) == 1234
