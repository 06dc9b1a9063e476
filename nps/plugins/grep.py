"""
Regex line scanner

Applies each rule's pattern to every line of every eligible file. Files are
read line by line in a worker thread; over-long lines (minified bundles,
binary blobs) are skipped without being read into memory whole.
"""
import asyncio
import os
import re
from functools import lru_cache
from pathlib import PurePath
from typing import BinaryIO, Iterator, List, Optional, Pattern, Tuple

from loguru import logger

from nps.common.exceptions import RuleMatchError
from nps.plugins.base import BasePlugin, ScanTarget
from nps.schemas.finding import FindingPayload
from nps.schemas.ruleset import Rule

READ_CHUNK = 64 * 1024


@lru_cache(maxsize=None)
def compile_pattern(pattern: str) -> Pattern[str]:
    """Compiled patterns are shared across rules and files for the process lifetime."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleMatchError("invalid pattern", pattern=pattern, error=e) from e


def file_extension(path: str) -> str:
    """Text after the last dot of the basename, or "" when there is none."""
    parts = os.path.basename(path).split(".")
    return parts[-1].lower() if len(parts) > 1 else ""


def iter_lines(fh: BinaryIO, max_length: int) -> Iterator[Tuple[int, Optional[bytes]]]:
    """
    Yield `(line_number, line)` pairs, 1-based.

    Lines longer than `max_length` bytes are consumed in chunks and yielded as
    None so numbering stays aligned with the file.
    """
    # room for the longest allowed line plus "\r\n"
    limit = max_length + 2
    line_number = 0
    while True:
        line = fh.readline(limit)
        if not line:
            return
        line_number += 1
        if len(line) == limit and not line.endswith(b"\n"):
            # drain the remainder of the oversized line
            while line and not line.endswith(b"\n"):
                line = fh.readline(READ_CHUNK)
            yield line_number, None
            continue
        content = line.rstrip(b"\r\n")
        if len(content) > max_length:
            yield line_number, None
            continue
        yield line_number, content


class GrepPlugin(BasePlugin):
    name = "grep"

    def __init__(self, settings, rule_sets, emitter):
        super().__init__(settings, rule_sets, emitter)
        self.max_line_length = settings.grep_max_line_length
        self.max_excerpt_length = settings.grep_max_excerpt_length
        self.excluded_segments = frozenset(settings.grep_excluded_path_segments)

    async def scan(self, target: ScanTarget) -> None:
        if not self.rules:
            return
        for path in target.target_files:
            if self.is_excluded(path, target.root):
                continue
            rules = self.rules_for_file(path)
            if not rules:
                continue
            findings = await asyncio.to_thread(self.scan_file, path, rules, target)
            await self.emit_results(findings)

    def is_excluded(self, path: str, root: Optional[str] = None) -> bool:
        """Segment check on the part of `path` below the staged root."""
        if root:
            path = os.path.relpath(path, root)
        return any(part in self.excluded_segments for part in PurePath(path).parts)

    def rules_for_file(self, path: str) -> List[Rule]:
        """
        Rules that apply to `path`.

        An extension mismatch on any restricted rule disqualifies the whole
        file. A rule whose exclude pattern matches the containing directory is
        dropped on its own.
        """
        extension = file_extension(path)
        directory = os.path.dirname(path)
        applicable = []
        for rule in self.rules:
            if rule.restrict_extensions is not None and extension not in rule.restrict_extensions:
                return []
            if rule.exclude_filepaths and self._directory_excluded(rule, directory):
                continue
            applicable.append(rule)
        return applicable

    def _directory_excluded(self, rule: Rule, directory: str) -> bool:
        for pattern in rule.exclude_filepaths:
            try:
                if compile_pattern(pattern).search(directory):
                    return True
            except RuleMatchError as e:
                logger.warning(f"grep.exclude_pattern_error rule={rule.id} error={e}")
        return False

    def scan_file(self, path: str, rules: List[Rule], target: ScanTarget) -> List[FindingPayload]:
        """Match `rules` against one file. Runs in a worker thread."""
        compiled = []
        for rule in rules:
            try:
                compiled.append((rule, compile_pattern(rule.regex)))
            except RuleMatchError as e:
                logger.warning(f"grep.rule_error rule={rule.id} file={path} error={e}")

        findings: List[FindingPayload] = []
        if not compiled:
            return findings

        tarball_name = os.path.basename(target.tarball_path)
        try:
            with open(path, "rb") as fh:
                for line_number, raw in iter_lines(fh, self.max_line_length):
                    if raw is None:
                        continue
                    line = raw.decode("utf-8", errors="replace")
                    for rule, pattern in compiled:
                        if not pattern.search(line):
                            continue
                        excerpt = raw[: self.max_excerpt_length].decode("utf-8", errors="ignore")
                        findings.append(
                            FindingPayload(
                                found_by=self.name,
                                key=rule.id,
                                fancy_name=rule.fancy_name,
                                tarball_name=tarball_name,
                                package_name=target.name,
                                package_version=target.version,
                                file_path=path,
                                file_excerpt=excerpt,
                                line_number=line_number,
                            )
                        )
        except OSError as e:
            logger.warning(f"grep.read_error file={path} error={e}")
        return findings
