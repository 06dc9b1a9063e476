"""
Plugin contract

A plugin receives the whole rule-set mapping at construction, keeps the rules
addressed to it, and reports matches through a `ResultEmitter` instead of
returning them, so large archives never buffer all findings in memory.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from nps.schemas.finding import FindingPayload
from nps.schemas.ruleset import Rule, RuleSet


@dataclass(frozen=True, slots=True)
class ScanTarget:
    """One staged archive, immutable for the duration of a scan."""

    name: Optional[str]
    version: Optional[str]
    tarball_path: str
    target_files: Tuple[str, ...]
    root: Optional[str] = None


class ResultEmitter:
    """
    Sends findings to the result queue in batches of at most `batch_size`.

    Each enqueue is awaited, so a store outage surfaces as a scan failure.
    """

    def __init__(self, queue, queue_name: str, batch_size: int = 10):
        self.queue = queue
        self.queue_name = queue_name
        self.batch_size = batch_size

    async def emit(self, findings: Sequence[FindingPayload]) -> int:
        """Returns the number of queue items written."""
        written = 0
        for start in range(0, len(findings), self.batch_size):
            batch = [f.to_wire() for f in findings[start:start + self.batch_size]]
            await self.queue.enqueue(self.queue_name, batch)
            written += 1
        return written


class BasePlugin(ABC):
    name: ClassVar[str]

    def __init__(self, settings, rule_sets: Dict[str, List[RuleSet]], emitter: ResultEmitter):
        self.settings = settings
        self.emitter = emitter
        self.rules: List[Rule] = [
            rule for rule_set in rule_sets.get(self.name.lower(), []) for rule in rule_set.rules
        ]
        logger.info(f"plugin.loaded name={self.name} rules={len(self.rules)}")

    @abstractmethod
    async def scan(self, target: ScanTarget) -> None:
        """Scan every file of `target`, emitting findings as they are found."""

    async def emit_results(self, findings: Sequence[FindingPayload]) -> None:
        if findings:
            await self.emitter.emit(findings)
