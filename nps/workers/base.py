"""
Queue-draining worker loop shared by the scanner and reporter roles
"""
import asyncio
import signal
from abc import ABC, abstractmethod

from loguru import logger

from nps.common.exceptions import StoreUnavailableError
from nps.core.queue import WorkQueue
from nps.schemas.work_item import WorkItem


class QueueWorker(ABC):
    """
    Leases items from one queue and hands them to `process` until stopped.

    The blocking pop returns at least every dequeue timeout, which is when a
    pending stop request is noticed. An item in hand is always finished first.
    """

    role: str = "worker"

    def __init__(self, queue: WorkQueue, queue_name: str):
        self.queue = queue
        self.queue_name = queue_name
        self.running = False
        self.processed = 0

    def stop(self, *_args) -> None:
        if self.running:
            logger.info(f"{self.role}.stopping")
        self.running = False

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.stop)

    async def run(self) -> None:
        """Poll until stopped. An item whose `process` raises is failed; `StoreUnavailableError` is left to crash the process."""
        self.running = True
        logger.info(f"{self.role}.started queue={self.queue_name}")
        while self.running:
            item = await self.queue.dequeue(self.queue_name)
            if item is None:
                continue
            try:
                await self.process(item)
            except StoreUnavailableError:
                raise
            except Exception:
                logger.opt(exception=True).error(f"{self.role}.item_crashed id={item.id}")
                await self.queue.fail(self.queue_name, item)
            self.processed += 1
        logger.info(f"{self.role}.stopped processed={self.processed}")

    @abstractmethod
    async def process(self, item: WorkItem) -> bool:
        """Handle one leased item; must ack or fail it. Returns True on success."""
