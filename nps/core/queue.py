"""
Durable work queue on Redis lists

A logical queue `name` maps to three lists:

    {name}_waiting      ready items (FIFO: RPUSH / BLPOP)
    {name}_processing   leased items, stamped with `started` and a lease token
    {name}_dead         items that exhausted their retries or failed fatally

Items are matched by their exact serialized value (LREM), so the lease token
stamped on dequeue doubles as a fencing value: once the reaper has recovered a
lease, a late ack/fail from the original holder matches nothing and is rejected.
"""
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

import redis.asyncio as redis_async
from loguru import logger
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from nps.common.exceptions import StoreUnavailableError
from nps.schemas.work_item import WorkItem, new_lease_token

INBOX_SUFFIX = "_waiting"
PROCESSING_SUFFIX = "_processing"
DEAD_SUFFIX = "_dead"


@contextmanager
def _store_errors(operation: str, queue_name: str) -> Iterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, OSError) as e:
        raise StoreUnavailableError("queue store unavailable", operation=operation, queue=queue_name, error=e) from e


class WorkQueue:
    """At-least-once queue with bounded retries and a dead-letter list."""

    def __init__(
        self,
        redis: redis_async.Redis,
        max_retries: int = 3,
        lease_timeout_seconds: float = 300,
        dequeue_timeout_seconds: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.max_retries = max_retries
        self.lease_timeout_seconds = lease_timeout_seconds
        self.dequeue_timeout_seconds = dequeue_timeout_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, redis: redis_async.Redis, settings) -> "WorkQueue":
        return cls(
            redis,
            max_retries=settings.queue_max_retries,
            lease_timeout_seconds=settings.queue_lease_timeout_seconds,
            dequeue_timeout_seconds=settings.queue_dequeue_timeout_seconds,
        )

    @staticmethod
    def inbox(queue_name: str) -> str:
        return queue_name + INBOX_SUFFIX

    @staticmethod
    def processing(queue_name: str) -> str:
        return queue_name + PROCESSING_SUFFIX

    @staticmethod
    def dead(queue_name: str) -> str:
        return queue_name + DEAD_SUFFIX

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def enqueue(self, queue_name: str, payload: Any) -> None:
        """Wrap `payload` in a fresh item and append it to the inbox."""
        item = WorkItem(data=payload)
        with _store_errors("enqueue", queue_name):
            await self.redis.rpush(self.inbox(queue_name), item.to_json())

    async def dequeue(self, queue_name: str, timeout: Optional[int] = None) -> Optional[WorkItem]:
        """
        Lease the next item, waiting up to `timeout` seconds.

        Returns None when nothing arrived in time. Undecodable entries are moved
        straight to the dead list and the wait continues with the next call.
        """
        if timeout is None:
            timeout = self.dequeue_timeout_seconds

        with _store_errors("dequeue", queue_name):
            popped = await self.redis.blpop([self.inbox(queue_name)], timeout=timeout)
        if popped is None:
            return None

        _, raw = popped
        try:
            item = WorkItem.from_json(raw)
        except ValidationError as e:
            logger.error(f"queue.corrupt_item queue={queue_name} error={e.errors()[0]['msg']}")
            with _store_errors("dequeue", queue_name):
                await self.redis.rpush(self.dead(queue_name), raw)
            return None

        item.started = self._now_ms()
        item.lease = new_lease_token()
        with _store_errors("dequeue", queue_name):
            await self.redis.rpush(self.processing(queue_name), item.to_json())
        return item

    async def ack(self, queue_name: str, item: WorkItem) -> bool:
        """
        Remove a leased item for good.

        Returns False when the lease was no longer held (already acked, or
        recovered by the reaper); that is not an error.
        """
        with _store_errors("ack", queue_name):
            removed = await self.redis.lrem(self.processing(queue_name), 0, item.to_json())
        if not removed:
            logger.warning(f"queue.ack_stale queue={queue_name} id={item.id} lease={item.lease}")
            return False
        return True

    async def fail(self, queue_name: str, item: WorkItem, immediate: bool = False) -> bool:
        """
        Release a lease after a failure.

        The item goes back to the end of the inbox with `retries + 1`, or to the
        dead list when `immediate` is set or retries exceed the maximum. A stale
        lease is rejected without requeueing.
        """
        return await self._release(queue_name, item.to_json(), item, immediate)

    async def _release(self, queue_name: str, raw: str, item: WorkItem, immediate: bool) -> bool:
        with _store_errors("fail", queue_name):
            removed = await self.redis.lrem(self.processing(queue_name), 0, raw)
        if not removed:
            logger.warning(f"queue.fail_stale queue={queue_name} id={item.id} lease={item.lease}")
            return False

        retry = item.model_copy(update={"retries": item.retries + 1, "started": None, "lease": None})
        if immediate or retry.retries > self.max_retries:
            target = self.dead(queue_name)
            logger.warning(
                f"queue.dead_letter queue={queue_name} id={item.id} retries={retry.retries} immediate={immediate}"
            )
        else:
            target = self.inbox(queue_name)
            logger.info(f"queue.requeue queue={queue_name} id={item.id} retries={retry.retries}")

        with _store_errors("fail", queue_name):
            await self.redis.rpush(target, retry.to_json())
        return True

    async def reap(self, queue_name: str) -> int:
        """
        Recover abandoned leases.

        Every processing entry older than the lease timeout (or without a start
        stamp) is failed through the normal retry path. Returns how many leases
        were recovered.
        """
        with _store_errors("reap", queue_name):
            entries = await self.redis.lrange(self.processing(queue_name), 0, -1)

        now = self._now_ms()
        timeout_ms = self.lease_timeout_seconds * 1000
        recovered = 0

        for raw in entries:
            try:
                item = WorkItem.from_json(raw)
            except ValidationError:
                logger.error(f"queue.reap_corrupt queue={queue_name}")
                with _store_errors("reap", queue_name):
                    if await self.redis.lrem(self.processing(queue_name), 0, raw):
                        await self.redis.rpush(self.dead(queue_name), raw)
                continue

            if item.started is not None and now - item.started <= timeout_ms:
                continue

            if await self._release(queue_name, raw, item, immediate=False):
                recovered += 1

        if recovered:
            logger.info(f"queue.reap queue={queue_name} recovered={recovered}")
        return recovered

    async def stats(self, queue_name: str) -> Dict[str, int]:
        with _store_errors("stats", queue_name):
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.llen(self.inbox(queue_name))
                pipe.llen(self.processing(queue_name))
                pipe.llen(self.dead(queue_name))
                waiting, processing, dead = await pipe.execute()
        return {"waiting": waiting, "processing": processing, "dead": dead}
