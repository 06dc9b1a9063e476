"""
Master process

Forks the configured number of scanner, reporter and UI workers, replaces any
child that exits, and periodically reaps abandoned leases on both queues.
Children are separate interpreters started with their role in the
environment; there is no supervisor inside a worker.
"""
import asyncio
import os
import signal
import sys
import time
from collections import defaultdict, deque
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from loguru import logger

from nps.common.exceptions import StoreUnavailableError
from nps.core.queue import WorkQueue

ROLE_ENV_VAR = "NPS_WORKER_ROLE"


class WorkerRole(str, Enum):
    SCANNER = "scanner"
    REPORTER = "reporter"
    UI = "ui"


async def launch_worker(role: WorkerRole) -> asyncio.subprocess.Process:
    """Start `python -m nps worker` with the role in its environment."""
    env = {**os.environ, ROLE_ENV_VAR: role.value}
    return await asyncio.create_subprocess_exec(sys.executable, "-m", "nps", "worker", env=env)


def describe_exit(returncode: Optional[int]) -> str:
    if returncode is None:
        return "unknown"
    if returncode < 0:
        try:
            return f"signal={signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal={-returncode}"
    return f"code={returncode}"


class RestartPolicy:
    """
    Caps respawns per role within a rolling window.

    Over the cap, a respawn is delayed until the oldest restart in the window
    ages out. Respawns are postponed, never abandoned.
    """

    def __init__(self, max_restarts: int = 5, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.max_restarts = max_restarts
        self.window_seconds = window_seconds
        self._clock = clock
        self._history: Dict[str, Deque[float]] = defaultdict(deque)

    def next_delay(self, role: str) -> float:
        """Record a restart of `role` and return how long to wait before it."""
        now = self._clock()
        history = self._history[role]
        while history and history[0] <= now - self.window_seconds:
            history.popleft()

        if len(history) < self.max_restarts:
            history.append(now)
            return 0.0

        delay = history[0] + self.window_seconds - now
        history.popleft()
        history.append(now + delay)
        return delay


Launcher = Callable[[WorkerRole], Awaitable[asyncio.subprocess.Process]]


class ProcessSupervisor:
    def __init__(
        self,
        settings,
        queue: WorkQueue,
        launcher: Launcher = launch_worker,
        policy: Optional[RestartPolicy] = None,
    ):
        self.settings = settings
        self.queue = queue
        self._launcher = launcher
        self.policy = policy or RestartPolicy(settings.restart_max_per_window, settings.restart_window_seconds)
        self.children: Dict[int, WorkerRole] = {}
        self._processes: Dict[int, asyncio.subprocess.Process] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    def planned_roles(self) -> List[WorkerRole]:
        roles = [WorkerRole.SCANNER] * self.settings.scanner_processes
        roles += [WorkerRole.REPORTER] * self.settings.reporter_processes
        if self.settings.enable_ui:
            roles.append(WorkerRole.UI)
        return roles

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def spawn(self, role: WorkerRole) -> asyncio.subprocess.Process:
        process = await self._launcher(role)
        self.children[process.pid] = role
        self._processes[process.pid] = process
        logger.info(f"supervisor.spawned role={role.value} pid={process.pid}")
        self._track(self._watch(process))
        return process

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        role = self.children.pop(process.pid, None)
        self._processes.pop(process.pid, None)
        if role is None:
            return
        if self._stopping.is_set():
            logger.info(f"supervisor.child_exited role={role.value} pid={process.pid} {describe_exit(returncode)}")
            return
        logger.warning(f"supervisor.child_exited role={role.value} pid={process.pid} {describe_exit(returncode)}")
        await self._respawn(role)

    async def _respawn(self, role: WorkerRole) -> None:
        while not self._stopping.is_set():
            delay = self.policy.next_delay(role.value)
            if delay > 0:
                logger.warning(f"supervisor.respawn_backoff role={role.value} delay={delay:.1f}s")
                if await self._wait_stopping(delay):
                    return
            try:
                await self.spawn(role)
                return
            except OSError as e:
                logger.error(f"supervisor.spawn_failed role={role.value} error={e}")

    async def _wait_stopping(self, timeout: float) -> bool:
        """Sleep up to `timeout`; True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def reap_queues(self) -> int:
        recovered = 0
        for queue_name in (self.settings.work_queue, self.settings.result_queue):
            try:
                recovered += await self.queue.reap(queue_name)
            except StoreUnavailableError as e:
                logger.error(f"supervisor.reap_failed queue={queue_name} error={e}")
            except Exception:
                logger.opt(exception=True).error(f"supervisor.reap_failed queue={queue_name}")
        return recovered

    async def _reap_periodically(self) -> None:
        while True:
            await self.reap_queues()
            if await self._wait_stopping(self.settings.queue_reap_interval_seconds):
                return

    def request_stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("supervisor.stopping")
        self._stopping.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)

    async def start(self) -> None:
        for role in self.planned_roles():
            await self.spawn(role)
        self._track(self._reap_periodically())

    async def run(self) -> None:
        """Start the pool and supervise it until a stop is requested."""
        await self.start()
        logger.info(f"supervisor.running children={len(self.children)}")
        await self._stopping.wait()
        await self.shutdown()

    async def shutdown(self) -> None:
        self._stopping.set()
        processes = list(self._processes.values())
        for process in processes:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        if processes:
            _, pending = await asyncio.wait(
                [asyncio.ensure_future(p.wait()) for p in processes],
                timeout=self.settings.shutdown_grace_seconds,
            )
            if pending:
                logger.warning(f"supervisor.killing remaining={len(pending)}")
                for process in processes:
                    if process.returncode is None:
                        try:
                            process.kill()
                        except ProcessLookupError:
                            pass
                await asyncio.gather(*pending, return_exceptions=True)

        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.children.clear()
        self._processes.clear()
        logger.info("supervisor.stopped")
