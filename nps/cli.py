"""
Command line entry point

Usage:
    nps run                  master (or the worker role named by NPS_WORKER_ROLE)
    nps worker [--role R]    one worker in the foreground
    nps enqueue PATH...      queue .tgz archives for scanning
    nps reap                 recover abandoned leases once
    nps stats                print queue depths
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from nps.common.exceptions import NpsError, StoreUnavailableError
from nps.common.logging import setup_logging
from nps.core.queue import WorkQueue
from nps.core.redis import RedisClient
from nps.core.settings import load_settings
from nps.core.supervisor import ROLE_ENV_VAR, ProcessSupervisor
from nps.workers import ROLES, run_worker


def collect_archives(paths: List[str]) -> List[str]:
    """Absolute paths of the .tgz files named or contained (one level) in `paths`."""
    archives = []
    for raw in paths:
        path = Path(raw).resolve()
        if path.is_dir():
            archives.extend(str(p) for p in sorted(path.iterdir()) if p.is_file() and p.suffix == ".tgz")
        elif path.is_file() and path.suffix == ".tgz":
            archives.append(str(path))
        else:
            logger.warning(f"enqueue.skipped path={raw}")
    return archives


async def preflight(settings, redis: RedisClient) -> List[str]:
    """Problems that would make every worker fail; empty when ready."""
    problems = []
    if not await redis.health_check():
        problems.append(f"queue store unreachable at {settings.redis_url}")

    staging = Path(settings.staging_path)
    try:
        staging.mkdir(parents=True, exist_ok=True)
        if not os.access(staging, os.W_OK):
            problems.append(f"staging path not writable: {staging}")
    except OSError as e:
        problems.append(f"staging path unusable: {staging} ({e})")

    if not Path(settings.ruleset_path).is_dir():
        problems.append(f"rule directory missing: {settings.ruleset_path}")
    return problems


async def run_master(settings) -> int:
    redis = RedisClient.from_settings(settings)
    try:
        problems = await preflight(settings, redis)
        if problems:
            for problem in problems:
                logger.error(f"preflight.failed {problem}")
            return 1
        supervisor = ProcessSupervisor(settings, WorkQueue.from_settings(redis.client, settings))
        supervisor.install_signal_handlers()
        await supervisor.run()
        return 0
    finally:
        await redis.close()


async def _with_queue(settings, action):
    redis = RedisClient.from_settings(settings)
    try:
        return await action(WorkQueue.from_settings(await redis.connect(), settings))
    finally:
        await redis.close()


def cmd_run(args, settings) -> int:
    role = os.environ.get(ROLE_ENV_VAR)
    if role:
        return cmd_worker(argparse.Namespace(role=role), settings)
    setup_logging(settings, "master")
    return asyncio.run(run_master(settings))


def cmd_worker(args, settings) -> int:
    role = args.role or os.environ.get(ROLE_ENV_VAR)
    if role not in ROLES:
        print(f"Error: worker role must be one of {', '.join(ROLES)} (got {role!r})", file=sys.stderr)
        return 2
    setup_logging(settings, role)
    asyncio.run(run_worker(role, settings))
    return 0


def cmd_enqueue(args, settings) -> int:
    setup_logging(settings, "cli")
    archives = collect_archives(args.paths)

    async def enqueue(queue: WorkQueue) -> int:
        for archive in archives:
            await queue.enqueue(settings.work_queue, archive)
        return len(archives)

    count = asyncio.run(_with_queue(settings, enqueue))
    print(f"Enqueued {count} archive(s) on {settings.work_queue}")
    return 0


def cmd_reap(args, settings) -> int:
    setup_logging(settings, "cli")

    async def reap(queue: WorkQueue) -> int:
        total = 0
        for name in (settings.work_queue, settings.result_queue):
            total += await queue.reap(name)
        return total

    print(f"Recovered {asyncio.run(_with_queue(settings, reap))} lease(s)")
    return 0


def cmd_stats(args, settings) -> int:
    async def stats(queue: WorkQueue) -> dict:
        return {name: await queue.stats(name) for name in (settings.work_queue, settings.result_queue)}

    print(json.dumps(asyncio.run(_with_queue(settings, stats)), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nps",
        description="Node package scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run
  %(prog)s enqueue /srv/mirror/tarballs
  NPS_WORKER_ROLE=scanner %(prog)s worker
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Start the master process")
    run_parser.set_defaults(func=cmd_run)

    worker_parser = subparsers.add_parser("worker", help="Run a single worker role")
    worker_parser.add_argument("--role", choices=ROLES, help=f"Defaults to ${ROLE_ENV_VAR}")
    worker_parser.set_defaults(func=cmd_worker)

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue archives for scanning")
    enqueue_parser.add_argument("paths", nargs="+", help=".tgz files or directories containing them")
    enqueue_parser.set_defaults(func=cmd_enqueue)

    reap_parser = subparsers.add_parser("reap", help="Requeue abandoned leases")
    reap_parser.set_defaults(func=cmd_reap)

    stats_parser = subparsers.add_parser("stats", help="Print queue depths")
    stats_parser.set_defaults(func=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        args = parser.parse_args(["run"])

    settings = load_settings()
    try:
        return args.func(args, settings)
    except StoreUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except NpsError as e:
        logger.error(f"cli.failed command={args.command} error={e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
