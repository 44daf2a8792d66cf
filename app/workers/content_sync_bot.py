# app/workers/content_sync_bot.py
"""
Content Sync Bot: keeps the local fallback files in step with the remote store.

Each cycle:
- rewrites the raw local store from the full remote collection
- optionally rewrites the snapshot as well (``--with-snapshot``)

Both steps report a ``SyncResult`` and never raise, so a cycle with the
remote store down just logs and waits for the next one.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import uuid
from typing import Dict, Optional

import structlog

from app.core.logging import configure_logging, get_logger
from services.content_resolver import ContentResolver, build_content_resolver
from services.db_service import close_pool

configure_logging(service_name="worker")
logger = get_logger()
logger = logger.bind(worker="content_sync_bot")

_shutdown_requested = False


def _signal_handler(signum, frame) -> None:
    global _shutdown_requested
    logger.info("content_sync_bot_shutdown_requested", signal=signum)
    _shutdown_requested = True


async def run_sync_once(
    resolver: ContentResolver,
    *,
    with_snapshot: bool = False,
) -> Dict[str, object]:
    local = await resolver.sync_local()
    result: Dict[str, object] = {
        "local_success": local.success,
        "local_count": local.count,
        "local_error": local.error,
    }
    if with_snapshot:
        snap = await resolver.refresh_snapshot()
        result.update(
            snapshot_success=snap.success,
            snapshot_count=snap.count,
            snapshot_error=snap.error,
        )
    return result


async def run_sync_loop(
    resolver: ContentResolver,
    *,
    interval: int = 3600,
    with_snapshot: bool = False,
    max_iterations: Optional[int] = None,
) -> None:
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("content_sync_bot_started", interval=interval, with_snapshot=with_snapshot)
    iteration = 0
    try:
        while not _shutdown_requested:
            if max_iterations and iteration >= max_iterations:
                logger.info("content_sync_bot_max_iterations_reached", iterations=iteration)
                break
            iteration += 1
            result = await run_sync_once(resolver, with_snapshot=with_snapshot)
            logger.info("content_sync_bot_iteration_complete", iteration=iteration, **result)

            if not _shutdown_requested:
                logger.debug("content_sync_bot_sleeping", seconds=interval)
                await asyncio.sleep(interval)
    finally:
        logger.info("content_sync_bot_shutdown")


async def main_async(args: argparse.Namespace) -> None:
    structlog.contextvars.bind_contextvars(run_id=uuid.uuid4().hex)
    resolver = build_content_resolver()
    try:
        if args.once:
            result = await run_sync_once(resolver, with_snapshot=args.with_snapshot)
            logger.info("content_sync_bot_complete", **result)
        else:
            await run_sync_loop(
                resolver,
                interval=args.interval,
                with_snapshot=args.with_snapshot,
                max_iterations=args.max_iterations,
            )
    finally:
        await close_pool()
        structlog.contextvars.clear_contextvars()


def _parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Content Sync Bot - refresh the local fallback files from the remote store"
    )
    parser.add_argument("--once", action="store_true", help="Run one sync and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=3600,
        help="Seconds between syncs (default: 3600)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Stop after this many syncs (default: run until stopped)",
    )
    parser.add_argument(
        "--with-snapshot",
        action="store_true",
        help="Also rewrite the snapshot file",
    )
    return parser.parse_args(argv)


def main() -> None:
    asyncio.run(main_async(_parse_args()))


if __name__ == "__main__":
    main()
