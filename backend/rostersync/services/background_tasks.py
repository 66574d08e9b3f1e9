from __future__ import annotations

import asyncio
import logging

from rostersync.core.config import settings
from rostersync.services.sync_runner import SyncRunner

logger = logging.getLogger(__name__)


async def _loop_worker(task_coro, interval: int, name: str) -> None:
    logger.info("%s worker started (interval=%ss)", name, interval)
    try:
        while True:
            try:
                await task_coro()
            except Exception:  # pragma: no cover
                logger.exception("%s worker encountered an error", name)
            await asyncio.sleep(interval)
    except asyncio.CancelledError:  # pragma: no cover
        logger.info("%s worker cancelled", name)
        raise


def start_background_tasks(runner: SyncRunner) -> list[asyncio.Task]:
    return [
        asyncio.create_task(
            _loop_worker(runner.run_sync, settings.SYNC_POLL_SECONDS, "battlenet-sync")
        ),
    ]
