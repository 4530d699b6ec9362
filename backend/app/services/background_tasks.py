from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial

from app.core.config import settings
from app.services.realtime import PushChannelManager

logger = logging.getLogger(__name__)


async def _loop_worker(task_coro: Callable[[], Awaitable[object]], interval: float, name: str) -> None:
    logger.info("%s worker started (interval=%ss)", name, interval)
    try:
        while True:
            try:
                await task_coro()
            except Exception:
                logger.exception("%s worker encountered an error", name)
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("%s worker cancelled", name)
        raise


def start_background_tasks(channels: PushChannelManager) -> list[asyncio.Task]:
    from app.services.alarm_scheduler import run_alarm_scan

    return [
        asyncio.create_task(
            _loop_worker(partial(run_alarm_scan, channels), settings.ALARM_POLL_SECONDS, "alarm-scan"),
            name="alarm-scan",
        ),
    ]


async def stop_background_tasks(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    # Workers re-raise CancelledError once they have logged it
    await asyncio.gather(*tasks, return_exceptions=True)
