"""Notification Retry Job

Redelivers order notifications whose in-process delivery failed:
- Picks up outbox rows that are not delivered yet
- Retries them through the NotificationDispatcher
- Gives up on a row after a bounded number of total attempts

Runs periodically so a notification outage never loses a paid-order document.
"""

import asyncio
import logging
from datetime import datetime, timedelta

import config
from services.notification import NotificationDispatcher

logger = logging.getLogger(__name__)


async def run_retry_cycle(dispatcher: NotificationDispatcher) -> int:
    """Run one redelivery pass.

    Returns:
        Number of notifications delivered in this pass
    """
    try:
        return await dispatcher.retry_undelivered()
    except Exception as e:
        logger.error(f"[Notification Retry] ❌ Retry pass failed: {e}", exc_info=True)
        return 0


async def notification_retry_scheduler(dispatcher: NotificationDispatcher, interval_seconds: int | None = None):
    """Scheduler that runs redelivery passes at configured intervals.

    This function runs indefinitely and should be started as a background task.
    """
    interval_seconds = interval_seconds or config.NOTIFICATION_RETRY_INTERVAL_SECONDS
    logger.info(f"[Notification Retry] Scheduler started (interval: {interval_seconds}s)")

    while True:
        try:
            logger.debug(
                f"[Notification Retry] Next pass at "
                f"{(datetime.now() + timedelta(seconds=interval_seconds)).strftime('%Y-%m-%d %H:%M:%S')}"
            )
            await asyncio.sleep(interval_seconds)
            await run_retry_cycle(dispatcher)

        except asyncio.CancelledError:
            logger.info("[Notification Retry] Scheduler stopped")
            break
