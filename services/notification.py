import asyncio
import json
import logging
from typing import Protocol

import aiohttp

import config
import db
from enums.notification_event import NotificationEvent
from repositories.order_notification import OrderNotificationRepository
from utils.transaction_manager import TransactionManager

logger = logging.getLogger(__name__)


class OrderNotifier(Protocol):
    async def notify(self, event: NotificationEvent, payload: dict) -> None:
        """Deliver one notification. Raises on failure."""
        ...


class LoggingNotifier:
    """Notifier used when no document/email service is configured."""

    async def notify(self, event: NotificationEvent, payload: dict) -> None:
        logger.info(f"[Notification] {event.value} for order {payload.get('order_id')}: {json.dumps(payload, default=str)}")


class WebhookNotifier:
    """POSTs notifications as JSON to the document/email service."""

    def __init__(self, url: str, timeout_seconds: float = 10):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def notify(self, event: NotificationEvent, payload: dict) -> None:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.url, json={"event": event.value, "data": payload}) as response:
                response.raise_for_status()


def build_notifier() -> OrderNotifier:
    if config.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotifier(config.NOTIFICATION_WEBHOOK_URL)
    return LoggingNotifier()


class NotificationDispatcher:
    """
    Delivers outbox notifications after the triggering transition committed.

    Delivery runs in background tasks with bounded exponential backoff; failures are
    recorded on the outbox row and picked up again by the retry job. Nothing here
    ever raises into the caller of dispatch().

    A row has at most one deliverer at a time: ids being delivered are held in
    an in-flight set, and deliver() or the retry pass skip them.
    """

    def __init__(self, notifier: OrderNotifier | None = None, max_retries: int | None = None,
                 retry_delay_seconds: float | None = None):
        self.notifier = notifier or build_notifier()
        self.max_retries = config.NOTIFICATION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay_seconds = (
            config.NOTIFICATION_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self._tasks: set[asyncio.Task] = set()
        self._in_flight: set[int] = set()

    def is_in_flight(self, notification_id: int) -> bool:
        return notification_id in self._in_flight

    def dispatch(self, notification_id: int) -> asyncio.Task:
        """Schedule delivery of an outbox row without waiting for it."""
        # Claimed before the task is scheduled; released when it finishes
        self._in_flight.add(notification_id)
        task = asyncio.create_task(self._deliver_claimed(notification_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(self, notification_id: int) -> bool:
        """
        Try to deliver one outbox row, retrying up to max_retries times.

        Returns:
            True if delivered (now or earlier), False if all attempts failed or
            another delivery of the same row is still running
        """
        if notification_id in self._in_flight:
            logger.debug(f"[Notification] Outbox row {notification_id} is already being delivered, skipped")
            return False
        self._in_flight.add(notification_id)
        return await self._deliver_claimed(notification_id)

    async def _deliver_claimed(self, notification_id: int) -> bool:
        try:
            return await self._attempt_delivery(notification_id)
        finally:
            self._in_flight.discard(notification_id)

    async def _attempt_delivery(self, notification_id: int) -> bool:
        async with db.get_db_session() as session:
            notification = await OrderNotificationRepository.get_by_id(notification_id, session)
        if notification is None:
            logger.error(f"[Notification] Outbox row {notification_id} not found")
            return False
        if notification.delivered_at is not None:
            return True

        payload = json.loads(notification.payload_json)
        attempts = notification.attempts
        for retry in range(self.max_retries):
            attempts += 1
            try:
                await self.notifier.notify(notification.event, payload)
            except Exception as e:
                logger.warning(
                    f"[Notification] ⚠️ {notification.event.value} for order {notification.order_id} "
                    f"failed (attempt {attempts}): {e!r}"
                )
                async with TransactionManager.atomic_transaction(f"notification {notification_id}") as session:
                    await OrderNotificationRepository.mark_failed(notification_id, attempts, repr(e), session)
                if retry < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay_seconds * (2 ** retry))
                continue

            async with TransactionManager.atomic_transaction(f"notification {notification_id}") as session:
                await OrderNotificationRepository.mark_delivered(notification_id, attempts, session)
            logger.info(f"[Notification] ✅ {notification.event.value} delivered for order {notification.order_id}")
            return True

        logger.error(
            f"[Notification] ❌ {notification.event.value} for order {notification.order_id} "
            f"undelivered after {attempts} attempt(s)"
        )
        return False

    async def retry_undelivered(self, max_total_attempts: int | None = None) -> int:
        """Redeliver outbox rows left undelivered. Returns the number delivered."""
        max_total_attempts = max_total_attempts or self.max_retries * 5
        async with db.get_db_session() as session:
            undelivered = await OrderNotificationRepository.get_undelivered(max_total_attempts, session)
        pending = [notification for notification in undelivered if not self.is_in_flight(notification.id)]
        if len(pending) < len(undelivered):
            logger.debug(f"[Notification] {len(undelivered) - len(pending)} row(s) still in flight, left to their task")

        delivered = 0
        for notification in pending:
            if await self.deliver(notification.id):
                delivered += 1
        if pending:
            logger.info(f"[Notification] Retry pass delivered {delivered}/{len(pending)} notification(s)")
        return delivered

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
