"""
NotificationDispatcher Unit Tests

Delivery, bounded retries and redelivery of outbox rows.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

import db
from conftest import RecordingNotifier
from enums.currency import Currency
from enums.notification_event import NotificationEvent
from enums.order_status import OrderStatus
from jobs.notification_retry_job import run_retry_cycle
from models.order import OrderDTO
from models.order_notification import OrderNotificationDTO
from repositories.order import OrderRepository
from repositories.order_notification import OrderNotificationRepository
from services.notification import LoggingNotifier, NotificationDispatcher, WebhookNotifier, build_notifier
from utils.transaction_manager import TransactionManager


@pytest_asyncio.fixture
async def notification_id(test_engine):
    """One undelivered ORDER_PAID outbox row for a paid order."""
    async with TransactionManager.atomic_transaction() as session:
        order_id = await OrderRepository.create(OrderDTO(
            user_id="user-1",
            status=OrderStatus.PAID,
            total_amount_minor=11000,
            currency=Currency.USD,
            version=3,
            cart_snapshot_json='{"lines": []}',
            breakdown_json="{}",
        ), session)
        return_id = await OrderNotificationRepository.create(OrderNotificationDTO(
            order_id=order_id,
            event=NotificationEvent.ORDER_PAID,
            payload_json=json.dumps({"order_id": order_id, "status": "paid"}),
        ), session)
    return return_id


async def load(notification_id: int) -> OrderNotificationDTO:
    async with db.get_db_session() as session:
        return await OrderNotificationRepository.get_by_id(notification_id, session)


class TestDeliver:

    @pytest.mark.asyncio
    async def test_successful_delivery_marks_row(self, notification_id):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_retries=3, retry_delay_seconds=0)

        assert await dispatcher.deliver(notification_id) is True

        row = await load(notification_id)
        assert row.delivered_at is not None
        assert row.attempts == 1
        assert notifier.sent == [(NotificationEvent.ORDER_PAID, {"order_id": row.order_id, "status": "paid"})]

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, notification_id):
        notifier = RecordingNotifier(failures=2)
        dispatcher = NotificationDispatcher(notifier, max_retries=3, retry_delay_seconds=0)

        assert await dispatcher.deliver(notification_id) is True

        row = await load(notification_id)
        assert row.attempts == 3
        assert row.last_error is None

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, notification_id):
        notifier = RecordingNotifier(failures=10)
        dispatcher = NotificationDispatcher(notifier, max_retries=3, retry_delay_seconds=0)

        assert await dispatcher.deliver(notification_id) is False

        row = await load(notification_id)
        assert row.delivered_at is None
        assert row.attempts == 3
        assert "ConnectionError" in row.last_error

    @pytest.mark.asyncio
    async def test_already_delivered_row_is_not_sent_again(self, notification_id):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_retries=3, retry_delay_seconds=0)
        await dispatcher.deliver(notification_id)

        assert await dispatcher.deliver(notification_id) is True
        assert notifier.attempts == 1

    @pytest.mark.asyncio
    async def test_missing_row(self, test_engine):
        dispatcher = NotificationDispatcher(RecordingNotifier(), retry_delay_seconds=0)

        assert await dispatcher.deliver(12345) is False

    @pytest.mark.asyncio
    async def test_dispatch_runs_in_background(self, notification_id):
        notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(notifier, max_retries=1, retry_delay_seconds=0)

        dispatcher.dispatch(notification_id)
        await dispatcher.drain()

        assert len(notifier.sent) == 1


class TestRedelivery:

    @pytest.mark.asyncio
    async def test_retry_cycle_delivers_leftovers(self, notification_id):
        failing = NotificationDispatcher(RecordingNotifier(failures=10), max_retries=1, retry_delay_seconds=0)
        await failing.deliver(notification_id)

        recovered = RecordingNotifier()
        delivered = await run_retry_cycle(NotificationDispatcher(recovered, max_retries=1, retry_delay_seconds=0))

        assert delivered == 1
        assert len(recovered.sent) == 1
        assert (await load(notification_id)).attempts == 2

    @pytest.mark.asyncio
    async def test_retry_pass_skips_row_still_backing_off(self, notification_id):
        """A dispatched delivery sleeping between attempts keeps its row."""
        notifier = RecordingNotifier(failures=1)
        dispatcher = NotificationDispatcher(notifier, max_retries=3, retry_delay_seconds=0.3)

        dispatcher.dispatch(notification_id)
        await asyncio.sleep(0.05)
        assert dispatcher.is_in_flight(notification_id)

        delivered = await dispatcher.retry_undelivered()
        await dispatcher.drain()

        assert delivered == 0
        assert len(notifier.sent) == 1
        assert notifier.attempts == 2
        assert not dispatcher.is_in_flight(notification_id)
        assert (await load(notification_id)).delivered_at is not None

    @pytest.mark.asyncio
    async def test_second_deliver_of_same_row_is_skipped(self, notification_id):
        notifier = RecordingNotifier(failures=1)
        dispatcher = NotificationDispatcher(notifier, max_retries=2, retry_delay_seconds=0.2)

        first = asyncio.create_task(dispatcher.deliver(notification_id))
        await asyncio.sleep(0.05)

        assert await dispatcher.deliver(notification_id) is False
        assert await first is True
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_retry_cycle_swallows_errors(self):
        dispatcher = NotificationDispatcher(RecordingNotifier())
        dispatcher.retry_undelivered = AsyncMock(side_effect=RuntimeError("database locked"))

        assert await run_retry_cycle(dispatcher) == 0


def test_build_notifier_without_url_logs(monkeypatch):
    monkeypatch.setattr("config.NOTIFICATION_WEBHOOK_URL", "")
    assert isinstance(build_notifier(), LoggingNotifier)

    monkeypatch.setattr("config.NOTIFICATION_WEBHOOK_URL", "https://docs.example.com/hooks/orders")
    notifier = build_notifier()
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.url == "https://docs.example.com/hooks/orders"
