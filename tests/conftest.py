"""
Pytest configuration and fixtures for tests.

This file is automatically loaded by pytest and provides shared fixtures
and configuration for all tests.
"""

import asyncio
import os
import sys

import pytest
import pytest_asyncio

# Add parent directory to Python path so tests can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Configure the environment before config.py is imported anywhere
os.environ["RUNTIME_ENVIRONMENT"] = "test"
os.environ["CURRENCY"] = "USD"
os.environ["PRICING_MODE"] = "full"
os.environ["TIER_DISCOUNTS"] = "50:0.15,20:0.10,10:0.05"
os.environ["SUBSCRIPTION_DISCOUNT_RATE"] = "0.10"
os.environ["SHIPPING_TIERS"] = "0:3000,20000:2000,50000:0"
os.environ["TAX_RATE"] = "0"
os.environ["PRICE_TOLERANCE"] = "0.01"
os.environ["ADMIN_API_KEY"] = "test-admin-key-0123456789"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy000000"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_testsecret000000"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"

import db
from enums.payment_verification_status import PaymentVerificationStatus
from enums.notification_event import NotificationEvent
from models.payment import PaymentVerificationDTO
from utils.catalog_loader import load_catalog


class FakePaymentGateway:
    """Gateway double answering with a fixed status; records every verify() call."""

    def __init__(self, status: PaymentVerificationStatus = PaymentVerificationStatus.CONFIRMED,
                 amount_minor: int | None = None, failure_reason: str | None = None, delay: float = 0):
        self.status = status
        self.amount_minor = amount_minor
        self.failure_reason = failure_reason
        self.delay = delay
        self.calls: list[tuple[int, str]] = []

    async def verify(self, amount_minor: int, payment_ref: str) -> PaymentVerificationDTO:
        self.calls.append((amount_minor, payment_ref))
        if self.delay:
            await asyncio.sleep(self.delay)
        return PaymentVerificationDTO(
            status=self.status,
            payment_ref=payment_ref,
            amount_minor=amount_minor if self.amount_minor is None else self.amount_minor,
            failure_reason=self.failure_reason,
        )


class RecordingNotifier:
    """Notifier double; fails the first `failures` calls."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent: list[tuple[NotificationEvent, dict]] = []
        self.attempts = 0

    async def notify(self, event: NotificationEvent, payload: dict) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("document service unavailable")
        self.sent.append((event, payload))


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def db_url(tmp_path):
    # File database: concurrent sessions must see each other's commits
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def test_engine(db_url):
    """Fresh SQLite database per test with all tables created."""
    engine = db.configure_engine(db_url)
    await db.create_db_and_tables()

    yield engine

    await engine.dispose()
