"""
Transaction helpers for order writes.

atomic_transaction() wraps one unit of work (a compare-and-set plus its outbox
row) in a session that commits on success and rolls back on any error.
with_retry() re-runs an async call on transient failures with exponential
backoff; it is used for SQLite lock errors and for payment gateway calls.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncIterator, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

import db
from db import session_commit, session_rollback

logger = logging.getLogger(__name__)


class TransactionManager:
    # Units of work slower than this are logged (seconds)
    SLOW_TRANSACTION_SECONDS = 5

    DEFAULT_RETRIES = 3
    DEFAULT_BACKOFF_SECONDS = 0.1

    @staticmethod
    @asynccontextmanager
    async def atomic_transaction(label: str = "transaction",
                                 slow_after: Optional[float] = None) -> AsyncIterator[AsyncSession]:
        """
        Run the enclosed block as one committed unit.

        Usage:
            async with TransactionManager.atomic_transaction("order 12 cancel") as session:
                await OrderRepository.compare_and_set(..., session)

        Errors raised inside the block roll the session back and propagate unchanged.
        """
        slow_after = slow_after or TransactionManager.SLOW_TRANSACTION_SECONDS
        started = time.monotonic()

        async with db.get_db_session() as session:
            try:
                yield session
                await session_commit(session)
            except Exception as e:
                try:
                    await session_rollback(session)
                except Exception as rollback_error:
                    logger.critical(f"[{label}] Rollback failed after {e!r}: {rollback_error!r}")
                else:
                    logger.debug(f"[{label}] Rolled back: {e!r}")
                raise

        elapsed = time.monotonic() - started
        if elapsed > slow_after:
            logger.warning(f"[{label}] Slow transaction: {elapsed:.2f}s (threshold {slow_after}s)")

    @staticmethod
    def with_retry(max_retries: Optional[int] = None, delay_base: Optional[float] = None,
                   retry_on: tuple[type[BaseException], ...] = (OperationalError,)):
        """
        Decorate an async callable so transient errors are retried.

        The call runs at most max_retries + 1 times, sleeping delay_base * 2**n
        between attempts. Exceptions outside retry_on propagate immediately; once
        the retries are used up the last transient error is re-raised.
        """
        retries = TransactionManager.DEFAULT_RETRIES if max_retries is None else max_retries
        backoff = TransactionManager.DEFAULT_BACKOFF_SECONDS if delay_base is None else delay_base

        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                attempt = 0
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except retry_on as e:
                        if attempt >= retries:
                            logger.error(f"{func.__name__} still failing after {attempt + 1} attempt(s): {e!r}")
                            raise
                        delay = backoff * (2 ** attempt)
                        attempt += 1
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt}/{retries + 1}), "
                            f"retrying in {delay:.2f}s: {e!r}"
                        )
                        await asyncio.sleep(delay)

            return wrapper
        return decorator
