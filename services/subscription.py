import logging
from datetime import datetime
from typing import Protocol

import db
from repositories.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)

SUBSCRIBER_TIER = "pro"


class SubscriptionResolver(Protocol):
    async def is_subscriber(self, user_id: str) -> bool:
        ...


class DatabaseSubscriptionResolver:
    """Resolves subscriber status from the subscriptions table at call time."""

    async def is_subscriber(self, user_id: str) -> bool:
        async with db.get_db_session() as session:
            subscription = await SubscriptionRepository.get_by_user_id(user_id, session)
        if subscription is None or subscription.tier != SUBSCRIBER_TIER:
            return False
        if subscription.current_period_end is not None and subscription.current_period_end < datetime.now():
            logger.info(f"Subscription of user {user_id} expired at {subscription.current_period_end}")
            return False
        return True


class StaticSubscriptionResolver:
    """Fixed set of subscriber IDs (tests and local development)."""

    def __init__(self, subscriber_ids: set[str] | None = None):
        self.subscriber_ids = set(subscriber_ids or ())

    async def is_subscriber(self, user_id: str) -> bool:
        return user_id in self.subscriber_ids
