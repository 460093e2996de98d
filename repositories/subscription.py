from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db import session_execute, session_flush
from models.subscription import Subscription, SubscriptionDTO


class SubscriptionRepository:
    @staticmethod
    async def get_by_user_id(user_id: str, session: AsyncSession) -> SubscriptionDTO | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        subscription = await session_execute(stmt, session)
        subscription = subscription.scalar()
        if subscription is not None:
            return SubscriptionDTO.model_validate(subscription, from_attributes=True)
        return None

    @staticmethod
    async def upsert(subscription_dto: SubscriptionDTO, session: AsyncSession) -> None:
        stmt = select(Subscription).where(Subscription.user_id == subscription_dto.user_id)
        existing = (await session_execute(stmt, session)).scalar()
        if existing is None:
            session.add(Subscription(**subscription_dto.model_dump(exclude_none=True, exclude={'id', 'updated_at'})))
        else:
            existing.tier = subscription_dto.tier
            existing.current_period_end = subscription_dto.current_period_end
        await session_flush(session)
