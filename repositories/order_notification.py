import logging

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from db import session_execute, session_flush
from models.order_notification import OrderNotification, OrderNotificationDTO

logger = logging.getLogger(__name__)


class OrderNotificationRepository:
    @staticmethod
    async def create(notification_dto: OrderNotificationDTO, session: AsyncSession) -> int:
        notification = OrderNotification(**notification_dto.model_dump(exclude_none=True, exclude={'id'}))
        session.add(notification)
        await session_flush(session)
        return notification.id

    @staticmethod
    async def get_by_id(notification_id: int, session: AsyncSession) -> OrderNotificationDTO | None:
        stmt = select(OrderNotification).where(OrderNotification.id == notification_id)
        notification = await session_execute(stmt, session)
        notification = notification.scalar()
        if notification is not None:
            return OrderNotificationDTO.model_validate(notification, from_attributes=True)
        return None

    @staticmethod
    async def get_undelivered(max_attempts: int, session: AsyncSession, limit: int = 100) -> list[OrderNotificationDTO]:
        stmt = (
            select(OrderNotification)
            .where(OrderNotification.delivered_at.is_(None), OrderNotification.attempts < max_attempts)
            .order_by(OrderNotification.id)
            .limit(limit)
        )
        notifications = await session_execute(stmt, session)
        return [OrderNotificationDTO.model_validate(n, from_attributes=True) for n in notifications.scalars().all()]

    @staticmethod
    async def mark_delivered(notification_id: int, attempts: int, session: AsyncSession) -> None:
        stmt = (
            update(OrderNotification)
            .where(OrderNotification.id == notification_id)
            .values(delivered_at=func.now(), attempts=attempts, last_error=None)
        )
        await session_execute(stmt, session)

    @staticmethod
    async def mark_failed(notification_id: int, attempts: int, error: str, session: AsyncSession) -> None:
        stmt = (
            update(OrderNotification)
            .where(OrderNotification.id == notification_id)
            .values(attempts=attempts, last_error=error[:1000])
        )
        await session_execute(stmt, session)
