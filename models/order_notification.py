from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Text, func, Enum as SQLEnum

from enums.notification_event import NotificationEvent
from models.base import Base


class OrderNotification(Base):
    """
    Outbox row for notifications triggered by an order transition.

    Inserted in the same transaction as the status change, so a committed
    transition always has its notification recorded even if delivery fails.
    """
    __tablename__ = 'order_notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    event = Column(SQLEnum(NotificationEvent), nullable=False)
    payload_json = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    delivered_at = Column(DateTime, nullable=True)


class OrderNotificationDTO(BaseModel):
    id: int | None = None
    order_id: int
    event: NotificationEvent
    payload_json: str
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime | None = None
    delivered_at: datetime | None = None
