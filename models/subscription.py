from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import Column, Integer, String, DateTime, func

from models.base import Base


class Subscription(Base):
    """
    Account subscription tier.

    Only the "pro" tier with an unexpired period grants the subscriber discount.
    """
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True)
    tier = Column(String(32), nullable=False, default="free")
    current_period_end = Column(DateTime, nullable=True)  # NULL = no expiry
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class SubscriptionDTO(BaseModel):
    id: int | None = None
    user_id: str
    tier: str = "free"
    current_period_end: datetime | None = None
    updated_at: datetime | None = None
