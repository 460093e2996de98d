import json
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import Column, Integer, DateTime, String, func, CheckConstraint, Enum as SQLEnum, Text, Index

from enums.currency import Currency
from enums.order_status import OrderStatus
from models.base import Base
from models.cart import CartDTO
from models.price import PriceBreakdownDTO


class Order(Base):
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    design_reference = Column(String(255), nullable=True)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.DRAFT)
    total_amount_minor = Column(Integer, nullable=False, default=0)
    currency = Column(SQLEnum(Currency), nullable=False)

    # Optimistic concurrency guard, bumped on every committed write
    version = Column(Integer, nullable=False, default=1)

    # Cart Snapshot (JSON)
    # Normalized CartDTO at the time of the last save; frozen once the order leaves draft
    # Format: {"lines": [{"product_id": "PFJS01", "product_type": "jersey", "unit_price_minor": 4000,
    #          "quantity": 2, "size": "M", ...}], "is_team_order": false, "is_subscriber": true}
    cart_snapshot_json = Column(Text, nullable=False)

    # Price Breakdown (JSON)
    # PriceBreakdownDTO computed by the server; grand_total_minor equals total_amount_minor
    breakdown_json = Column(Text, nullable=False)

    payment_ref = Column(String(255), nullable=True)  # Gateway reference (Stripe PaymentIntent id)
    payment_failure_reason = Column(Text, nullable=True)
    tracking_id = Column(String(255), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    submitted_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    processing_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('total_amount_minor >= 0', name='check_order_total_amount_non_negative'),
        CheckConstraint('version >= 1', name='check_order_version_positive'),
        Index('ix_orders_user_id', 'user_id'),
        Index('ix_orders_status', 'status'),
    )


class OrderDTO(BaseModel):
    id: int | None = None
    user_id: str | None = None
    design_reference: str | None = None
    status: OrderStatus | None = None
    total_amount_minor: int | None = None
    currency: Currency | None = None
    version: int | None = None
    cart_snapshot_json: str | None = None
    breakdown_json: str | None = None
    payment_ref: str | None = None
    payment_failure_reason: str | None = None
    tracking_id: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    submitted_at: datetime | None = None
    paid_at: datetime | None = None
    processing_at: datetime | None = None
    shipped_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def cart(self) -> CartDTO | None:
        if self.cart_snapshot_json is None:
            return None
        return CartDTO.model_validate(json.loads(self.cart_snapshot_json))

    @property
    def breakdown(self) -> PriceBreakdownDTO | None:
        if self.breakdown_json is None:
            return None
        return PriceBreakdownDTO.model_validate(json.loads(self.breakdown_json))
