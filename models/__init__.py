"""
Models Package

This file ensures all SQLAlchemy models are imported and registered,
which is required for relationships to work correctly.
"""

from models.base import Base
from models.order import Order
from models.order_notification import OrderNotification
from models.subscription import Subscription

__all__ = [
    'Base',
    'Order',
    'OrderNotification',
    'Subscription',
]
