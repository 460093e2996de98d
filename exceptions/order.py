"""
Order lifecycle exceptions.
"""

from .base import CheckoutException


class OrderException(CheckoutException):
    """Base exception for order-related errors."""
    pass


class OrderNotFoundException(OrderException):
    """Raised when order is not found in database."""

    def __init__(self, order_id: int):
        super().__init__(
            f"Order {order_id} not found",
            details={'order_id': order_id}
        )
        self.order_id = order_id


class OrderOwnershipException(OrderException):
    """Raised when a user attempts to access or modify an order they don't own."""

    def __init__(self, order_id: int, user_id: str):
        super().__init__(
            f"User {user_id} does not have permission to access order {order_id}",
            details={'order_id': order_id, 'user_id': user_id}
        )
        self.order_id = order_id
        self.user_id = user_id


class IllegalTransitionError(OrderException):
    """Raised when an event is not a legal edge from the order's current status."""

    def __init__(self, order_id: int | None, current_status: str | None, requested: str):
        super().__init__(
            f"Order {order_id} cannot '{requested}' from status '{current_status}'",
            details={'order_id': order_id, 'current_status': current_status, 'requested': requested}
        )
        self.order_id = order_id
        self.current_status = current_status
        self.requested = requested


class TransitionNotPermittedError(OrderException):
    """Raised when the acting role may not trigger an otherwise legal transition."""

    def __init__(self, order_id: int | None, event: str, role: str):
        super().__init__(
            f"Role '{role}' may not '{event}' order {order_id}",
            details={'order_id': order_id, 'event': event, 'role': role}
        )
        self.order_id = order_id
        self.event = event
        self.role = role


class PersistenceConflictError(OrderException):
    """Raised when the compare-and-set write keeps losing to concurrent writers."""

    def __init__(self, order_id: int, attempts: int):
        super().__init__(
            f"Order {order_id} changed concurrently {attempts} times, giving up",
            details={'order_id': order_id, 'attempts': attempts}
        )
        self.order_id = order_id
        self.attempts = attempts
