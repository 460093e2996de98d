"""
Cart normalization exceptions.
"""

from .base import CheckoutException


class CartException(CheckoutException):
    """Base exception for cart input errors."""
    pass


class UnknownProductError(CartException):
    """Raised when a cart references a SKU or package missing from the catalog."""

    def __init__(self, product_id: str, reason: str | None = None):
        message = f"Unknown product '{product_id}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={'product_id': product_id, 'reason': reason}
        )
        self.product_id = product_id
        self.reason = reason


class InvalidQuantityError(CartException):
    """Raised when a requested quantity is not a usable whole number."""

    def __init__(self, product_id: str, quantity):
        super().__init__(
            f"Invalid quantity {quantity!r} for product '{product_id}'",
            details={'product_id': product_id, 'quantity': quantity}
        )
        self.product_id = product_id
        self.quantity = quantity


class EmptyCartException(CartException):
    """Raised when trying to submit or check out an order with no lines."""

    def __init__(self, user_id: str, order_id: int | None = None):
        super().__init__(
            f"Cart is empty for user {user_id}",
            details={'user_id': user_id, 'order_id': order_id}
        )
        self.user_id = user_id
        self.order_id = order_id
