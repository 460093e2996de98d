"""
Payment verification exceptions.
"""

from .base import CheckoutException


class PaymentException(CheckoutException):
    """Base exception for payment-related errors."""
    pass


class PaymentVerificationTimeoutError(PaymentException):
    """Raised when the gateway gives no usable answer (timeout, transport or API error) within the retries."""

    def __init__(self, order_id: int, payment_ref: str, attempts: int):
        super().__init__(
            f"Payment verification for order {order_id} ({payment_ref}) got no gateway answer after {attempts} attempt(s)",
            details={'order_id': order_id, 'payment_ref': payment_ref, 'attempts': attempts}
        )
        self.order_id = order_id
        self.payment_ref = payment_ref
        self.attempts = attempts


class PaymentNotConfirmedException(PaymentException):
    """Raised when the gateway reports the payment as still processing."""

    def __init__(self, order_id: int, payment_ref: str):
        super().__init__(
            f"Payment {payment_ref} for order {order_id} is not confirmed yet",
            details={'order_id': order_id, 'payment_ref': payment_ref}
        )
        self.order_id = order_id
        self.payment_ref = payment_ref


class InvalidWebhookSignatureException(PaymentException):
    """Raised when a payment webhook fails signature verification."""

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid webhook signature: {reason}",
            details={'reason': reason}
        )
        self.reason = reason
