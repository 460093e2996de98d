"""
Custom exceptions for the checkout core.

Exception Hierarchy:
--------------------
CheckoutException (base)
├── CartException
│   ├── UnknownProductError
│   ├── InvalidQuantityError
│   └── EmptyCartException
├── PricingException
│   └── AmountMismatchError
├── OrderException
│   ├── OrderNotFoundException
│   ├── OrderOwnershipException
│   ├── IllegalTransitionError
│   ├── TransitionNotPermittedError
│   └── PersistenceConflictError
└── PaymentException
    ├── PaymentVerificationTimeoutError
    ├── PaymentNotConfirmedException
    └── InvalidWebhookSignatureException

Usage:
------
Services raise specific exceptions:
    raise IllegalTransitionError(order_id=123, current_status="draft", requested="payment_confirmed")

The HTTP layer maps them to responses (see utils/error_handler.py):
    try:
        await lifecycle.confirm_payment(order_id, payment_ref)
    except CheckoutException as e:
        raise to_http_exception(e)
"""

from .base import CheckoutException
from .cart import CartException, UnknownProductError, InvalidQuantityError, EmptyCartException
from .pricing import PricingException, AmountMismatchError
from .order import (
    OrderException,
    OrderNotFoundException,
    OrderOwnershipException,
    IllegalTransitionError,
    TransitionNotPermittedError,
    PersistenceConflictError,
)
from .payment import (
    PaymentException,
    PaymentVerificationTimeoutError,
    PaymentNotConfirmedException,
    InvalidWebhookSignatureException,
)

__all__ = [
    # Base
    'CheckoutException',

    # Cart
    'CartException',
    'UnknownProductError',
    'InvalidQuantityError',
    'EmptyCartException',

    # Pricing
    'PricingException',
    'AmountMismatchError',

    # Order
    'OrderException',
    'OrderNotFoundException',
    'OrderOwnershipException',
    'IllegalTransitionError',
    'TransitionNotPermittedError',
    'PersistenceConflictError',

    # Payment
    'PaymentException',
    'PaymentVerificationTimeoutError',
    'PaymentNotConfirmedException',
    'InvalidWebhookSignatureException',
]
