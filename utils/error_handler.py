"""
Error Handler Utility for HTTP routes

Maps domain exceptions to HTTP status codes and JSON error bodies, so routes
and the app-level exception handler answer every expected failure the same way.

Usage in routes:
    from utils.error_handler import to_http_exception

    try:
        order = await lifecycle.cancel(order_id, actor)
    except CheckoutException as e:
        raise to_http_exception(e)
"""

import logging

from fastapi import HTTPException, status

from exceptions import (
    CheckoutException,
    UnknownProductError,
    InvalidQuantityError,
    EmptyCartException,
    AmountMismatchError,
    OrderNotFoundException,
    OrderOwnershipException,
    IllegalTransitionError,
    TransitionNotPermittedError,
    PersistenceConflictError,
    PaymentVerificationTimeoutError,
    PaymentNotConfirmedException,
    InvalidWebhookSignatureException,
)

logger = logging.getLogger(__name__)

# (status code, machine-readable error code, retryable)
ERROR_MAPPING: dict[type[CheckoutException], tuple[int, str, bool]] = {
    # Cart exceptions
    UnknownProductError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "unknown_product", False),
    InvalidQuantityError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_quantity", False),
    EmptyCartException: (status.HTTP_422_UNPROCESSABLE_ENTITY, "empty_cart", False),

    # Pricing exceptions
    AmountMismatchError: (status.HTTP_409_CONFLICT, "amount_mismatch", False),

    # Order exceptions
    OrderNotFoundException: (status.HTTP_404_NOT_FOUND, "order_not_found", False),
    OrderOwnershipException: (status.HTTP_403_FORBIDDEN, "order_forbidden", False),
    IllegalTransitionError: (status.HTTP_409_CONFLICT, "illegal_transition", False),
    TransitionNotPermittedError: (status.HTTP_403_FORBIDDEN, "transition_not_permitted", False),
    PersistenceConflictError: (status.HTTP_409_CONFLICT, "persistence_conflict", True),

    # Payment exceptions
    PaymentVerificationTimeoutError: (status.HTTP_503_SERVICE_UNAVAILABLE, "payment_verification_timeout", True),
    PaymentNotConfirmedException: (status.HTTP_202_ACCEPTED, "payment_not_confirmed", True),
    InvalidWebhookSignatureException: (status.HTTP_400_BAD_REQUEST, "invalid_signature", False),
}


def resolve_error(exception: CheckoutException) -> tuple[int, str, bool]:
    """Look up the mapping for the exception or its nearest mapped base class."""
    for exception_type in type(exception).__mro__:
        if exception_type in ERROR_MAPPING:
            return ERROR_MAPPING[exception_type]
    logger.error(f"Unmapped exception type: {type(exception).__name__}")
    return status.HTTP_400_BAD_REQUEST, "checkout_error", False


def error_body(exception: CheckoutException) -> dict:
    _, code, retryable = resolve_error(exception)
    return {
        "error": code,
        "message": exception.message,
        "retryable": retryable,
        "details": exception.details,
    }


def to_http_exception(exception: CheckoutException) -> HTTPException:
    status_code, code, _ = resolve_error(exception)
    logger.warning(f"Service error handled: {type(exception).__name__} ({code}) - {exception}")
    return HTTPException(status_code=status_code, detail=error_body(exception))
