"""
Stripe webhook signature verification.

Stripe signs the raw request body and sends a header of the form
    Stripe-Signature: t=1700000000,v1=<hex hmac>,v1=<hex hmac>
where each v1 value is HMAC-SHA256(secret, f"{t}.{body}").
"""

import hashlib
import hmac
import logging
import time

from exceptions.payment import InvalidWebhookSignatureException

logger = logging.getLogger(__name__)


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode('utf-8') + payload
    return hmac.new(secret.encode('utf-8'), signed_payload, hashlib.sha256).hexdigest()


def verify_stripe_signature(payload: bytes, signature_header: str | None, secret: str,
                            tolerance_seconds: int = 300, now: int | None = None) -> int:
    """
    Verify a Stripe-Signature header against the raw payload.

    Args:
        payload: Raw request body
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance_seconds: Maximum accepted age of the signature timestamp
        now: Current unix time (injected by tests)

    Returns:
        The signed timestamp

    Raises:
        InvalidWebhookSignatureException: Missing/malformed header, stale timestamp
            or no matching v1 signature
    """
    if not secret:
        raise InvalidWebhookSignatureException("webhook secret not configured")
    if not signature_header:
        raise InvalidWebhookSignatureException("missing signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidWebhookSignatureException("malformed timestamp")
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise InvalidWebhookSignatureException("malformed signature header")

    now = int(time.time()) if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        raise InvalidWebhookSignatureException(f"timestamp outside tolerance ({tolerance_seconds}s)")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        logger.warning("Webhook signature mismatch")
        raise InvalidWebhookSignatureException("signature mismatch")

    return timestamp
