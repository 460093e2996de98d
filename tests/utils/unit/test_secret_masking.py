"""
Tests for SecretMaskingFilter in utils/logging_config.py
"""
import logging

import pytest

from utils.logging_config import SecretMaskingFilter


@pytest.fixture
def masking_filter():
    return SecretMaskingFilter()


@pytest.mark.parametrize("message,secret,placeholder", [
    ("Using key sk_test_51HxYzABCDEF123", "sk_test_51HxYzABCDEF123", "[REDACTED_STRIPE_KEY]"),
    ("Rolled rk_live_abcdefgh12345678", "rk_live_abcdefgh12345678", "[REDACTED_STRIPE_KEY]"),
    ("secret whsec_abcdefgh1234", "whsec_abcdefgh1234", "[REDACTED_WEBHOOK_SECRET]"),
    ("Authorization: Bearer abc.def-ghi", "abc.def-ghi", "[REDACTED_BEARER_TOKEN]"),
    ("api_key=abcdefghijklmnop1234", "abcdefghijklmnop1234", "[REDACTED_API_KEY]"),
    ("admin_key: supersecret123", "supersecret123", "[REDACTED_ADMIN_KEY]"),
    ("password=hunter2", "hunter2", "[REDACTED_PASSWORD]"),
    ("Card 4242 4242 4242 4242 declined", "4242 4242 4242 4242", "[REDACTED_CARD]"),
    ("Receipt for jane.doe@example.com", "jane.doe@example.com", "[REDACTED_EMAIL]"),
])
def test_secrets_are_masked(masking_filter, message, secret, placeholder):
    masked = masking_filter.mask(message)

    assert secret not in masked
    assert placeholder in masked


def test_plain_messages_are_untouched(masking_filter):
    message = "ORDER_STATUS_TRANSITION: Order 12 pending -> paid by system"

    assert masking_filter.mask(message) == message


def test_filter_masks_record_args(masking_filter):
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname=__file__, lineno=1,
        msg="Calling Stripe with %s for order %d", args=("sk_live_ABCDEFGH12345", 7), exc_info=None,
    )

    assert masking_filter.filter(record) is True
    assert record.getMessage() == "Calling Stripe with [REDACTED_STRIPE_KEY] for order 7"
