"""
StripePaymentGateway Unit Tests

Interpretation of PaymentIntent and Checkout Session objects, and verify()
with the HTTP layer patched out.
"""

from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from enums.payment_verification_status import PaymentVerificationStatus
from services.payment import StripeApiError, StripePaymentGateway


def payment_intent(status: str, amount_received: int = 11000, **extra) -> dict:
    return {"id": "pi_123", "object": "payment_intent", "status": status,
            "amount_received": amount_received, "currency": "usd", **extra}


class TestInterpretPaymentIntent:

    def test_succeeded_with_matching_amount(self):
        result = StripePaymentGateway.interpret_payment_intent(payment_intent("succeeded"), 11000)

        assert result.status == PaymentVerificationStatus.CONFIRMED
        assert result.amount_minor == 11000
        assert result.payment_ref == "pi_123"

    def test_succeeded_with_other_amount_fails(self):
        result = StripePaymentGateway.interpret_payment_intent(payment_intent("succeeded", 9000), 11000)

        assert result.status == PaymentVerificationStatus.FAILED
        assert "9000" in result.failure_reason

    def test_declined_card(self):
        data = payment_intent(
            "requires_payment_method", 0, last_payment_error={"message": "Your card was declined."}
        )

        result = StripePaymentGateway.interpret_payment_intent(data, 11000)

        assert result.status == PaymentVerificationStatus.FAILED
        assert result.failure_reason == "Your card was declined."

    def test_canceled(self):
        result = StripePaymentGateway.interpret_payment_intent(
            payment_intent("canceled", 0, cancellation_reason="abandoned"), 11000
        )

        assert result.status == PaymentVerificationStatus.FAILED
        assert result.failure_reason == "abandoned"

    @pytest.mark.parametrize("status", ["processing", "requires_action", "requires_payment_method"])
    def test_in_flight_statuses_are_pending(self, status):
        result = StripePaymentGateway.interpret_payment_intent(payment_intent(status, 0), 11000)

        assert result.status == PaymentVerificationStatus.PENDING


class TestInterpretCheckoutSession:

    def test_paid_session(self):
        data = {"id": "cs_1", "payment_status": "paid", "status": "complete", "amount_total": 11000}

        result = StripePaymentGateway.interpret_checkout_session(data, 11000)

        assert result.status == PaymentVerificationStatus.CONFIRMED

    def test_paid_session_with_other_amount(self):
        data = {"id": "cs_1", "payment_status": "paid", "status": "complete", "amount_total": 100}

        result = StripePaymentGateway.interpret_checkout_session(data, 11000)

        assert result.status == PaymentVerificationStatus.FAILED

    def test_expired_session(self):
        data = {"id": "cs_1", "payment_status": "unpaid", "status": "expired", "amount_total": 11000}

        assert StripePaymentGateway.interpret_checkout_session(data, 11000).status == PaymentVerificationStatus.FAILED

    def test_open_session_is_pending(self):
        data = {"id": "cs_1", "payment_status": "unpaid", "status": "open", "amount_total": 11000}

        assert StripePaymentGateway.interpret_checkout_session(data, 11000).status == PaymentVerificationStatus.PENDING


class TestVerify:

    @pytest.fixture
    def gateway(self):
        return StripePaymentGateway(secret_key="sk_test_x", api_url="https://stripe.test", request_timeout=1)

    @pytest.mark.asyncio
    async def test_payment_intent_path(self, gateway):
        with patch.object(gateway, "fetch_api_request",
                          AsyncMock(return_value=(200, payment_intent("succeeded")))) as fetch:
            result = await gateway.verify(11000, "pi_123")

        fetch.assert_awaited_once_with("/v1/payment_intents/pi_123")
        assert result.status == PaymentVerificationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_checkout_session_path(self, gateway):
        session = {"id": "cs_9", "payment_status": "paid", "status": "complete", "amount_total": 11000}
        with patch.object(gateway, "fetch_api_request", AsyncMock(return_value=(200, session))) as fetch:
            result = await gateway.verify(11000, "cs_9")

        fetch.assert_awaited_once_with("/v1/checkout/sessions/cs_9")
        assert result.status == PaymentVerificationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unknown_reference(self, gateway):
        error = {"error": {"message": "No such payment_intent: 'pi_nope'"}}
        with patch.object(gateway, "fetch_api_request", AsyncMock(return_value=(404, error))):
            result = await gateway.verify(11000, "pi_nope")

        assert result.status == PaymentVerificationStatus.FAILED
        assert result.failure_reason == "unknown payment reference"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("http_status,message", [
        (429, "Too many requests"),
        (401, "Invalid API Key provided"),
        (403, "The provided key does not have access"),
        (409, "Keys for idempotent requests can only be used once"),
    ])
    async def test_api_errors_are_not_payment_failures(self, gateway, http_status, message):
        """The request was refused, not the card: raised so the caller retries."""
        error = {"error": {"message": message}}
        with patch.object(gateway, "fetch_api_request", AsyncMock(return_value=(http_status, error))):
            with pytest.raises(StripeApiError) as exc_info:
                await gateway.verify(11000, "pi_123")

        assert exc_info.value.status == http_status
        assert exc_info.value.message == message
        assert isinstance(exc_info.value, aiohttp.ClientError)

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, gateway):
        """Network errors are left to the caller's retry loop."""
        with patch.object(gateway, "fetch_api_request", AsyncMock(side_effect=aiohttp.ClientConnectionError())):
            with pytest.raises(aiohttp.ClientError):
                await gateway.verify(11000, "pi_123")
