import logging
from typing import Protocol

import aiohttp

import config
from enums.payment_verification_status import PaymentVerificationStatus
from models.payment import PaymentVerificationDTO

logger = logging.getLogger(__name__)


class StripeApiError(aiohttp.ClientError):
    """
    Stripe refused the verification request itself (rate limit, bad key, conflict).

    Says nothing about the customer's payment, so it is retried like a transport
    error and never turned into a payment failure.
    """

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class PaymentGateway(Protocol):
    async def verify(self, amount_minor: int, payment_ref: str) -> PaymentVerificationDTO:
        """Ask the gateway whether amount_minor was captured for payment_ref."""
        ...


class StripePaymentGateway:
    """
    Verifies payments against Stripe's own records.

    payment_ref is a PaymentIntent id (pi_...) or a Checkout Session id (cs_...).
    Client or webhook claims are never trusted; the object is always fetched.
    """

    PENDING_INTENT_STATUSES = {"processing", "requires_action", "requires_confirmation", "requires_capture"}

    def __init__(self, secret_key: str | None = None, api_url: str | None = None,
                 request_timeout: float | None = None):
        self.secret_key = secret_key if secret_key is not None else config.STRIPE_SECRET_KEY
        self.api_url = (api_url or config.STRIPE_API_URL).rstrip("/")
        self.request_timeout = request_timeout or config.PAYMENT_VERIFICATION_TIMEOUT_SECONDS

    async def fetch_api_request(self, path: str) -> tuple[int, dict]:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.api_url}{path}", headers=headers) as response:
                if response.status >= 500:
                    # Transient, surfaced to the caller's retry loop
                    response.raise_for_status()
                return response.status, await response.json()

    async def verify(self, amount_minor: int, payment_ref: str) -> PaymentVerificationDTO:
        if payment_ref.startswith("cs_"):
            status, data = await self.fetch_api_request(f"/v1/checkout/sessions/{payment_ref}")
            interpret = self.interpret_checkout_session
        else:
            status, data = await self.fetch_api_request(f"/v1/payment_intents/{payment_ref}")
            interpret = self.interpret_payment_intent

        if status == 404:
            logger.warning(f"[Stripe] Unknown payment reference {payment_ref}")
            return PaymentVerificationDTO(
                status=PaymentVerificationStatus.FAILED,
                payment_ref=payment_ref,
                failure_reason="unknown payment reference",
            )
        if status >= 400:
            message = (data.get("error") or {}).get("message", f"HTTP {status}")
            logger.error(f"[Stripe] Verification request for {payment_ref} rejected ({status}): {message}")
            raise StripeApiError(status, message)

        result = interpret(data, amount_minor)
        logger.info(f"[Stripe] {payment_ref}: {result.status.value} (captured {result.amount_minor}, expected {amount_minor})")
        return result

    @staticmethod
    def interpret_payment_intent(data: dict, amount_minor: int) -> PaymentVerificationDTO:
        payment_ref = data.get("id", "")
        intent_status = data.get("status")
        received = data.get("amount_received")
        currency = data.get("currency")

        if intent_status == "succeeded":
            if received != amount_minor:
                return PaymentVerificationDTO(
                    status=PaymentVerificationStatus.FAILED,
                    payment_ref=payment_ref,
                    amount_minor=received,
                    currency=currency,
                    failure_reason=f"captured amount {received} does not match expected {amount_minor}",
                )
            return PaymentVerificationDTO(
                status=PaymentVerificationStatus.CONFIRMED,
                payment_ref=payment_ref,
                amount_minor=received,
                currency=currency,
            )

        last_error = data.get("last_payment_error") or {}
        if intent_status == "canceled" or (intent_status == "requires_payment_method" and last_error):
            return PaymentVerificationDTO(
                status=PaymentVerificationStatus.FAILED,
                payment_ref=payment_ref,
                amount_minor=received,
                currency=currency,
                failure_reason=last_error.get("message") or data.get("cancellation_reason") or intent_status,
            )

        return PaymentVerificationDTO(
            status=PaymentVerificationStatus.PENDING,
            payment_ref=payment_ref,
            amount_minor=received,
            currency=currency,
        )

    @staticmethod
    def interpret_checkout_session(data: dict, amount_minor: int) -> PaymentVerificationDTO:
        payment_ref = data.get("id", "")
        amount_total = data.get("amount_total")
        currency = data.get("currency")

        if data.get("payment_status") == "paid":
            if amount_total != amount_minor:
                return PaymentVerificationDTO(
                    status=PaymentVerificationStatus.FAILED,
                    payment_ref=payment_ref,
                    amount_minor=amount_total,
                    currency=currency,
                    failure_reason=f"paid amount {amount_total} does not match expected {amount_minor}",
                )
            return PaymentVerificationDTO(
                status=PaymentVerificationStatus.CONFIRMED,
                payment_ref=payment_ref,
                amount_minor=amount_total,
                currency=currency,
            )

        if data.get("status") == "expired":
            return PaymentVerificationDTO(
                status=PaymentVerificationStatus.FAILED,
                payment_ref=payment_ref,
                amount_minor=amount_total,
                currency=currency,
                failure_reason="checkout session expired",
            )

        return PaymentVerificationDTO(
            status=PaymentVerificationStatus.PENDING,
            payment_ref=payment_ref,
            amount_minor=amount_total,
            currency=currency,
        )
