from pydantic import BaseModel

from enums.payment_verification_status import PaymentVerificationStatus


class PaymentVerificationDTO(BaseModel):
    """Gateway's own record of a payment, as returned by PaymentGateway.verify()."""
    status: PaymentVerificationStatus
    payment_ref: str
    amount_minor: int | None = None     # Amount the gateway actually captured
    currency: str | None = None
    failure_reason: str | None = None
