from enum import Enum


class PaymentVerificationStatus(str, Enum):
    CONFIRMED = "confirmed"   # Gateway captured the expected amount
    FAILED = "failed"         # Declined, cancelled or captured a different amount
    PENDING = "pending"       # Still processing at the gateway
