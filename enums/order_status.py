from enum import Enum


class OrderStatus(str, Enum):
    DRAFT = "draft"                       # Saved design, still editable
    PENDING = "pending"                   # Submitted, price frozen, waiting for payment
    PAYMENT_FAILED = "payment_failed"     # Gateway reported failure or amount mismatch
    PAID = "paid"                         # Capture confirmed by the gateway
    PROCESSING = "processing"             # In production
    SHIPPED = "shipped"                   # Handed to the carrier
    COMPLETED = "completed"               # Delivered (terminal)
    CANCELLED = "cancelled"               # Cancelled by user or admin (terminal)
