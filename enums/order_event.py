from enum import Enum


class OrderEvent(str, Enum):
    SAVE_DRAFT = "save_draft"
    SUBMIT = "submit"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    RETRY_PAYMENT = "retry_payment"
    START_PROCESSING = "start_processing"
    SHIP = "ship"
    COMPLETE = "complete"
    CANCEL = "cancel"
