"""
Root of the checkout exception hierarchy.
"""


class CheckoutException(Exception):
    """
    Base class for every expected checkout and order lifecycle failure.

    message is safe to show to API clients; details holds machine-readable
    context (order ids, statuses, amounts) and ends up in the error response.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        parts = [repr(self.message)] + [f"{key}={value}" for key, value in self.details.items()]
        return f"{type(self).__name__}({', '.join(parts)})"
