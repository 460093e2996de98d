"""
Pricing and reconciliation exceptions.
"""

from .base import CheckoutException


class PricingException(CheckoutException):
    """Base exception for pricing errors."""
    pass


class AmountMismatchError(PricingException):
    """Raised when the client-declared total is outside tolerance of the server total."""

    def __init__(self, client_declared_minor: int, server_computed_minor: int, tolerance):
        super().__init__(
            f"Declared total {client_declared_minor} does not match computed total "
            f"{server_computed_minor} (tolerance {tolerance})",
            details={
                'client_declared_minor': client_declared_minor,
                'server_computed_minor': server_computed_minor,
                'tolerance': str(tolerance),
            }
        )
        self.client_declared_minor = client_declared_minor
        self.server_computed_minor = server_computed_minor
        self.tolerance = tolerance
