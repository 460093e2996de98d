import logging
from decimal import Decimal

import config
from exceptions.pricing import AmountMismatchError
from models.price import PriceBreakdownDTO, ReconcileResultDTO

logger = logging.getLogger(__name__)


class PriceReconciler:
    """
    Compares a client-declared total against the server-computed breakdown.

    The accepted amount is always the server's grand total; the client value
    only decides whether the request is accepted.
    """

    def __init__(self, tolerance: Decimal | float | str | None = None):
        # str() first: Decimal(0.3) would keep the float's binary expansion
        self.tolerance = config.PRICE_TOLERANCE if tolerance is None else Decimal(str(tolerance))

    @staticmethod
    def difference_rate(client_declared_minor: int, server_total_minor: int) -> Decimal:
        """
        Relative difference against the server total.

        A zero server total counts as 0% against a zero claim and 100% otherwise.
        """
        difference = abs(client_declared_minor - server_total_minor)
        if server_total_minor == 0:
            return Decimal("0") if difference == 0 else Decimal("1")
        return Decimal(difference) / Decimal(server_total_minor)

    def reconcile(self, client_declared_minor: int, server_computed: PriceBreakdownDTO) -> ReconcileResultDTO:
        """
        Accept or reject a client-declared total.

        Args:
            client_declared_minor: Total the client displayed, in minor units
            server_computed: Authoritative breakdown from PricingService.price()

        Returns:
            ReconcileResultDTO with final_amount_minor = server grand total

        Raises:
            AmountMismatchError: Relative difference exceeds the tolerance
        """
        server_total = server_computed.grand_total_minor
        difference = abs(client_declared_minor - server_total)
        rate = self.difference_rate(client_declared_minor, server_total)

        if rate > self.tolerance:
            logger.warning(
                f"Price mismatch: client {client_declared_minor}, server {server_total}, "
                f"difference {rate:.4%} > tolerance {self.tolerance:.2%}"
            )
            raise AmountMismatchError(client_declared_minor, server_total, self.tolerance)

        warning = None
        if difference > 0:
            warning = (
                f"Client total {client_declared_minor} differs from server total {server_total} "
                f"by {difference}; server total used"
            )
            logger.warning(warning)

        return ReconcileResultDTO(
            accepted=True,
            final_amount_minor=server_total,
            client_declared_minor=client_declared_minor,
            difference_minor=difference,
            difference_rate=rate,
            warning=warning,
        )
