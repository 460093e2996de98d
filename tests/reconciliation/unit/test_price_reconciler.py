"""
PriceReconciler Unit Tests

The server total is always the charged amount; the client total only decides
acceptance within the configured tolerance.
"""

from decimal import Decimal

import pytest

from exceptions.pricing import AmountMismatchError
from models.price import PriceBreakdownDTO
from services.reconciliation import PriceReconciler


def server_total(amount_minor: int) -> PriceBreakdownDTO:
    return PriceBreakdownDTO(
        base_total_minor=amount_minor,
        subtotal_minor=amount_minor,
        grand_total_minor=amount_minor,
    )


@pytest.fixture
def reconciler():
    return PriceReconciler(Decimal("0.01"))


class TestReconcile:

    def test_exact_match_has_no_warning(self, reconciler):
        result = reconciler.reconcile(10000, server_total(10000))

        assert result.accepted is True
        assert result.final_amount_minor == 10000
        assert result.difference_minor == 0
        assert result.warning is None

    def test_small_difference_is_accepted_with_server_total(self, reconciler):
        result = reconciler.reconcile(10090, server_total(10000))

        assert result.accepted is True
        assert result.final_amount_minor == 10000
        assert result.client_declared_minor == 10090
        assert result.difference_minor == 90
        assert result.difference_rate == Decimal("0.009")
        assert result.warning is not None

    def test_difference_at_tolerance_is_accepted(self, reconciler):
        result = reconciler.reconcile(9900, server_total(10000))

        assert result.final_amount_minor == 10000

    def test_difference_above_tolerance_raises(self, reconciler):
        with pytest.raises(AmountMismatchError) as exc_info:
            reconciler.reconcile(10500, server_total(10000))

        assert exc_info.value.client_declared_minor == 10500
        assert exc_info.value.server_computed_minor == 10000

    def test_underpaying_client_is_rejected(self, reconciler):
        with pytest.raises(AmountMismatchError):
            reconciler.reconcile(5000, server_total(10000))

    def test_zero_server_total_accepts_zero_claim(self, reconciler):
        result = reconciler.reconcile(0, server_total(0))

        assert result.final_amount_minor == 0
        assert result.difference_rate == Decimal("0")

    def test_zero_server_total_rejects_nonzero_claim(self, reconciler):
        with pytest.raises(AmountMismatchError):
            reconciler.reconcile(1, server_total(0))

    @pytest.mark.parametrize("tolerance", [0.3, "0.3", Decimal("0.3")])
    def test_float_tolerance_boundary_is_inclusive(self, tolerance):
        reconciler = PriceReconciler(tolerance)

        result = reconciler.reconcile(7000, server_total(10000))

        assert reconciler.tolerance == Decimal("0.3")
        assert result.accepted is True
        assert result.final_amount_minor == 10000

    def test_tolerance_defaults_to_settings(self):
        assert PriceReconciler().tolerance == Decimal("0.01")


@pytest.mark.parametrize("client,server,expected", [
    (10090, 10000, Decimal("0.009")),
    (9000, 10000, Decimal("0.1")),
    (0, 0, Decimal("0")),
    (50, 0, Decimal("1")),
])
def test_difference_rate(client, server, expected):
    assert PriceReconciler.difference_rate(client, server) == expected
