from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

import config
from enums.pricing_mode import PricingMode


class TierDiscountDTO(BaseModel):
    """Volume discount applied when total quantity reaches min_quantity."""
    model_config = ConfigDict(frozen=True)

    min_quantity: int = Field(..., ge=1)
    rate: Decimal = Field(..., ge=0, le=1)


class ShippingRateDTO(BaseModel):
    """Flat shipping cost once the discounted subtotal reaches min_subtotal_minor."""
    model_config = ConfigDict(frozen=True)

    min_subtotal_minor: int = Field(..., ge=0)
    cost_minor: int = Field(..., ge=0)


class PricingConfigDTO(BaseModel):
    """
    Immutable pricing rules.

    Shared between concurrent requests without locking. The simplified model is the
    same structure with every rate zero and no shipping table, so there is only one
    pricing code path.
    """
    model_config = ConfigDict(frozen=True)

    mode: PricingMode = PricingMode.FULL
    tier_discounts: tuple[TierDiscountDTO, ...] = ()
    subscription_discount_rate: Decimal = Field(Decimal("0"), ge=0, le=1)
    shipping_tiers: tuple[ShippingRateDTO, ...] = ()
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=1)

    @classmethod
    def full(cls) -> "PricingConfigDTO":
        return cls(
            mode=PricingMode.FULL,
            tier_discounts=tuple(
                TierDiscountDTO(min_quantity=threshold, rate=rate)
                for threshold, rate in config.TIER_DISCOUNTS
            ),
            subscription_discount_rate=config.SUBSCRIPTION_DISCOUNT_RATE,
            shipping_tiers=tuple(
                ShippingRateDTO(min_subtotal_minor=threshold, cost_minor=cost)
                for threshold, cost in config.SHIPPING_TIERS
            ),
            tax_rate=config.TAX_RATE,
        )

    @classmethod
    def simplified(cls) -> "PricingConfigDTO":
        return cls(mode=PricingMode.SIMPLIFIED)

    @classmethod
    def from_settings(cls) -> "PricingConfigDTO":
        if config.PRICING_MODE == PricingMode.SIMPLIFIED:
            return cls.simplified()
        return cls.full()


class PriceBreakdownDTO(BaseModel):
    """
    Authoritative price of a cart, all amounts in minor currency units.

    subtotal = base - tier_discount - subscription_discount
    grand_total = subtotal + shipping + tax
    """
    model_config = ConfigDict(frozen=True)

    base_total_minor: int = 0
    tier_discount_rate: Decimal = Decimal("0")
    tier_discount_minor: int = 0
    tier_discount_label: str = "None"
    subscription_discount_rate: Decimal = Decimal("0")
    subscription_discount_minor: int = 0
    subscription_discount_label: str = "None"
    subtotal_minor: int = 0
    shipping_minor: int = 0
    tax_minor: int = 0
    grand_total_minor: int = 0
    item_count: int = 0
    authoritative: bool = True


class ReconcileResultDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: bool
    final_amount_minor: int
    client_declared_minor: int
    difference_minor: int
    difference_rate: Decimal
    warning: str | None = None
