import logging
from decimal import Decimal, ROUND_HALF_UP

import config
from enums.currency import Currency
from models.cart import CartDTO
from models.price import PriceBreakdownDTO, PricingConfigDTO, ShippingRateDTO, TierDiscountDTO

logger = logging.getLogger(__name__)


def round_minor(amount: Decimal) -> int:
    """Round a Decimal amount of minor units half-up to a whole minor unit."""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_percent(rate: Decimal) -> str:
    percent = rate * 100
    if percent == percent.to_integral_value():
        return f"{int(percent)}%"
    return f"{percent.normalize():f}%"


class PricingService:
    """Server-side price calculation. Pure functions over immutable inputs."""

    @staticmethod
    def price(cart: CartDTO, pricing_config: PricingConfigDTO | None = None) -> PriceBreakdownDTO:
        """
        Calculate the authoritative price breakdown for a normalized cart.

        Algorithm:
        1. base = sum(unit_price * quantity)
        2. Tier discount: highest volume tier whose min_quantity <= total quantity,
           never additive with lower tiers
        3. Subscription discount: on base (not on the tier-discounted amount),
           only if cart.is_subscriber
        4. Shipping: cost of the highest subtotal threshold met; if none is met
           the most expensive cost in the table applies
        5. Tax on (subtotal + shipping)
        6. grand_total = subtotal + shipping + tax

        Each derived amount is rounded half-up once, so
        subtotal == base - tier_discount - subscription_discount holds exactly.

        Example (full config, 10 × $100.00, subscriber):
            base 100000, tier 5% = 5000, subscription 10% = 10000,
            subtotal 85000, shipping 0 (>= 50000), tax 0 -> 85000

        Args:
            cart: Normalized cart from CartNormalizer
            pricing_config: Rules to apply (defaults to the configured model)

        Returns:
            PriceBreakdownDTO with all amounts in minor units
        """
        pricing_config = pricing_config or PricingConfigDTO.from_settings()

        if cart.is_empty:
            return PriceBreakdownDTO()

        base = sum(line.line_total_minor for line in cart.lines)
        total_quantity = cart.total_quantity

        tier = PricingService.select_tier_discount(total_quantity, pricing_config.tier_discounts)
        tier_rate = tier.rate if tier else Decimal("0")
        tier_discount = round_minor(Decimal(base) * tier_rate)

        subscription_rate = pricing_config.subscription_discount_rate if cart.is_subscriber else Decimal("0")
        subscription_discount = round_minor(Decimal(base) * subscription_rate)
        # Combined rates above 100% must not produce a negative subtotal
        subscription_discount = min(subscription_discount, base - tier_discount)

        subtotal = base - tier_discount - subscription_discount
        shipping = PricingService.select_shipping(subtotal, pricing_config.shipping_tiers)
        tax = round_minor(Decimal(subtotal + shipping) * pricing_config.tax_rate)

        breakdown = PriceBreakdownDTO(
            base_total_minor=base,
            tier_discount_rate=tier_rate,
            tier_discount_minor=tier_discount,
            tier_discount_label=(
                f"{format_percent(tier_rate)} off {tier.min_quantity}+ items" if tier and tier_rate > 0 else "None"
            ),
            subscription_discount_rate=subscription_rate,
            subscription_discount_minor=subscription_discount,
            subscription_discount_label=(
                f"{format_percent(subscription_rate)} subscriber discount" if subscription_rate > 0 else "None"
            ),
            subtotal_minor=subtotal,
            shipping_minor=shipping,
            tax_minor=tax,
            grand_total_minor=subtotal + shipping + tax,
            item_count=total_quantity,
        )
        logger.debug(
            f"Priced cart ({pricing_config.mode.value}): {total_quantity} items, base {base}, "
            f"tier -{tier_discount}, subscription -{subscription_discount}, "
            f"shipping {shipping}, tax {tax}, total {breakdown.grand_total_minor}"
        )
        return breakdown

    @staticmethod
    def estimate(cart: CartDTO, pricing_config: PricingConfigDTO | None = None) -> PriceBreakdownDTO:
        """Display-only price. Flagged non-authoritative and never used as a charge amount."""
        return PricingService.price(cart, pricing_config).model_copy(update={"authoritative": False})

    @staticmethod
    def select_tier_discount(total_quantity: int, tiers: tuple[TierDiscountDTO, ...]) -> TierDiscountDTO | None:
        for tier in sorted(tiers, key=lambda t: t.min_quantity, reverse=True):
            if total_quantity >= tier.min_quantity:
                return tier
        return None

    @staticmethod
    def select_shipping(subtotal_minor: int, tiers: tuple[ShippingRateDTO, ...]) -> int:
        if not tiers:
            return 0
        matched = None
        for tier in sorted(tiers, key=lambda t: t.min_subtotal_minor):
            if subtotal_minor >= tier.min_subtotal_minor:
                matched = tier
        if matched is None:
            return max(tier.cost_minor for tier in tiers)
        return matched.cost_minor

    @staticmethod
    def get_pricing_rules(pricing_config: PricingConfigDTO | None = None) -> dict:
        """Pricing rules for client-side transparency. Amounts in minor units, rates as strings."""
        pricing_config = pricing_config or PricingConfigDTO.from_settings()
        return {
            "mode": pricing_config.mode.value,
            "currency": config.CURRENCY.value,
            "tier_discounts": [
                {"min_quantity": tier.min_quantity, "rate": str(tier.rate), "label": format_percent(tier.rate)}
                for tier in sorted(pricing_config.tier_discounts, key=lambda t: t.min_quantity, reverse=True)
            ],
            "subscription_discount_rate": str(pricing_config.subscription_discount_rate),
            "shipping_tiers": [
                {"min_subtotal_minor": tier.min_subtotal_minor, "cost_minor": tier.cost_minor}
                for tier in sorted(pricing_config.shipping_tiers, key=lambda t: t.min_subtotal_minor)
            ],
            "tax_rate": str(pricing_config.tax_rate),
        }

    @staticmethod
    def format_amount(amount_minor: int, currency: Currency | None = None) -> str:
        currency = currency or config.CURRENCY
        return f"{currency.get_symbol()}{Decimal(amount_minor) / 100:,.2f}"

    @staticmethod
    def format_breakdown(breakdown: PriceBreakdownDTO, currency: Currency | None = None) -> dict[str, str]:
        """
        Display strings for a breakdown.

        Example:
            {"base_total": "$400.00", "tier_discount": "-$20.00", "shipping": "FREE", ...}
        """
        def fmt(amount_minor: int) -> str:
            return PricingService.format_amount(amount_minor, currency)

        return {
            "base_total": fmt(breakdown.base_total_minor),
            "tier_discount": f"-{fmt(breakdown.tier_discount_minor)}",
            "tier_discount_label": breakdown.tier_discount_label,
            "subscription_discount": f"-{fmt(breakdown.subscription_discount_minor)}",
            "subscription_discount_label": breakdown.subscription_discount_label,
            "subtotal": fmt(breakdown.subtotal_minor),
            "shipping": "FREE" if breakdown.shipping_minor == 0 else fmt(breakdown.shipping_minor),
            "tax": fmt(breakdown.tax_minor),
            "grand_total": fmt(breakdown.grand_total_minor),
        }
