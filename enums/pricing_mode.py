from enum import Enum


class PricingMode(str, Enum):
    FULL = "full"              # Tier, subscription, shipping and tax rules applied
    SIMPLIFIED = "simplified"  # Plain sum of unit prices, every rate zero
