import os
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from enums.currency import Currency
from enums.pricing_mode import PricingMode
from enums.runtime_environment import RuntimeEnvironment

# Load .env but don't override existing environment variables
# This allows tests to set RUNTIME_ENVIRONMENT=test before import
load_dotenv(".env", override=False)

PROJECT_ROOT = Path(__file__).parent


def _exit_with_config_error(name: str, reason: Exception, expected: str) -> None:
    print(f"\n ERROR: Invalid {name} configuration\n", file=sys.stderr)
    print(f"Reason: {reason}", file=sys.stderr)
    print(f"Expected: {expected}", file=sys.stderr)
    print(f"Current value: {os.environ.get(name, '(not set)')}\n", file=sys.stderr)
    sys.exit(1)


def _parse_rate(raw: str) -> Decimal:
    try:
        rate = Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"'{raw}' is not a decimal number")
    if rate < 0 or rate > 1:
        raise ValueError(f"rate must be between 0 and 1 (got: {rate})")
    return rate


def parse_tier_discounts(raw: str) -> list[tuple[int, Decimal]]:
    """
    Parse "50:0.15,20:0.10,10:0.05" into [(50, Decimal("0.15")), ...].

    Result is sorted by threshold, highest first.
    """
    tiers = []
    for chunk in raw.split(","):
        if not chunk.strip():
            continue
        threshold, rate = chunk.split(":")
        tiers.append((int(threshold), _parse_rate(rate)))
    return sorted(tiers, key=lambda tier: tier[0], reverse=True)


def parse_shipping_tiers(raw: str) -> list[tuple[int, int]]:
    """
    Parse "0:3000,20000:2000,50000:0" into [(0, 3000), (20000, 2000), (50000, 0)].

    Thresholds and costs are minor currency units; result is sorted ascending.
    """
    tiers = []
    for chunk in raw.split(","):
        if not chunk.strip():
            continue
        threshold, cost = chunk.split(":")
        threshold, cost = int(threshold), int(cost)
        if threshold < 0 or cost < 0:
            raise ValueError(f"shipping tier values must be non-negative (got: {chunk})")
        tiers.append((threshold, cost))
    return sorted(tiers, key=lambda tier: tier[0])


# Parse RUNTIME_ENVIRONMENT with clear error message on misconfiguration
try:
    _runtime_env_str = os.environ.get("RUNTIME_ENVIRONMENT")
    if not _runtime_env_str:
        raise ValueError("RUNTIME_ENVIRONMENT environment variable is not set")
    RUNTIME_ENVIRONMENT = RuntimeEnvironment(_runtime_env_str)
except ValueError as e:
    _exit_with_config_error("RUNTIME_ENVIRONMENT", e, ", ".join(env.value for env in RuntimeEnvironment))

DB_URL = os.environ.get("DB_URL", "sqlite+aiosqlite:///data/orders.db")

WEBAPP_HOST = os.environ.get("WEBAPP_HOST", "0.0.0.0")
WEBAPP_PORT = int(os.environ.get("WEBAPP_PORT", "5000"))

# Admin API key for fulfillment endpoints (X-Admin-Key header)
ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY", "")

try:
    CURRENCY = Currency(os.environ.get("CURRENCY", "USD"))
except ValueError as e:
    _exit_with_config_error("CURRENCY", e, ", ".join(c.value for c in Currency))

# Pricing Configuration
try:
    PRICING_MODE = PricingMode(os.environ.get("PRICING_MODE", "full"))
except ValueError as e:
    _exit_with_config_error("PRICING_MODE", e, ", ".join(m.value for m in PricingMode))

try:
    TIER_DISCOUNTS = parse_tier_discounts(os.environ.get("TIER_DISCOUNTS", "50:0.15,20:0.10,10:0.05"))
except ValueError as e:
    _exit_with_config_error("TIER_DISCOUNTS", e, "comma-separated min_quantity:rate pairs, e.g. 50:0.15,20:0.10")

try:
    SHIPPING_TIERS = parse_shipping_tiers(os.environ.get("SHIPPING_TIERS", "0:3000,20000:2000,50000:0"))
except ValueError as e:
    _exit_with_config_error("SHIPPING_TIERS", e, "comma-separated min_subtotal_minor:cost_minor pairs")

try:
    SUBSCRIPTION_DISCOUNT_RATE = _parse_rate(os.environ.get("SUBSCRIPTION_DISCOUNT_RATE", "0.10"))
    TAX_RATE = _parse_rate(os.environ.get("TAX_RATE", "0"))
    PRICE_TOLERANCE = _parse_rate(os.environ.get("PRICE_TOLERANCE", "0.01"))
except ValueError as e:
    _exit_with_config_error("SUBSCRIPTION_DISCOUNT_RATE/TAX_RATE/PRICE_TOLERANCE", e, "decimal between 0 and 1")

CATALOG_PATH = os.environ.get("CATALOG_PATH", str(PROJECT_ROOT / "catalog" / "products.json"))

# Order Lifecycle Configuration
TRANSITION_MAX_ATTEMPTS = int(os.environ.get("TRANSITION_MAX_ATTEMPTS", "3"))  # Compare-and-set retries
PAYMENT_VERIFICATION_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_VERIFICATION_TIMEOUT_SECONDS", "10"))
PAYMENT_VERIFICATION_MAX_RETRIES = int(os.environ.get("PAYMENT_VERIFICATION_MAX_RETRIES", "2"))

# Notification Configuration
NOTIFICATION_WEBHOOK_URL = os.environ.get("NOTIFICATION_WEBHOOK_URL", "")  # Empty = log only
NOTIFICATION_MAX_RETRIES = int(os.environ.get("NOTIFICATION_MAX_RETRIES", "3"))
NOTIFICATION_RETRY_DELAY_SECONDS = float(os.environ.get("NOTIFICATION_RETRY_DELAY_SECONDS", "2"))
NOTIFICATION_RETRY_INTERVAL_SECONDS = int(os.environ.get("NOTIFICATION_RETRY_INTERVAL_SECONDS", "300"))

# Stripe Configuration
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_API_URL = os.environ.get("STRIPE_API_URL", "https://api.stripe.com")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))

# Logging Configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_MASK_SECRETS = os.environ.get("LOG_MASK_SECRETS", "true") == "true"  # Mask sensitive data in logs

# Log Retention: keep more history in dev for debugging
if RUNTIME_ENVIRONMENT == RuntimeEnvironment.DEV:
    LOG_RETENTION_DAYS = int(os.environ.get("LOG_RETENTION_DAYS", "30"))
else:
    LOG_RETENTION_DAYS = int(os.environ.get("LOG_RETENTION_DAYS", "5"))
