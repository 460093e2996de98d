"""
Logging setup for the checkout service.

One root configuration for the whole process: a console handler plus a file
under logs/ rotated at midnight. Both handlers pass records through
SecretMaskingFilter so gateway credentials and customer PII never reach disk.
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Pattern

import config

LOG_FORMAT = '%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Loggers that are too chatty at INFO for an order audit log
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "uvicorn.access")


class SecretMaskingFilter(logging.Filter):
    """
    Replaces secrets in log messages with [REDACTED_*] placeholders.

    Covered: Stripe API keys and webhook signing secrets, admin/API keys,
    bearer tokens, passwords, card numbers and email addresses.
    """

    PATTERNS: list[tuple[Pattern, str]] = [
        (re.compile(r'\b(sk|rk)_(live|test)_[A-Za-z0-9]{8,}'), '[REDACTED_STRIPE_KEY]'),
        (re.compile(r'\bwhsec_[A-Za-z0-9]{8,}'), '[REDACTED_WEBHOOK_SECRET]'),
        (re.compile(r'(api[_-]?key["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-]{16,})', re.IGNORECASE),
         r'\1[REDACTED_API_KEY]'),
        (re.compile(r'(admin[_-]?key["\']?\s*[:=]\s*["\']?)([^\s"\',]{8,})', re.IGNORECASE),
         r'\1[REDACTED_ADMIN_KEY]'),
        (re.compile(r'(Bearer\s+)([A-Za-z0-9_\-\.]+)', re.IGNORECASE), r'\1[REDACTED_BEARER_TOKEN]'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\',]+)', re.IGNORECASE), r'\1[REDACTED_PASSWORD]'),
        # Card numbers: 13-19 digits, optionally grouped by spaces or dashes
        (re.compile(r'\b(?:\d[ -]?){12,18}\d\b'), '[REDACTED_CARD]'),
        (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[REDACTED_EMAIL]'),
    ]

    def mask(self, value: str) -> str:
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.mask(arg) if isinstance(arg, str) else arg for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                key: self.mask(arg) if isinstance(arg, str) else arg
                for key, arg in record.args.items()
            }
        return True


def _build_handlers(log_file: Path, level: int, retention_days: int, mask_secrets: bool) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.TimedRotatingFileHandler(
            filename=log_file, when="midnight", backupCount=retention_days, encoding="utf-8"
        ),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        if mask_secrets:
            handler.addFilter(SecretMaskingFilter())
    return handlers


def setup_logging(log_dir: Path | None = None) -> None:
    """
    Configure the root logger. Called once from app.main().

    Level, retention and masking come from LOG_LEVEL, LOG_RETENTION_DAYS and
    LOG_MASK_SECRETS. Calling it again replaces the previous handlers.
    """
    log_dir = log_dir or config.PROJECT_ROOT / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    handlers = _build_handlers(
        log_dir / "checkout.log", level, config.LOG_RETENTION_DAYS, config.LOG_MASK_SECRETS
    )

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging to {log_dir / 'checkout.log'} (level {logging.getLevelName(level)}, "
        f"{config.LOG_RETENTION_DAYS} day retention, masking {'on' if config.LOG_MASK_SECRETS else 'off'})"
    )
