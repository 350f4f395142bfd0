"""
Startup configuration validation module.

Catches misconfigurations at boot (fail-fast) rather than on the first booking
request.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    try:
        validate_startup_config()
    except StartupValidationError as e:
        logger.critical(f"Startup blocked: {e}")
        raise
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

PLACEHOLDER_JWT_SECRET = "change-me-in-production-please"


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


def validate_startup_config(settings: Settings | None = None) -> dict[str, bool]:
    """
    Validate critical configuration at startup.

    Tiered validation:
    - CRITICAL: block startup (timezone, slot granularity, lead time)
    - IMPORTANT: warn but allow startup (placeholder secrets, driver)

    Returns:
        dict of {check_name: passed}

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = settings or get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # CRITICAL
    # =========================================================================

    try:
        ZoneInfo(settings.TIMEZONE)
        results["timezone"] = True
        logger.info(f"  [OK] Business timezone: {settings.TIMEZONE}")
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"TIMEZONE '{settings.TIMEZONE}' is not a known IANA timezone")
        results["timezone"] = False

    if settings.SLOT_GRANULARITY_MINUTES <= 0:
        critical_failures.append(
            f"SLOT_GRANULARITY_MINUTES must be positive, got {settings.SLOT_GRANULARITY_MINUTES}"
        )
        results["slot_granularity"] = False
    else:
        results["slot_granularity"] = True

    if settings.MIN_LEAD_TIME_MINUTES < 0:
        critical_failures.append(
            f"MIN_LEAD_TIME_MINUTES cannot be negative, got {settings.MIN_LEAD_TIME_MINUTES}"
        )
        results["min_lead_time"] = False
    else:
        results["min_lead_time"] = True

    # =========================================================================
    # IMPORTANT
    # =========================================================================

    if settings.JWT_SECRET == PLACEHOLDER_JWT_SECRET or len(settings.JWT_SECRET) < 32:
        logger.warning("JWT_SECRET is a placeholder or shorter than 32 characters")
        results["jwt_secret"] = False
    else:
        results["jwt_secret"] = True

    if settings.STRIPE_SECRET_KEY.endswith("_placeholder"):
        logger.info("  [INFO] Stripe not configured - checkout disabled")
        results["stripe_configured"] = False
    else:
        results["stripe_configured"] = True

    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning("DATABASE_URL should use asyncpg driver in production: postgresql+asyncpg://...")
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    passed = sum(1 for v in results.values() if v)
    logger.info(f"Startup validation: {passed}/{len(results)} checks passed")

    if critical_failures:
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
