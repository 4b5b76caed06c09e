"""
Environment Configuration Helper
================================
Centralized env var loading with fallbacks.
Handles both server-side vars and NEXT_PUBLIC_ prefixed vars shared with the web client.
"""

import os
import logging
from typing import Optional, Any, List

logger = logging.getLogger(__name__)


def get_env(*names: str, default: Any = None) -> Optional[str]:
    """
    Get environment variable with fallback names.

    Tries each name in order, returns first non-empty value.

    Example:
        get_env("TOSS_CLIENT_KEY", "NEXT_PUBLIC_TOSS_CLIENT_KEY")

    Args:
        *names: Variable names to try in order
        default: Default value if none found

    Returns:
        First non-empty value found, or default
    """
    for name in names:
        value = os.getenv(name)
        if value and str(value).strip():
            return value.strip()
    return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean env var (true/false/1/0)."""
    value = os.getenv(name, "").lower().strip()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(name: str, default: int) -> int:
    """Get integer env var, falling back to default on a bad value."""
    value = get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using %s", name, value, default)
        return default


def get_env_list(name: str, default: str = "") -> List[str]:
    """Comma-separated env var as a lower-cased list."""
    raw = get_env(name, default=default) or ""
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


# ============================================================================
# CENTRALIZED CONFIG (loaded once at import)
# ============================================================================

class Config:
    """Centralized configuration from env vars."""

    API_VERSION = "1.4"

    # Database
    DATABASE_URL = get_env("DATABASE_URL")

    # Public URL used to build payment redirect targets
    APP_BASE_URL = get_env("APP_BASE_URL", "NEXT_PUBLIC_APP_URL", default="http://localhost:3000")

    # Toss Payments
    TOSS_CLIENT_KEY = get_env("TOSS_CLIENT_KEY", "NEXT_PUBLIC_TOSS_CLIENT_KEY")
    TOSS_SECRET_KEY = get_env("TOSS_SECRET_KEY")
    TOSS_WEBHOOK_SECRET = get_env("TOSS_WEBHOOK_SECRET")
    TOSS_API_BASE = get_env("TOSS_API_BASE", default="https://api.tosspayments.com")

    # Stripe
    STRIPE_WEBHOOK_SECRET = get_env("STRIPE_WEBHOOK_SECRET")

    # Entitlement
    FREE_ANALYSIS_LIMIT = get_env_int("FREE_ANALYSIS_LIMIT", 3)

    # Privileged identities (emails or user ids), comma separated
    ADMIN_EMAILS = get_env_list("ADMIN_EMAILS")

    # Auth
    API_AUTH_ENABLED = get_env_bool("API_AUTH_ENABLED", False)
    API_AUTH_KEY = get_env("API_AUTH_KEY")

    @classmethod
    def log_status(cls):
        """Log config status at boot (no secrets, just availability)."""
        status = {
            "db": bool(cls.DATABASE_URL),
            "toss": bool(cls.TOSS_SECRET_KEY),
            "toss_webhook": bool(cls.TOSS_WEBHOOK_SECRET),
            "stripe_webhook": bool(cls.STRIPE_WEBHOOK_SECRET),
            "admins": len(cls.ADMIN_EMAILS),
            "auth": cls.API_AUTH_ENABLED,
        }

        status_str = " ".join(f"{k}={v}" for k, v in status.items())
        logger.info(f"ENV OK: {status_str}")

        return status

    @classmethod
    def validate_required(cls):
        """Check required vars are set."""
        missing = []

        if not cls.DATABASE_URL:
            missing.append("DATABASE_URL")
        if not cls.TOSS_SECRET_KEY:
            missing.append("TOSS_SECRET_KEY")
        if not (cls.TOSS_WEBHOOK_SECRET or cls.STRIPE_WEBHOOK_SECRET):
            missing.append("TOSS_WEBHOOK_SECRET|STRIPE_WEBHOOK_SECRET")

        if missing:
            logger.warning(f"Missing recommended env vars: {missing}")

        return len(missing) == 0
