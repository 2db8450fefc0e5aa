"""
Runtime settings for the billing service.

Values come from environment variables. A `.env` file in the project root is
loaded first so local development does not need exported variables.

Settings are read once at process start and passed to whatever needs them.
Nothing here opens a connection.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ENV_PATH = Path(__file__).parent.parent / ".env"


def _require(name: str, hint: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing environment variable: {name}. {hint}")
    return value


def _decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise RuntimeError(f"{name} must be a decimal number, got {raw!r}") from exc


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: str
    supabase_key: str
    stripe_secret_key: str
    stripe_webhook_secret: Optional[str] = None
    stripe_api_base: str = "https://api.stripe.com/v1"
    gateway_timeout_seconds: float = 20.0
    redis_url: str = "redis://localhost:6379/0"
    currency: str = "gbp"
    app_base_url: str = "http://localhost:3000"
    default_commission_percent: Decimal = Decimal("10")
    reconcile_claim_ttl_seconds: int = 600
    log_level: str = "INFO"


def load_settings(env_file: Optional[Path] = _ENV_PATH) -> Settings:
    """
    Build Settings from the environment.

    Raises:
        RuntimeError: a required variable is missing or malformed.
    """

    if env_file is not None:
        load_dotenv(dotenv_path=env_file)

    return Settings(
        supabase_url=_require("SUPABASE_URL", "Set SUPABASE_URL to your Supabase project URL."),
        supabase_key=_require("SUPABASE_KEY", "Set SUPABASE_KEY to a server-side Supabase API key."),
        stripe_secret_key=_require("STRIPE_SECRET_KEY", "Set STRIPE_SECRET_KEY to your Stripe secret key."),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        stripe_api_base=os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/"),
        gateway_timeout_seconds=float(_int("GATEWAY_TIMEOUT_SECONDS", 20)),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        currency=os.getenv("BILLING_CURRENCY", "gbp").lower(),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/"),
        default_commission_percent=_decimal("DEFAULT_COMMISSION_PERCENT", "10"),
        reconcile_claim_ttl_seconds=_int("RECONCILE_CLAIM_TTL_SECONDS", 600),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["Settings", "load_settings"]
