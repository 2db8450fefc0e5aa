"""Tests for `config/settings.py`."""

from decimal import Decimal

import pytest

from config.settings import load_settings

REQUIRED = {
    "SUPABASE_URL": "https://project.supabase.co",
    "SUPABASE_KEY": "service-key",
    "STRIPE_SECRET_KEY": "sk_test_123",
}

OPTIONAL = (
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_API_BASE",
    "GATEWAY_TIMEOUT_SECONDS",
    "REDIS_URL",
    "BILLING_CURRENCY",
    "APP_BASE_URL",
    "DEFAULT_COMMISSION_PERCENT",
    "RECONCILE_CLAIM_TTL_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env) -> None:
    settings = load_settings(env_file=None)

    assert settings.stripe_webhook_secret is None
    assert settings.currency == "gbp"
    assert settings.default_commission_percent == Decimal("10")
    assert settings.reconcile_claim_ttl_seconds == 600
    assert settings.log_level == "INFO"


def test_overrides_are_normalised(env) -> None:
    env.setenv("BILLING_CURRENCY", "EUR")
    env.setenv("APP_BASE_URL", "https://auctions.example.com/")
    env.setenv("DEFAULT_COMMISSION_PERCENT", "12.5")
    env.setenv("LOG_LEVEL", "debug")

    settings = load_settings(env_file=None)

    assert settings.currency == "eur"
    assert settings.app_base_url == "https://auctions.example.com"
    assert settings.default_commission_percent == Decimal("12.5")
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("name", sorted(REQUIRED))
def test_missing_required_variable(env, name) -> None:
    env.delenv(name)

    with pytest.raises(RuntimeError, match=name):
        load_settings(env_file=None)


@pytest.mark.parametrize(
    "name,value",
    [("DEFAULT_COMMISSION_PERCENT", "ten"), ("RECONCILE_CLAIM_TTL_SECONDS", "1.5")],
)
def test_malformed_values(env, name, value) -> None:
    env.setenv(name, value)

    with pytest.raises(RuntimeError, match=name):
        load_settings(env_file=None)
