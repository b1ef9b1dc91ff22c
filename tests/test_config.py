"""Tests for configuration loading."""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from asset_monitor.config import (
    PricingSettings,
    RateLimitSettings,
    Settings,
    TelegramSettings,
    clear_settings_cache,
    get_settings,
)
from asset_monitor.ratelimit import RatePolicy
from asset_monitor.storage.database import DatabaseManager


@pytest.fixture(autouse=True)
def base_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Run every test from an empty directory with a minimal environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://monitor:hunter2@db:5432/assets")
    for name in (
        "REDIS_URL",
        "RATE_LIMITS",
        "PRICE_SOURCES",
        "PRICE_STATIC",
        "PRICE_COINGECKO_IDS",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_IDS",
        "LOG_LEVEL",
        "DRY_RUN",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.database.url.startswith("postgresql+asyncpg://")
        assert settings.redis.url is None
        assert not settings.redis.enabled
        assert settings.scan.query_timeout_seconds == 120.0
        assert settings.scan.max_retries == 3
        assert settings.pricing.source_names == ("coingecko", "binance", "static")
        assert not settings.telegram.enabled
        assert settings.dry_run is False
        assert settings.get_logging_level() == logging.INFO

    def test_missing_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL")
        with pytest.raises(ValidationError):
            Settings()

    def test_accepts_sync_sqlite_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "sqlite:///monitor.db")
        settings = Settings()
        assert settings.database.url == "sqlite:///monitor.db"
        assert DatabaseManager(settings.database.url).database_url == "sqlite+aiosqlite:///monitor.db"

    def test_rejects_unknown_database_scheme(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "mysql://localhost/db")
        with pytest.raises(ValidationError):
            Settings()

    def test_rejects_bad_redis_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_URL", "http://localhost:6379")
        with pytest.raises(ValidationError):
            Settings()

    def test_reads_dotenv(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".env").write_text("LOG_LEVEL=DEBUG\nSCAN_MAX_RETRIES=5\n")
        settings = Settings()
        assert settings.log_level == "DEBUG"
        assert settings.scan.max_retries == 5

    def test_redacted_summary_masks_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRICE_COINGECKO_API_KEY", "cg-secret")
        summary = Settings().redacted_summary()
        assert summary["database_url"] == "postgresql+asyncpg://monitor:***@db:5432/assets"
        assert "hunter2" not in str(summary)
        assert "cg-secret" not in str(summary)

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first


class TestRateLimitSettings:
    def test_policies(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RATE_LIMITS", "xrpl=10/1, coingecko=30/60/2")
        settings = RateLimitSettings()
        assert settings.policies() == {
            "xrpl": RatePolicy(10, 1.0),
            "coingecko": RatePolicy(30, 60.0, 2),
        }

    def test_default_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RATE_LIMIT_DEFAULT_REQUESTS", "7")
        monkeypatch.setenv("RATE_LIMIT_DEFAULT_INTERVAL_SECONDS", "2.5")
        assert RateLimitSettings().default_policy() == RatePolicy(7, 2.5)

    def test_invalid_policy_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RATE_LIMITS", "xrpl=fast")
        with pytest.raises(ValidationError):
            RateLimitSettings()


class TestPricingSettings:
    def test_static_prices_and_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRICE_STATIC", "usdt=1, dai=1.0")
        monkeypatch.setenv("PRICE_COINGECKO_IDS", "atom=cosmos,ETH=ethereum")
        settings = PricingSettings()
        assert settings.static_prices == {"USDT": Decimal("1"), "DAI": Decimal("1.0")}
        assert settings.coingecko_overrides == {"ATOM": "cosmos", "ETH": "ethereum"}

    def test_sources_are_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRICE_SOURCES", " Binance , static ")
        assert PricingSettings().source_names == ("binance", "static")

    def test_unknown_source_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRICE_SOURCES", "coingecko,kraken")
        with pytest.raises(ValidationError):
            PricingSettings()

    def test_non_positive_static_price_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRICE_STATIC", "USDT=0")
        with pytest.raises(ValidationError):
            PricingSettings()


class TestTelegramSettings:
    def test_enabled_needs_token_and_chats(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        assert not TelegramSettings().enabled

        monkeypatch.setenv("TELEGRAM_CHAT_IDS", "111, -222")
        settings = TelegramSettings()
        assert settings.enabled
        assert settings.chat_id_list == ("111", "-222")
