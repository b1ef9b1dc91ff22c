"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the asset
monitor, loading and validating environment variables at startup.

List-valued options (``RATE_LIMITS``, ``PRICE_SOURCES``, ``PRICE_STATIC``,
``PRICE_COINGECKO_IDS``, ``TELEGRAM_CHAT_IDS``) are read as plain
comma-separated strings and parsed by properties on their settings group.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from asset_monitor.ratelimit import RatePolicy

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_KNOWN_PRICE_SOURCES = ("coingecko", "binance", "static")


def _split_pairs(raw: str, *, option: str) -> list[tuple[str, str]]:
    """Split ``"a=b,c=d"`` into ``[("a", "b"), ("c", "d")]``."""
    pairs: list[tuple[str, str]] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise ValueError(f"{option}: expected KEY=VALUE, got {part!r}")
        pairs.append((key.strip(), value.strip()))
    return pairs


DATABASE_URL_SCHEMES = (
    "postgresql://",
    "postgresql+asyncpg://",
    "sqlite://",
    "sqlite+aiosqlite://",
)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(DATABASE_URL_SCHEMES):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (optional, enables price catalogue caching)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class RateLimitSettings(BaseSettings):
    """Outbound request rate limits, keyed by endpoint."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    default_requests: int = Field(
        default=5,
        alias="RATE_LIMIT_DEFAULT_REQUESTS",
        ge=1,
        description="Requests admitted per interval for keys without an explicit policy",
    )
    default_interval_seconds: float = Field(
        default=1.0,
        alias="RATE_LIMIT_DEFAULT_INTERVAL_SECONDS",
        gt=0.0,
        description="Sliding window length for the default policy",
    )
    default_max_concurrency: int | None = Field(
        default=None,
        alias="RATE_LIMIT_DEFAULT_MAX_CONCURRENCY",
        ge=1,
        description="Optional in-flight cap for the default policy",
    )
    limits: str = Field(
        default="",
        alias="RATE_LIMITS",
        description="Per-key policies: key=requests/seconds[/concurrency], comma-separated",
    )

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, v: str) -> str:
        for _, spec in _split_pairs(v, option="RATE_LIMITS"):
            RatePolicy.parse(spec)
        return v

    def default_policy(self) -> RatePolicy:
        return RatePolicy(
            requests=self.default_requests,
            interval_seconds=self.default_interval_seconds,
            max_concurrency=self.default_max_concurrency,
        )

    def policies(self) -> dict[str, RatePolicy]:
        """Explicit per-key policies parsed from ``RATE_LIMITS``."""
        return {
            key: RatePolicy.parse(spec) for key, spec in _split_pairs(self.limits, option="RATE_LIMITS")
        }


class PricingSettings(BaseSettings):
    """USD price source settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    sources: str = Field(
        default="coingecko,binance,static",
        alias="PRICE_SOURCES",
        description="Ordered, comma-separated price sources (coingecko, binance, static)",
    )
    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        alias="PRICE_COINGECKO_BASE_URL",
        description="CoinGecko API base URL",
    )
    coingecko_api_key: SecretStr | None = Field(
        default=None,
        alias="PRICE_COINGECKO_API_KEY",
        description="CoinGecko demo API key",
    )
    coingecko_catalogue_ttl_seconds: int = Field(
        default=86_400,
        alias="PRICE_COINGECKO_CATALOGUE_TTL_SECONDS",
        ge=60,
        description="How long the /coins/list catalogue is cached in Redis",
    )
    coingecko_ids: str = Field(
        default="",
        alias="PRICE_COINGECKO_IDS",
        description="Explicit code to CoinGecko id overrides: CODE=id, comma-separated",
    )
    binance_base_url: str = Field(
        default="https://api.binance.com",
        alias="PRICE_BINANCE_BASE_URL",
        description="Binance API base URL",
    )
    binance_quote_asset: str = Field(
        default="USDT",
        alias="PRICE_BINANCE_QUOTE_ASSET",
        description="Quote asset used to build Binance symbols",
    )
    static: str = Field(
        default="USDT=1,USDC=1",
        alias="PRICE_STATIC",
        description="Fixed prices: CODE=price, comma-separated",
    )

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: str) -> str:
        names = [p.strip().lower() for p in v.split(",") if p.strip()]
        if not names:
            raise ValueError("PRICE_SOURCES must name at least one source")
        unknown = [n for n in names if n not in _KNOWN_PRICE_SOURCES]
        if unknown:
            raise ValueError(f"Unknown price source(s): {', '.join(unknown)}")
        return ",".join(names)

    @field_validator("static")
    @classmethod
    def validate_static(cls, v: str) -> str:
        for code, price in _split_pairs(v, option="PRICE_STATIC"):
            try:
                value = Decimal(price)
            except InvalidOperation as e:
                raise ValueError(f"PRICE_STATIC: invalid price for {code}: {price!r}") from e
            if not value.is_finite() or value <= 0:
                raise ValueError(f"PRICE_STATIC: price for {code} must be > 0")
        return v

    @property
    def source_names(self) -> tuple[str, ...]:
        return tuple(self.sources.split(","))

    @property
    def static_prices(self) -> dict[str, Decimal]:
        return {code.upper(): Decimal(price) for code, price in _split_pairs(self.static, option="PRICE_STATIC")}

    @property
    def coingecko_overrides(self) -> dict[str, str]:
        return {
            code.upper(): coin_id
            for code, coin_id in _split_pairs(self.coingecko_ids, option="PRICE_COINGECKO_IDS")
        }


class ScanSettings(BaseSettings):
    """Scan cycle settings."""

    model_config = SettingsConfigDict(env_prefix="SCAN_", extra="ignore")

    query_timeout_seconds: float = Field(
        default=120.0,
        alias="SCAN_QUERY_TIMEOUT_SECONDS",
        gt=0.0,
        description="Upper bound for one (scanner, target) query",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="SCAN_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        description="HTTP timeout for a single chain or price API request",
    )
    max_retries: int = Field(
        default=3,
        alias="SCAN_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries for transient chain API errors",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        alias="SCAN_RETRY_DELAY_SECONDS",
        ge=0.0,
        description="Base delay for exponential backoff between retries",
    )
    notify_summary: bool = Field(
        default=True,
        alias="SCAN_NOTIFY_SUMMARY",
        description="Append the rolling summary to cycle notifications",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_ids: str = Field(
        default="",
        alias="TELEGRAM_CHAT_IDS",
        description="Comma-separated Telegram chat IDs for reports",
    )

    @property
    def chat_id_list(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.chat_ids.split(",") if p.strip())

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and bool(self.chat_id_list)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from asset_monitor.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.rate_limit.policies())
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pricing: PricingSettings = Field(
        default_factory=lambda: PricingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scan: ScanSettings = Field(
        default_factory=lambda: ScanSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending notifications",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "rate_limit": {
                "default": (
                    f"{self.rate_limit.default_requests}/{self.rate_limit.default_interval_seconds}s"
                ),
                "keys": ",".join(sorted(self.rate_limit.policies())) or "(none)",
            },
            "pricing": {
                "sources": self.pricing.sources,
                "coingecko_base_url": self.pricing.coingecko_base_url,
                "coingecko_api_key": "(set)" if self.pricing.coingecko_api_key else "(not set)",
                "binance_base_url": self.pricing.binance_base_url,
            },
            "scan": {
                "query_timeout_seconds": str(self.scan.query_timeout_seconds),
                "max_retries": str(self.scan.max_retries),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
