"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest

from asset_monitor.models import AssetType
from asset_monitor.pricing import PriceResolver, StaticPriceSource
from asset_monitor.ratelimit import KeyedRateLimiter, RatePolicy
from asset_monitor.storage.database import DatabaseManager
from asset_monitor.storage.repos import AssetInfoRepository


@pytest.fixture
async def db() -> AsyncGenerator[DatabaseManager, None]:
    """In-memory SQLite database with the full schema."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


@pytest.fixture
def rate_limiter() -> KeyedRateLimiter:
    """Limiter generous enough that tests never wait on it."""
    return KeyedRateLimiter(default_policy=RatePolicy(requests=1000, interval_seconds=1.0))


@pytest.fixture
def price_resolver() -> PriceResolver:
    return PriceResolver(
        [StaticPriceSource({"XRP": Decimal("0.5"), "ATOM": Decimal("8"), "ADA": Decimal("0.25")})]
    )


@pytest.fixture
async def native_tokens(db: DatabaseManager) -> None:
    """Register native token rows for the chains used in tests."""
    async with db.get_async_session() as session:
        repo = AssetInfoRepository(session)
        await repo.get_or_create("ripple", "XRP", AssetType.NATIVE_TOKEN)
        await repo.get_or_create("cosmoshub", "ATOM", AssetType.NATIVE_TOKEN)
        await repo.get_or_create("cardano", "ADA", AssetType.NATIVE_TOKEN)
        await repo.get_or_create("ethereum", "ETH", AssetType.NATIVE_TOKEN)
