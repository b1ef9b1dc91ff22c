"""Tests for engine configuration and the transaction scope."""

from __future__ import annotations

import pytest
from sqlalchemy.pool import StaticPool

from asset_monitor.storage.database import DatabaseManager, engine_options, normalize_database_url
from asset_monitor.storage.repos import AssetGroupRepository


class TestEngineConfiguration:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@db/assets", "postgresql+asyncpg://u:p@db/assets"),
            ("sqlite:///monitor.db", "sqlite+aiosqlite:///monitor.db"),
            ("postgresql+asyncpg://u:p@db/assets", "postgresql+asyncpg://u:p@db/assets"),
        ],
    )
    def test_normalize_database_url(self, url: str, expected: str) -> None:
        assert normalize_database_url(url) == expected

    def test_postgres_gets_a_sized_pool(self) -> None:
        options = engine_options("postgresql+asyncpg://db/x", pool_size=3, max_overflow=1, echo=False)
        assert options == {"echo": False, "pool_size": 3, "max_overflow": 1}

    def test_sqlite_memory_shares_one_connection(self) -> None:
        options = engine_options("sqlite+aiosqlite:///:memory:", pool_size=3, max_overflow=1, echo=True)
        assert options == {"echo": True, "poolclass": StaticPool}


class TestTransactionScope:
    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, db: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            async with db.get_async_session() as session:
                await AssetGroupRepository(session).create("treasury")
                raise RuntimeError("abort")

        async with db.get_async_session() as session:
            assert await AssetGroupRepository(session).get_by_name("treasury") is None

    @pytest.mark.asyncio
    async def test_dispose_is_repeatable(self) -> None:
        manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
        await manager.dispose_async()
        await manager.init_schema_async()
        await manager.dispose_async()
        await manager.dispose_async()
