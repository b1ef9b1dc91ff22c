"""Blockfrost (Cardano) REST client."""

from __future__ import annotations

from typing import Any

import httpx

from asset_monitor.clients.base import DEFAULT_REQUEST_TIMEOUT, JsonHttpClient, require

DEFAULT_BASE_URL = "https://cardano-mainnet.blockfrost.io/api/v0"
PROJECT_ID_HEADER = "project_id"


class BlockfrostClient(JsonHttpClient):
    """Read-only client for the Blockfrost Cardano API.

    Unknown addresses and accounts surface as ``NotFoundError`` (HTTP 404).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        project_id: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url,
            headers={PROJECT_ID_HEADER: project_id} if project_id else None,
            timeout=timeout,
            client=client,
        )

    async def address(self, address: str) -> dict[str, Any]:
        payload = await self.get(f"/addresses/{address}")
        return dict(payload)

    async def account(self, stake_address: str) -> dict[str, Any]:
        payload = await self.get(f"/accounts/{stake_address}")
        return dict(payload)

    async def latest_block_time(self) -> int:
        """Get the latest block time as a UNIX timestamp."""
        payload = await self.get("/blocks/latest")
        return int(require(payload, "time"))
