"""Cosmos SDK LCD (REST) client."""

from __future__ import annotations

from typing import Any

from asset_monitor.clients.base import ChainClientError, JsonHttpClient, NotFoundError, require

PAGE_LIMIT = 1000


class CosmosLcdClient(JsonHttpClient):
    """Read-only client for the Cosmos SDK REST gateway.

    Amounts are returned as the strings the node reports: integers in base
    denomination units for coins, fixed-point decimal strings for DecCoins
    (distribution rewards).
    """

    async def get_chain_id(self) -> str:
        payload = await self.get("/cosmos/base/tendermint/v1beta1/node_info")
        return str(require(payload, "default_node_info", "network"))

    async def get_bond_denom(self) -> str:
        payload = await self.get("/cosmos/staking/v1beta1/params")
        return str(require(payload, "params", "bond_denom"))

    async def get_denom_metadata(self, denom: str) -> dict[str, Any] | None:
        """Get bank metadata for a denom, or None when the chain has none."""
        try:
            payload = await self.get(f"/cosmos/bank/v1beta1/denoms_metadata/{denom}")
        except NotFoundError:
            return None
        metadata = payload.get("metadata") if isinstance(payload, dict) else None
        return metadata if isinstance(metadata, dict) else None

    async def get_balance(self, address: str, denom: str) -> str:
        payload = await self.get(
            f"/cosmos/bank/v1beta1/balances/{address}/by_denom", params={"denom": denom}
        )
        balance = payload.get("balance") if isinstance(payload, dict) else None
        if not balance:
            return "0"
        return str(balance.get("amount") or "0")

    async def get_delegations(self, address: str) -> list[dict[str, Any]]:
        payload = await self.get(
            f"/cosmos/staking/v1beta1/delegations/{address}",
            params={"pagination.limit": PAGE_LIMIT},
        )
        return list(payload.get("delegation_responses") or [])

    async def get_unbonding_delegations(self, address: str) -> list[dict[str, Any]]:
        payload = await self.get(
            f"/cosmos/staking/v1beta1/delegators/{address}/unbonding_delegations",
            params={"pagination.limit": PAGE_LIMIT},
        )
        return list(payload.get("unbonding_responses") or [])

    async def get_rewards_total(self, address: str) -> list[dict[str, Any]]:
        """Get total pending distribution rewards as DecCoins."""
        payload = await self.get(f"/cosmos/distribution/v1beta1/delegators/{address}/rewards")
        return list(payload.get("total") or [])

    async def get_latest_block_time(self) -> str:
        payload = await self.get("/cosmos/base/tendermint/v1beta1/blocks/latest")
        for block_key in ("sdk_block", "block"):
            block = payload.get(block_key) if isinstance(payload, dict) else None
            if isinstance(block, dict):
                return str(require(block, "header", "time"))
        raise ChainClientError("Latest block response has no header")
