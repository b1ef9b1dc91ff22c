"""Cosmos SDK native token scanner (bank, staking and distribution modules)."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from asset_monitor.clients.cosmos import CosmosLcdClient
from asset_monitor.models import AssetInfo, AssetQuery, AssetSnapshot, AssetState, Endpoint
from asset_monitor.scanners.base import BaseAssetScanner, EndpointBinding, ScannerContext
from asset_monitor.scanners.registry import register_scanner
from asset_monitor.utils import humanize, parse_decimal, parse_rfc3339

logger = logging.getLogger(__name__)

# Chain key -> expected chain id prefix reported by the node.
COSMOS_CHAIN_IDS: dict[str, str] = {
    "cosmoshub": "cosmoshub-",
    "osmosis": "osmosis-",
    "juno": "juno-",
    "akash": "akashnet-",
    "stargaze": "stargaze-",
    "injective": "injective-",
    "celestia": "celestia",
    "dydx": "dydx-mainnet-",
}

# Display exponents for bond denoms that lack bank metadata on some nodes.
KNOWN_DENOM_DECIMALS: dict[str, int] = {
    "uatom": 6,
    "uosmo": 6,
    "ujuno": 6,
    "uakt": 6,
    "ustars": 6,
    "inj": 18,
    "utia": 6,
    "adydx": 18,
}


def display_exponent(metadata: dict[str, Any] | None) -> int | None:
    """Exponent of the display unit in bank denom metadata, if present."""
    if not metadata:
        return None
    display = metadata.get("display")
    for unit in metadata.get("denom_units") or []:
        if unit.get("denom") == display:
            exponent = unit.get("exponent")
            return int(exponent) if exponent is not None else 0
    return None


def _sum_amounts(amounts: list[str]) -> int:
    return sum(int(amount) for amount in amounts)


@register_scanner("native", *COSMOS_CHAIN_IDS)
class CosmosNativeScanner(BaseAssetScanner[CosmosLcdClient]):
    """Liquid, delegated, unbonding and reward positions of the bond denom."""

    chain_id: str
    denom: str
    decimals: int
    _native: AssetInfo

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> CosmosLcdClient:
        return CosmosLcdClient(endpoint.url, timeout=context.request_timeout_seconds)

    async def _init(self) -> None:
        self._native = await self._native_asset()
        binding = self._binding()

        self.chain_id = await self._call(binding, lambda c: c.get_chain_id())
        expected = COSMOS_CHAIN_IDS.get(self.chain)
        if expected and not self.chain_id.startswith(expected):
            raise self._init_error(
                f"endpoint reports chain id {self.chain_id!r}, expected {expected}*"
            )

        self.denom = await self._call(binding, lambda c: c.get_bond_denom())
        if not self.denom:
            raise self._init_error(f"no bond denom (chain id {self.chain_id})")

        metadata = await self._call(binding, lambda c: c.get_denom_metadata(self.denom))
        decimals = display_exponent(metadata)
        if decimals is None:
            decimals = KNOWN_DENOM_DECIMALS.get(self.denom)
            logger.debug("No bank metadata for %s, using known decimals %s", self.denom, decimals)
        if decimals is None:
            raise self._init_error(
                f"unable to resolve decimals (chain id {self.chain_id}, denom {self.denom})"
            )
        self.decimals = decimals
        logger.info(
            "Cosmos scanner %s ready: chain_id=%s denom=%s decimals=%d",
            self.chain,
            self.chain_id,
            self.denom,
            self.decimals,
        )

    def _delegated(self, delegations: list[dict[str, Any]]) -> int:
        return _sum_amounts(
            [
                d["balance"]["amount"]
                for d in delegations
                if (d.get("balance") or {}).get("denom") == self.denom
            ]
        )

    @staticmethod
    def _unbonding(responses: list[dict[str, Any]]) -> int:
        return _sum_amounts(
            [entry["balance"] for response in responses for entry in response.get("entries") or []]
        )

    def _reward(self, total: list[dict[str, Any]]) -> Decimal:
        for coin in total:
            if coin.get("denom") == self.denom:
                return parse_decimal(str(coin.get("amount") or "0"), self.decimals)
        return Decimal(0)

    async def _query(
        self, target: AssetQuery, binding: EndpointBinding[CosmosLcdClient]
    ) -> list[AssetSnapshot]:
        address = target.address
        block_time, balance, delegations, unbonding, rewards, price = await self._fan_out(
            self._call(binding, lambda c: c.get_latest_block_time()),
            self._call(binding, lambda c: c.get_balance(address, self.denom)),
            self._call(binding, lambda c: c.get_delegations(address)),
            self._call(binding, lambda c: c.get_unbonding_delegations(address)),
            self._call(binding, lambda c: c.get_rewards_total(address)),
            self._price(self._native.code),
        )

        chain_name = humanize(self.chain)
        positions = [
            (AssetState.LIQUID, f"{chain_name} Native Token", parse_decimal(balance, self.decimals)),
            (
                AssetState.LOCKED,
                f"Staked {chain_name} Native Token",
                parse_decimal(self._delegated(delegations), self.decimals),
            ),
            (
                AssetState.UNBONDING,
                f"Unbonding {chain_name} Native Token",
                parse_decimal(self._unbonding(unbonding), self.decimals),
            ),
            (AssetState.CLAIMABLE, f"{chain_name} Staking Reward", self._reward(rewards)),
        ]
        positions = [p for p in positions if p[2] > 0]
        if not positions:
            return []

        captured_at = parse_rfc3339(block_time)
        return [
            self._snapshot(
                self._native,
                state=state,
                quantity=quantity,
                price=price,
                captured_at=captured_at,
                address=address,
                name=name,
            )
            for state, name, quantity in positions
        ]
