"""EVM native token scanner."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from asset_monitor.clients.evm import CHAIN_IDS, NATIVE_DECIMALS, EvmClient
from asset_monitor.models import AssetInfo, AssetQuery, AssetSnapshot, AssetState, Endpoint
from asset_monitor.scanners.base import BaseAssetScanner, EndpointBinding, ScannerContext
from asset_monitor.scanners.registry import register_scanner
from asset_monitor.utils import parse_decimal

logger = logging.getLogger(__name__)


@register_scanner("native", *CHAIN_IDS)
class EvmNativeScanner(BaseAssetScanner[EvmClient]):
    """Liquid native balance (ETH, MATIC, BNB, ...) as of the latest block."""

    _native: AssetInfo

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> EvmClient:
        return EvmClient(endpoint.url)

    async def _init(self) -> None:
        self._native = await self._native_asset()
        expected = CHAIN_IDS.get(self.chain)
        for binding in self.bindings:
            chain_id = await self._call(binding, lambda c: c.chain_id())
            if expected is not None and chain_id != expected:
                raise self._init_error(
                    f"RPC {binding.limiter_key} reports chain id {chain_id}, expected {expected}"
                )

    async def _query(
        self, target: AssetQuery, binding: EndpointBinding[EvmClient]
    ) -> list[AssetSnapshot]:
        wei, block, price = await self._fan_out(
            self._call(binding, lambda c: c.get_balance(target.address)),
            self._call(binding, lambda c: c.get_latest_block()),
            self._price(self._native.code),
        )
        quantity = parse_decimal(wei, NATIVE_DECIMALS)
        if quantity <= 0:
            return []

        return [
            self._snapshot(
                self._native,
                state=AssetState.LIQUID,
                quantity=quantity,
                price=price,
                captured_at=datetime.fromtimestamp(block["timestamp"], UTC),
                address=target.address,
            )
        ]
