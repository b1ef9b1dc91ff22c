"""XRP Ledger native token scanner."""

from __future__ import annotations

import logging

from asset_monitor.clients.ripple import RippleClient
from asset_monitor.models import AssetInfo, AssetQuery, AssetSnapshot, AssetState, Endpoint
from asset_monitor.scanners.base import BaseAssetScanner, EndpointBinding, ScannerContext
from asset_monitor.scanners.registry import register_scanner
from asset_monitor.utils import parse_decimal

logger = logging.getLogger(__name__)

XRP_DECIMALS = 6


@register_scanner("native", "ripple")
class RippleNativeScanner(BaseAssetScanner[RippleClient]):
    """Liquid XRP balance of an account."""

    _native: AssetInfo

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> RippleClient:
        return RippleClient(endpoint.url, timeout=context.request_timeout_seconds)

    async def _init(self) -> None:
        self._native = await self._native_asset()

    async def _query(
        self, target: AssetQuery, binding: EndpointBinding[RippleClient]
    ) -> list[AssetSnapshot]:
        drops, price = await self._fan_out(
            self._call(binding, lambda c: c.get_xrp_balance_drops(target.address)),
            self._price(self._native.code),
        )
        quantity = parse_decimal(drops, XRP_DECIMALS)
        if quantity <= 0:
            return []

        return [
            self._snapshot(
                self._native,
                state=AssetState.LIQUID,
                quantity=quantity,
                price=price,
                captured_at=None,
                address=target.address,
            )
        ]
