"""Cardano native token scanner backed by Blockfrost."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from asset_monitor.clients.base import NotFoundError
from asset_monitor.clients.blockfrost import BlockfrostClient
from asset_monitor.models import AssetInfo, AssetQuery, AssetSnapshot, AssetState, Endpoint
from asset_monitor.scanners.base import BaseAssetScanner, EndpointBinding, ScannerContext
from asset_monitor.scanners.registry import register_scanner
from asset_monitor.utils import humanize, parse_decimal

logger = logging.getLogger(__name__)

ADA_DECIMALS = 6
LOVELACE = "lovelace"


def is_stake_address(address: str) -> bool:
    return address.startswith(("stake1", "stake_test1"))


@register_scanner("native", "cardano")
class CardanoNativeScanner(BaseAssetScanner[BlockfrostClient]):
    """Liquid ADA and withdrawable staking rewards of a wallet.

    Targets may be payment addresses or stake addresses. Payment addresses
    are resolved to their stake account so the whole wallet is counted; an
    enterprise address (no stake key) falls back to its own balance.
    """

    _native: AssetInfo

    @classmethod
    def create_client(cls, endpoint: Endpoint, context: ScannerContext) -> BlockfrostClient:
        return BlockfrostClient(
            endpoint.url,
            project_id=endpoint.api_key,
            timeout=context.request_timeout_seconds,
        )

    async def _init(self) -> None:
        self._native = await self._native_asset()

    async def _amounts(
        self, address: str, binding: EndpointBinding[BlockfrostClient]
    ) -> tuple[int, int]:
        """Return ``(liquid, withdrawable)`` in lovelace."""
        stake_address = address
        if not is_stake_address(address):
            try:
                info = await self._call(binding, lambda c: c.address(address))
            except NotFoundError:
                logger.debug("Cardano address %s has no on-chain history", address)
                return 0, 0
            stake_address = info.get("stake_address")
            if not stake_address:
                lovelace = sum(
                    int(a["quantity"]) for a in info.get("amount") or [] if a.get("unit") == LOVELACE
                )
                return lovelace, 0

        try:
            account = await self._call(binding, lambda c: c.account(stake_address))
        except NotFoundError:
            logger.debug("Cardano stake account %s is not registered", stake_address)
            return 0, 0
        controlled = int(account.get("controlled_amount") or 0)
        withdrawable = int(account.get("withdrawable_amount") or 0)
        return controlled - withdrawable, withdrawable

    async def _query(
        self, target: AssetQuery, binding: EndpointBinding[BlockfrostClient]
    ) -> list[AssetSnapshot]:
        (liquid, withdrawable), block_time, price = await self._fan_out(
            self._amounts(target.address, binding),
            self._call(binding, lambda c: c.latest_block_time()),
            self._price(self._native.code),
        )

        chain_name = humanize(self.chain)
        positions = [
            (AssetState.LIQUID, f"{chain_name} Native Token", parse_decimal(liquid, ADA_DECIMALS)),
            (
                AssetState.CLAIMABLE,
                f"{chain_name} Staking Reward",
                parse_decimal(withdrawable, ADA_DECIMALS),
            ),
        ]
        positions = [p for p in positions if p[2] > Decimal(0)]
        if not positions:
            return []

        captured_at = datetime.fromtimestamp(block_time, UTC)
        return [
            self._snapshot(
                self._native,
                state=state,
                quantity=quantity,
                price=price,
                captured_at=captured_at,
                address=target.address,
                name=name,
            )
            for state, name, quantity in positions
        ]
