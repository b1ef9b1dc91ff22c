"""EVM JSON-RPC client over web3."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from asset_monitor.clients.base import ChainClientError, TransientClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NATIVE_DECIMALS = 18

CHAIN_IDS: dict[str, int] = {
    "ethereum": 1,
    "optimism": 10,
    "bsc": 56,
    "polygon": 137,
    "base": 8453,
    "arbitrum": 42161,
    "avalanche": 43114,
}


class EvmClient:
    """Read-only EVM client for native balances and block data.

    Example:
        ```python
        client = EvmClient("https://polygon-rpc.com")
        chain_id = await client.chain_id()
        wei = await client.get_balance("0x...")
        await client.aclose()
        ```
    """

    def __init__(self, rpc_url: str) -> None:
        self._rpc_url = rpc_url
        self._w3 = self._new_web3_client(rpc_url)

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._inject_poa_middleware(client, rpc_url=rpc_url)
        return client

    def _inject_poa_middleware(self, client: AsyncWeb3[AsyncHTTPProvider], *, rpc_url: str) -> None:
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)

    async def _call(self, name: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except Web3Exception as e:
            raise ChainClientError(f"RPC call {name} failed: {e}") from e
        except (OSError, TimeoutError) as e:
            raise TransientClientError(f"RPC call {name} failed: {e}") from e
        except Exception as e:
            status = getattr(e, "status", None)
            if isinstance(status, int) and (status == 429 or status >= 500):
                raise TransientClientError(f"RPC call {name} returned HTTP {status}") from e
            raise ChainClientError(f"RPC call {name} failed: {e}") from e

    async def chain_id(self) -> int:
        return int(await self._call("chain_id", self._w3.eth.chain_id))

    async def get_balance(self, address: str) -> int:
        """Get the latest native balance in wei."""
        checksum = AsyncWeb3.to_checksum_address(address)
        return int(await self._call("get_balance", self._w3.eth.get_balance(checksum)))

    async def get_latest_block(self) -> dict[str, Any]:
        block = await self._call("get_block", self._w3.eth.get_block("latest"))
        block_dict = dict(block)
        block_dict["timestamp"] = int(block_dict["timestamp"])
        return block_dict

    async def aclose(self) -> None:
        """Close the async HTTP provider session."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session: %s", e)
