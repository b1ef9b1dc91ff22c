"""XRP Ledger JSON-RPC client."""

from __future__ import annotations

import logging
from typing import Any

from asset_monitor.clients.base import ChainClientError, JsonHttpClient, TransientClientError

logger = logging.getLogger(__name__)

# rippled errors that mean "try again later" rather than "bad request"
_TRANSIENT_ERRORS = frozenset({"slowDown", "tooBusy", "noNetwork", "noCurrent", "noClosed"})


class RippleClient(JsonHttpClient):
    """Read-only client for a rippled/Clio JSON-RPC endpoint."""

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = await self.post("", {"method": method, "params": [params]})
        result = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(result, dict):
            raise ChainClientError(f"XRPL {method}: response has no result")
        if result.get("status") == "error":
            error = str(result.get("error") or "unknown")
            if error in _TRANSIENT_ERRORS:
                raise TransientClientError(f"XRPL {method}: {error}")
        return result

    async def account_info(self, address: str) -> dict[str, Any] | None:
        """Get validated account data.

        Returns:
            The ``account_data`` object, or None for an unfunded account.

        Raises:
            ChainClientError: On any other RPC error.
        """
        result = await self._rpc(
            "account_info",
            {"account": address, "ledger_index": "validated", "strict": True},
        )
        error = result.get("error")
        if error == "actNotFound":
            logger.debug("XRPL account %s is not funded", address)
            return None
        if error:
            message = result.get("error_message") or error
            raise ChainClientError(f"XRPL account_info failed for {address}: {message}")

        account_data = result.get("account_data")
        if not isinstance(account_data, dict):
            raise ChainClientError("XRPL account_info: missing account_data")
        return account_data

    async def get_xrp_balance_drops(self, address: str) -> str:
        """Get an account's XRP balance in drops, ``"0"`` when unfunded."""
        account_data = await self.account_info(address)
        if account_data is None:
            return "0"
        balance = account_data.get("Balance")
        if balance is None:
            raise ChainClientError("XRPL account_info: missing Balance")
        return str(balance)
