"""Mapping from ``(chain, scanner_type)`` to scanner class."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from asset_monitor.models import AssetScannerConfig
from asset_monitor.scanners.base import BaseAssetScanner, ScannerContext

logger = logging.getLogger(__name__)

ScannerT = TypeVar("ScannerT", bound=type[BaseAssetScanner[Any]])


class ScannerRegistry:
    """Load-time table of available scanner variants.

    Example:
        ```python
        registry = ScannerRegistry()

        @registry.register("native", "ripple")
        class RippleNativeScanner(BaseAssetScanner[RippleClient]):
            ...

        scanner_cls = registry.get("ripple", "native")
        ```
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], type[BaseAssetScanner[Any]]] = {}

    def register(self, scanner_type: str, *chains: str) -> Callable[[ScannerT], ScannerT]:
        """Class decorator registering a scanner for one or more chains."""
        if not chains:
            raise ValueError("register() needs at least one chain")

        def decorator(cls: ScannerT) -> ScannerT:
            for chain in chains:
                key = (chain, scanner_type)
                existing = self._entries.get(key)
                if existing is not None and existing is not cls:
                    raise ValueError(
                        f"Scanner for {chain}/{scanner_type} already registered: {existing.__name__}"
                    )
                self._entries[key] = cls
            return cls

        return decorator

    def get(self, chain: str, scanner_type: str) -> type[BaseAssetScanner[Any]] | None:
        return self._entries.get((chain, scanner_type))

    def keys(self) -> list[tuple[str, str]]:
        return sorted(self._entries)

    def create(self, config: AssetScannerConfig, context: ScannerContext) -> BaseAssetScanner[Any]:
        """Instantiate the scanner registered for ``config``.

        Raises:
            KeyError: If nothing is registered for the config's key.
        """
        cls = self.get(config.chain, config.scanner_type)
        if cls is None:
            raise KeyError(f"No scanner registered for {config.chain}/{config.scanner_type}")
        return cls.from_config(config, context)


default_registry = ScannerRegistry()
register_scanner = default_registry.register
