"""Chain scanners.

Importing this package registers every built-in variant in
:data:`~asset_monitor.scanners.registry.default_registry`.
"""

from asset_monitor.scanners.base import (
    BaseAssetScanner,
    EndpointBinding,
    ScannerContext,
    ScannerInitError,
    ScanQueryError,
    limiter_key_for,
)
from asset_monitor.scanners.cardano import CardanoNativeScanner
from asset_monitor.scanners.cosmos import CosmosNativeScanner
from asset_monitor.scanners.evm import EvmNativeScanner
from asset_monitor.scanners.registry import ScannerRegistry, default_registry, register_scanner
from asset_monitor.scanners.ripple import RippleNativeScanner

__all__ = [
    "BaseAssetScanner",
    "CardanoNativeScanner",
    "CosmosNativeScanner",
    "EndpointBinding",
    "EvmNativeScanner",
    "RippleNativeScanner",
    "ScanQueryError",
    "ScannerContext",
    "ScannerInitError",
    "ScannerRegistry",
    "default_registry",
    "limiter_key_for",
    "register_scanner",
]
