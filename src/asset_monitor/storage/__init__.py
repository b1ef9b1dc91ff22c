"""Storage layer - Database schemas and repositories."""

from asset_monitor.storage.database import DatabaseManager, normalize_database_url
from asset_monitor.storage.models import (
    AssetFlowModel,
    AssetGroupModel,
    AssetInfoModel,
    AssetQueryModel,
    AssetScannerConfigModel,
    AssetScannerEndpointModel,
    AssetSnapshotBatchModel,
    AssetSnapshotModel,
    Base,
)
from asset_monitor.storage.repos import (
    AssetFlowDTO,
    AssetFlowRepository,
    AssetGroupDTO,
    AssetGroupRepository,
    AssetInfoRepository,
    AssetQueryRepository,
    AssetScannerConfigRepository,
    AssetSnapshotBatchDTO,
    AssetSnapshotBatchRepository,
    AssetSnapshotRepository,
    BatchAggregate,
)

__all__ = [
    "AssetFlowDTO",
    "AssetFlowModel",
    "AssetFlowRepository",
    "AssetGroupDTO",
    "AssetGroupModel",
    "AssetGroupRepository",
    "AssetInfoModel",
    "AssetInfoRepository",
    "AssetQueryModel",
    "AssetQueryRepository",
    "AssetScannerConfigModel",
    "AssetScannerConfigRepository",
    "AssetScannerEndpointModel",
    "AssetSnapshotBatchDTO",
    "AssetSnapshotBatchModel",
    "AssetSnapshotBatchRepository",
    "AssetSnapshotModel",
    "AssetSnapshotRepository",
    "Base",
    "BatchAggregate",
    "DatabaseManager",
    "normalize_database_url",
]
