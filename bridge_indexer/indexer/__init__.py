"""
Bridge event indexing: fetch, parse, store, sync and query.
"""

from .context import IndexerContext
from .service import IndexerService
from .types import (
    BridgeEvent,
    BridgeTransaction,
    ChainSyncState,
    PaginatedResult,
    QueryFilter,
    SyncStats,
    SyncWatermark,
)

__all__ = [
    "IndexerContext",
    "IndexerService",
    "BridgeEvent",
    "BridgeTransaction",
    "ChainSyncState",
    "PaginatedResult",
    "QueryFilter",
    "SyncStats",
    "SyncWatermark",
]
