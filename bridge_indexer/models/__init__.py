"""
Database models for the bridge indexer.
"""

from .base import Base, BaseModel, TimestampMixin
from .event import (
    ChainType, EventType, BridgeEventRecord,
    DEPOSIT_EVENT_TYPES, WITHDRAWAL_EVENT_TYPES,
)
from .transaction import (
    TransactionType, TransactionStatus, BridgeTransactionRecord, STATUS_RANK,
)
from .sync_state import SyncStateRecord

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "ChainType",
    "EventType",
    "BridgeEventRecord",
    "DEPOSIT_EVENT_TYPES",
    "WITHDRAWAL_EVENT_TYPES",
    "TransactionType",
    "TransactionStatus",
    "BridgeTransactionRecord",
    "STATUS_RANK",
    "SyncStateRecord",
]
