"""
Core types for bridge event indexing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from bridge_indexer.models import (
    ChainType,
    EventType,
    TransactionType,
    TransactionStatus,
    DEPOSIT_EVENT_TYPES,
    WITHDRAWAL_EVENT_TYPES,
)

T = TypeVar("T")


class ChainSyncState(Enum):
    """Per-chain sync state machine."""
    IDLE = "idle"
    SYNCING = "syncing"
    BACKOFF = "backoff"


@dataclass
class BridgeEvent:
    """A decoded bridge log, identified by (transaction_hash, log_index)."""
    chain: ChainType
    event_type: EventType
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int
    timestamp: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    token_address: Optional[str] = None
    token_id: Optional[int] = None
    amount: Optional[int] = None
    correlation_key: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"

    @property
    def is_deposit(self) -> bool:
        return self.event_type in DEPOSIT_EVENT_TYPES

    @property
    def is_withdrawal(self) -> bool:
        return self.event_type in WITHDRAWAL_EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chain": self.chain.value,
            "event_type": self.event_type.value,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "timestamp": self.timestamp,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "token_address": self.token_address,
            "token_id": str(self.token_id) if self.token_id is not None else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "correlation_key": self.correlation_key,
            "data": self.data,
        }


@dataclass
class BridgeTransaction:
    """
    One cross-chain transfer assembled from its events.

    Also used as the partial update folded into storage by the processor:
    fields left as None mean "unknown from this event".
    """
    id: str
    type: TransactionType
    status: TransactionStatus = TransactionStatus.INITIATED
    user_address: Optional[str] = None
    recipient_address: Optional[str] = None
    token_address: Optional[str] = None
    token_id: Optional[int] = None
    amount: Optional[int] = None
    initiated_tx_hash: Optional[str] = None
    initiated_at: Optional[int] = None
    initiated_block: Optional[int] = None
    proven_tx_hash: Optional[str] = None
    proven_at: Optional[int] = None
    proven_block: Optional[int] = None
    finalized_tx_hash: Optional[str] = None
    finalized_at: Optional[int] = None
    finalized_block: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "user_address": self.user_address,
            "recipient_address": self.recipient_address,
            "token_address": self.token_address,
            "token_id": str(self.token_id) if self.token_id is not None else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "initiated_tx_hash": self.initiated_tx_hash,
            "initiated_at": self.initiated_at,
            "initiated_block": self.initiated_block,
            "proven_tx_hash": self.proven_tx_hash,
            "proven_at": self.proven_at,
            "proven_block": self.proven_block,
            "finalized_tx_hash": self.finalized_tx_hash,
            "finalized_at": self.finalized_at,
            "finalized_block": self.finalized_block,
        }


@dataclass
class SyncWatermark:
    """Highest fully committed block for a chain."""
    chain: ChainType
    last_synced_block: int = 0
    last_synced_timestamp: int = 0
    is_indexing: bool = False


@dataclass
class WatermarkUpdate:
    """Watermark to commit together with a chunk of events."""
    chain: ChainType
    block_number: int
    timestamp: int


@dataclass
class ProcessResult:
    """Outcome of processing one batch of events."""
    inserted: List[BridgeEvent] = field(default_factory=list)
    duplicates: int = 0
    transactions_updated: int = 0
    promoted: int = 0


@dataclass
class SyncStats:
    """Sync progress for one chain."""
    chain: ChainType
    last_synced_block: int
    latest_block: Optional[int]
    event_count: int
    is_indexing: bool
    state: ChainSyncState

    # Within this many blocks of head counts as synced
    SYNCED_THRESHOLD = 5

    @property
    def blocks_behind(self) -> Optional[int]:
        if self.latest_block is None:
            return None
        return max(0, self.latest_block - self.last_synced_block)

    @property
    def is_synced(self) -> bool:
        behind = self.blocks_behind
        return behind is not None and behind <= self.SYNCED_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "last_synced_block": self.last_synced_block,
            "latest_block": self.latest_block,
            "blocks_behind": self.blocks_behind,
            "event_count": self.event_count,
            "is_indexing": self.is_indexing,
            "is_synced": self.is_synced,
            "state": self.state.value,
        }


@dataclass
class QueryFilter:
    """Filters shared by the event and transaction queries."""
    user: Optional[str] = None
    token: Optional[str] = None
    chain: Optional[ChainType] = None
    event_type: Optional[EventType] = None
    transaction_type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    from_timestamp: Optional[int] = None
    to_timestamp: Optional[int] = None
    limit: int = 50
    offset: int = 0


@dataclass
class PaginatedResult(Generic[T]):
    """One page of results plus paging metadata."""
    items: List[T]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "has_more": self.has_more,
            "offset": self.offset,
            "limit": self.limit,
        }
