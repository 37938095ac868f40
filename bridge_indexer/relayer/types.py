"""
Core types for the withdrawal relayer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from bridge_indexer.indexer.queries import WithdrawalStatus


class RelayerEventType(Enum):
    """Events published by the relayer service."""
    STARTED = "started"
    STOPPED = "stopped"
    POLL = "poll"
    WITHDRAWAL_DETECTED = "withdrawal:detected"
    WITHDRAWAL_PROVING = "withdrawal:proving"
    WITHDRAWAL_PROVED = "withdrawal:proved"
    WITHDRAWAL_FINALIZING = "withdrawal:finalizing"
    WITHDRAWAL_FINALIZED = "withdrawal:finalized"
    WITHDRAWAL_FAILED = "withdrawal:failed"
    ERROR = "error"


@dataclass
class RelayerEvent:
    type: RelayerEventType
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackedWithdrawal:
    """A pending withdrawal as seen by the relayer."""
    withdrawal_hash: str
    initiated_tx_hash: Optional[str]
    phase: str
    can_prove: bool
    can_finalize: bool
    user_address: Optional[str] = None
    initiated_at: Optional[int] = None
    proven_at: Optional[int] = None
    proven_tx_hash: Optional[str] = None
    finalized_at: Optional[int] = None
    finalized_tx_hash: Optional[str] = None
    estimated_ready_to_prove: Optional[int] = None
    estimated_ready_to_finalize: Optional[int] = None

    @property
    def key(self) -> str:
        """Identity used for retry and relayer state bookkeeping."""
        return self.initiated_tx_hash or self.withdrawal_hash

    @classmethod
    def from_status(cls, status: WithdrawalStatus) -> "TrackedWithdrawal":
        return cls(
            withdrawal_hash=status.transaction_id,
            initiated_tx_hash=status.initiated_tx_hash,
            phase=status.phase,
            can_prove=status.can_prove,
            can_finalize=status.can_finalize,
            user_address=status.user_address,
            initiated_at=status.initiated_at,
            proven_at=status.proven_at,
            proven_tx_hash=status.proven_tx_hash,
            finalized_at=status.finalized_at,
            finalized_tx_hash=status.finalized_tx_hash,
            estimated_ready_to_prove=status.estimated_ready_to_prove,
            estimated_ready_to_finalize=status.estimated_ready_to_finalize,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "withdrawal_hash": self.withdrawal_hash,
            "initiated_tx_hash": self.initiated_tx_hash,
            "phase": self.phase,
            "can_prove": self.can_prove,
            "can_finalize": self.can_finalize,
            "user_address": self.user_address,
            "initiated_at": self.initiated_at,
            "proven_at": self.proven_at,
            "proven_tx_hash": self.proven_tx_hash,
            "finalized_at": self.finalized_at,
            "finalized_tx_hash": self.finalized_tx_hash,
            "estimated_ready_to_prove": self.estimated_ready_to_prove,
            "estimated_ready_to_finalize": self.estimated_ready_to_finalize,
        }


@dataclass
class ProcessingResult:
    """Outcome of one prove or finalize submission."""
    success: bool
    withdrawal: TrackedWithdrawal
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RelayerStats:
    total_processed: int = 0
    total_proven: int = 0
    total_finalized: int = 0
    total_failed: int = 0
    current_pending: int = 0
    uptime_seconds: float = 0.0
    start_time: Optional[datetime] = None
    last_poll_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_proven": self.total_proven,
            "total_finalized": self.total_finalized,
            "total_failed": self.total_failed,
            "current_pending": self.current_pending,
            "uptime_seconds": self.uptime_seconds,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "last_poll_time": self.last_poll_time.isoformat() if self.last_poll_time else None,
        }
