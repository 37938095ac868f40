"""
Bridge transaction model - one row per cross-chain transfer, derived from events.
"""

from typing import Optional
from enum import Enum

from sqlalchemy import String, BigInteger, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column


class TransactionType(str, Enum):
    """Direction of a bridge transfer."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, Enum):
    """Lifecycle status. Deposits go straight from INITIATED to FINALIZED."""
    INITIATED = "initiated"
    PROVEN = "proven"
    READY_FOR_FINALIZATION = "ready_for_finalization"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]


STATUS_RANK = {
    TransactionStatus.INITIATED: 0,
    TransactionStatus.PROVEN: 1,
    TransactionStatus.READY_FOR_FINALIZATION: 2,
    TransactionStatus.FINALIZED: 3,
}


class BridgeTransactionRecord(BaseModel, TimestampMixin):
    """Stored bridge transaction, keyed by correlation key."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(66), primary_key=True, comment="Correlation key")

    type: Mapped[TransactionType] = mapped_column(
        enum_column(TransactionType),
        comment="Deposit or withdrawal"
    )

    status: Mapped[TransactionStatus] = mapped_column(
        enum_column(TransactionStatus),
        default=TransactionStatus.INITIATED,
        comment="Lifecycle status, only moves forward"
    )

    # Parties and asset
    user_address: Mapped[Optional[str]] = mapped_column(String(42), comment="Initiating user")
    recipient_address: Mapped[Optional[str]] = mapped_column(String(42), comment="Recipient")
    token_address: Mapped[Optional[str]] = mapped_column(String(42), comment="L1 token address")
    token_id: Mapped[Optional[str]] = mapped_column(String(78), comment="ERC721 token id")
    amount: Mapped[Optional[str]] = mapped_column(String(78), comment="ERC20 amount")

    # Initiated phase
    initiated_tx_hash: Mapped[Optional[str]] = mapped_column(String(66))
    initiated_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    initiated_block: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Proven phase (withdrawals only)
    proven_tx_hash: Mapped[Optional[str]] = mapped_column(String(66))
    proven_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    proven_block: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Finalized phase
    finalized_tx_hash: Mapped[Optional[str]] = mapped_column(String(66))
    finalized_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    finalized_block: Mapped[Optional[int]] = mapped_column(BigInteger)

    __table_args__ = (
        Index("idx_tx_type", "type"),
        Index("idx_tx_user", "user_address"),
        Index("idx_tx_token", "token_address"),
        Index("idx_tx_status", "status"),
        Index("idx_tx_initiated_at", "initiated_at"),
        Index("idx_tx_initiated_hash", "initiated_tx_hash"),
        Index("idx_tx_type_status", "type", "status"),
    )

    def __repr__(self) -> str:
        return f"<BridgeTransactionRecord(id={self.id}, type={self.type.value}, status={self.status.value})>"
