"""
Bridge event model - append-only log of decoded bridge events.
"""

from typing import Optional, Dict, Any
from enum import Enum

from sqlalchemy import String, Integer, BigInteger, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column


class ChainType(str, Enum):
    """Chain an event was observed on."""
    L1 = "l1"
    L2 = "l2"


class EventType(str, Enum):
    """Bridge event kinds, named after the contract events they come from."""

    # Deposits
    ERC20_DEPOSIT_INITIATED = "ERC20DepositInitiated"
    ERC721_DEPOSIT_INITIATED = "ERC721DepositInitiated"
    DEPOSIT_FINALIZED = "DepositFinalized"

    # Withdrawals
    WITHDRAWAL_INITIATED = "WithdrawalInitiated"
    WITHDRAWAL_PROVEN = "WithdrawalProven"
    WITHDRAWAL_FINALIZED = "WithdrawalFinalized"


DEPOSIT_EVENT_TYPES = frozenset({
    EventType.ERC20_DEPOSIT_INITIATED,
    EventType.ERC721_DEPOSIT_INITIATED,
    EventType.DEPOSIT_FINALIZED,
})

WITHDRAWAL_EVENT_TYPES = frozenset({
    EventType.WITHDRAWAL_INITIATED,
    EventType.WITHDRAWAL_PROVEN,
    EventType.WITHDRAWAL_FINALIZED,
})


class BridgeEventRecord(BaseModel, TimestampMixin):
    """Stored bridge event. Never updated once written."""

    __tablename__ = "events"

    # "{transaction_hash}-{log_index}"
    id: Mapped[str] = mapped_column(String(80), primary_key=True)

    chain: Mapped[ChainType] = mapped_column(
        enum_column(ChainType),
        comment="Chain the log was emitted on"
    )

    event_type: Mapped[EventType] = mapped_column(
        enum_column(EventType),
        comment="Type of bridge event"
    )

    # Blockchain data
    block_number: Mapped[int] = mapped_column(BigInteger, comment="Block number")
    block_hash: Mapped[str] = mapped_column(String(66), comment="Block hash")
    transaction_hash: Mapped[str] = mapped_column(String(66), comment="Transaction hash")
    log_index: Mapped[int] = mapped_column(Integer, comment="Log index within the block")
    timestamp: Mapped[int] = mapped_column(BigInteger, comment="Block timestamp, unix seconds")

    # Parties and asset
    from_address: Mapped[Optional[str]] = mapped_column(String(42), comment="Sender")
    to_address: Mapped[Optional[str]] = mapped_column(String(42), comment="Recipient")
    token_address: Mapped[Optional[str]] = mapped_column(String(42), comment="L1 token address")

    # uint256 values kept as decimal strings
    token_id: Mapped[Optional[str]] = mapped_column(String(78), comment="ERC721 token id")
    amount: Mapped[Optional[str]] = mapped_column(String(78), comment="ERC20 amount")

    correlation_key: Mapped[Optional[str]] = mapped_column(
        String(66),
        comment="Key of the cross-chain transaction this event belongs to"
    )

    data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        comment="Decoded fields not modeled as columns"
    )

    __table_args__ = (
        Index("idx_event_tx_log_unique", "transaction_hash", "log_index", unique=True),
        Index("idx_event_chain", "chain"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_chain_block", "chain", "block_number"),
        Index("idx_event_timestamp", "timestamp"),
        Index("idx_event_from", "from_address"),
        Index("idx_event_to", "to_address"),
        Index("idx_event_token", "token_address"),
        Index("idx_event_tx_hash", "transaction_hash"),
        Index("idx_event_correlation", "correlation_key"),
    )

    def __repr__(self) -> str:
        return f"<BridgeEventRecord(id={self.id}, type={self.event_type.value}, block={self.block_number})>"
