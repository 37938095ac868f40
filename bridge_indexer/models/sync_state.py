"""
Sync state model - per-chain watermark and indexing flag.
"""

from sqlalchemy import BigInteger, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column
from .event import ChainType


class SyncStateRecord(BaseModel, TimestampMixin):
    """Highest fully committed block per chain."""

    __tablename__ = "sync_state"

    chain: Mapped[ChainType] = mapped_column(enum_column(ChainType), primary_key=True)

    last_synced_block: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Every block up to and including this one is committed"
    )

    last_synced_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Timestamp of last_synced_block"
    )

    is_indexing: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Set while a sync pass for this chain is in flight"
    )

    def __repr__(self) -> str:
        return f"<SyncStateRecord(chain={self.chain.value}, block={self.last_synced_block})>"
