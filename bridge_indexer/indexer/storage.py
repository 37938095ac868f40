"""
Storage engine for events, derived transactions and sync watermarks.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional

import structlog
from sqlalchemy import select, update, func, or_, and_, distinct, union
from sqlalchemy.ext.asyncio import AsyncSession

from bridge_indexer.core.database import Database
from bridge_indexer.core.exceptions import DuplicateEventError
from bridge_indexer.models import (
    BridgeEventRecord,
    BridgeTransactionRecord,
    SyncStateRecord,
    ChainType,
    TransactionType,
    TransactionStatus,
    STATUS_RANK,
)

from .types import (
    BridgeEvent,
    BridgeTransaction,
    SyncWatermark,
    QueryFilter,
    PaginatedResult,
)


logger = structlog.get_logger(__name__)

# Fields each lifecycle phase owns; set once, never overwritten
_PHASE_FIELDS = {
    "initiated": ("initiated_tx_hash", "initiated_at", "initiated_block"),
    "proven": ("proven_tx_hash", "proven_at", "proven_block"),
    "finalized": ("finalized_tx_hash", "finalized_at", "finalized_block"),
}
_DETAIL_FIELDS = ("user_address", "recipient_address", "token_address", "token_id", "amount")


def merge_transaction(record: BridgeTransactionRecord, incoming: BridgeTransaction) -> bool:
    """
    Fold a partial transaction into a stored row.

    Unset fields are filled, set fields are never overwritten and status only
    moves forward. Returns True if anything changed.
    """
    changed = False

    for field_name in _DETAIL_FIELDS:
        value = getattr(incoming, field_name)
        if value is not None and getattr(record, field_name) is None:
            setattr(record, field_name, _column_value(value))
            changed = True

    for fields in _PHASE_FIELDS.values():
        # A phase is taken as a unit so hash, time and block always agree
        if getattr(record, fields[0]) is None and getattr(incoming, fields[0]) is not None:
            for field_name in fields:
                setattr(record, field_name, getattr(incoming, field_name))
            changed = True

    if STATUS_RANK[incoming.status] > STATUS_RANK[record.status]:
        record.status = incoming.status
        changed = True

    return changed


def _column_value(value):
    # uint256 values do not fit integer columns
    return str(value) if isinstance(value, int) else value


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def event_from_record(record: BridgeEventRecord) -> BridgeEvent:
    return BridgeEvent(
        chain=record.chain,
        event_type=record.event_type,
        block_number=record.block_number,
        block_hash=record.block_hash,
        transaction_hash=record.transaction_hash,
        log_index=record.log_index,
        timestamp=record.timestamp,
        from_address=record.from_address,
        to_address=record.to_address,
        token_address=record.token_address,
        token_id=_optional_int(record.token_id),
        amount=_optional_int(record.amount),
        correlation_key=record.correlation_key,
        data=dict(record.data or {}),
    )


def transaction_from_record(record: BridgeTransactionRecord) -> BridgeTransaction:
    return BridgeTransaction(
        id=record.id,
        type=record.type,
        status=record.status,
        user_address=record.user_address,
        recipient_address=record.recipient_address,
        token_address=record.token_address,
        token_id=_optional_int(record.token_id),
        amount=_optional_int(record.amount),
        initiated_tx_hash=record.initiated_tx_hash,
        initiated_at=record.initiated_at,
        initiated_block=record.initiated_block,
        proven_tx_hash=record.proven_tx_hash,
        proven_at=record.proven_at,
        proven_block=record.proven_block,
        finalized_tx_hash=record.finalized_tx_hash,
        finalized_at=record.finalized_at,
        finalized_block=record.finalized_block,
    )


class IndexerStorage:
    """
    Persistence for the indexer.

    Write methods take the session of an open transaction so that a chunk's
    events, transaction updates and watermark commit or roll back together.
    """

    def __init__(self, database: Database):
        self.database = database
        self.logger = logger.bind(service="indexer_storage")

    async def init_schema(self) -> None:
        """Create tables and seed one zero watermark per chain. Idempotent."""
        await self.database.create_tables()
        async with self.database.session() as session:
            for chain in ChainType:
                existing = await session.get(SyncStateRecord, chain)
                if existing is None:
                    session.add(SyncStateRecord(
                        chain=chain,
                        last_synced_block=0,
                        last_synced_timestamp=0,
                        is_indexing=False
                    ))
        self.logger.info("Schema initialized")

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """One atomic unit of work."""
        async with self.database.session() as session:
            yield session

    # Events

    async def insert_event(self, session: AsyncSession, event: BridgeEvent) -> None:
        """
        Insert an event.

        Raises:
            DuplicateEventError: (transaction_hash, log_index) already stored
        """
        stmt = self._insert(BridgeEventRecord).values(
            id=event.id,
            chain=event.chain,
            event_type=event.event_type,
            block_number=event.block_number,
            block_hash=event.block_hash,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            timestamp=event.timestamp,
            from_address=event.from_address,
            to_address=event.to_address,
            token_address=event.token_address,
            token_id=_column_value(event.token_id),
            amount=_column_value(event.amount),
            correlation_key=event.correlation_key,
            data=event.data or None,
        ).on_conflict_do_nothing(index_elements=["transaction_hash", "log_index"])

        result = await session.execute(stmt)
        if result.rowcount == 0:
            raise DuplicateEventError(
                f"Event {event.id} already stored",
                details={"event_id": event.id}
            )

    def _insert(self, model):
        if self.database.dialect_name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(model)

    async def get_event(self, event_id: str) -> Optional[BridgeEvent]:
        async with self.database.session() as session:
            record = await session.get(BridgeEventRecord, event_id.lower())
            return event_from_record(record) if record else None

    async def get_events_by_tx_hash(self, tx_hash: str) -> List[BridgeEvent]:
        async with self.database.session() as session:
            result = await session.execute(
                select(BridgeEventRecord)
                .where(BridgeEventRecord.transaction_hash == tx_hash.lower())
                .order_by(BridgeEventRecord.log_index)
            )
            return [event_from_record(r) for r in result.scalars()]

    async def get_events_by_block_range(
        self,
        chain: ChainType,
        from_block: int,
        to_block: int
    ) -> List[BridgeEvent]:
        async with self.database.session() as session:
            result = await session.execute(
                select(BridgeEventRecord)
                .where(
                    BridgeEventRecord.chain == chain,
                    BridgeEventRecord.block_number >= from_block,
                    BridgeEventRecord.block_number <= to_block,
                )
                .order_by(BridgeEventRecord.block_number, BridgeEventRecord.log_index)
            )
            return [event_from_record(r) for r in result.scalars()]

    async def count_events(self, chain: Optional[ChainType] = None) -> int:
        stmt = select(func.count(BridgeEventRecord.id))
        if chain is not None:
            stmt = stmt.where(BridgeEventRecord.chain == chain)
        async with self.database.session() as session:
            return (await session.execute(stmt)).scalar() or 0

    async def count_events_by_type(self) -> Dict[str, int]:
        async with self.database.session() as session:
            result = await session.execute(
                select(BridgeEventRecord.event_type, func.count(BridgeEventRecord.id))
                .group_by(BridgeEventRecord.event_type)
            )
            return {event_type.value: count for event_type, count in result.all()}

    async def count_unique_users(self) -> int:
        senders = select(BridgeEventRecord.from_address.label("address")).where(
            BridgeEventRecord.from_address.is_not(None)
        )
        recipients = select(BridgeEventRecord.to_address.label("address")).where(
            BridgeEventRecord.to_address.is_not(None)
        )
        addresses = union(senders, recipients).subquery()
        async with self.database.session() as session:
            return (await session.execute(select(func.count(distinct(addresses.c.address))))).scalar() or 0

    async def query_events(self, query: QueryFilter) -> PaginatedResult[BridgeEvent]:
        conditions = []
        if query.user:
            user = query.user.lower()
            conditions.append(or_(
                BridgeEventRecord.from_address == user,
                BridgeEventRecord.to_address == user,
            ))
        if query.token:
            conditions.append(BridgeEventRecord.token_address == query.token.lower())
        if query.chain is not None:
            conditions.append(BridgeEventRecord.chain == query.chain)
        if query.event_type is not None:
            conditions.append(BridgeEventRecord.event_type == query.event_type)
        if query.from_block is not None:
            conditions.append(BridgeEventRecord.block_number >= query.from_block)
        if query.to_block is not None:
            conditions.append(BridgeEventRecord.block_number <= query.to_block)
        if query.from_timestamp is not None:
            conditions.append(BridgeEventRecord.timestamp >= query.from_timestamp)
        if query.to_timestamp is not None:
            conditions.append(BridgeEventRecord.timestamp <= query.to_timestamp)

        where = and_(*conditions) if conditions else None
        count_stmt = select(func.count(BridgeEventRecord.id))
        stmt = select(BridgeEventRecord).order_by(
            BridgeEventRecord.block_number.desc(),
            BridgeEventRecord.log_index.desc(),
        )
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)

        async with self.database.session() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            result = await session.execute(stmt.offset(query.offset).limit(query.limit))
            items = [event_from_record(r) for r in result.scalars()]

        return PaginatedResult(items=items, total=total, offset=query.offset, limit=query.limit)

    # Transactions

    async def upsert_transaction(self, session: AsyncSession, tx: BridgeTransaction) -> bool:
        """Create the transaction or merge into the existing row. Returns True if written."""
        record = await session.get(BridgeTransactionRecord, tx.id)
        if record is None:
            record = BridgeTransactionRecord(id=tx.id, type=tx.type, status=TransactionStatus.INITIATED)
            merge_transaction(record, tx)
            session.add(record)
            await session.flush()
            return True

        if record.type != tx.type:
            self.logger.warning(
                "Correlation key reused across transaction types, ignoring",
                transaction_id=tx.id,
                stored_type=record.type.value,
                incoming_type=tx.type.value
            )
            return False

        changed = merge_transaction(record, tx)
        if changed:
            await session.flush()
        return changed

    async def promote_ready_withdrawals(self, session: AsyncSession, proven_before: int) -> int:
        """Move PROVEN withdrawals proven at or before ``proven_before`` to READY_FOR_FINALIZATION."""
        result = await session.execute(
            update(BridgeTransactionRecord)
            .where(
                BridgeTransactionRecord.type == TransactionType.WITHDRAWAL,
                BridgeTransactionRecord.status == TransactionStatus.PROVEN,
                BridgeTransactionRecord.proven_at.is_not(None),
                BridgeTransactionRecord.proven_at <= proven_before,
            )
            .values(status=TransactionStatus.READY_FOR_FINALIZATION)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def get_transaction(self, transaction_id: str) -> Optional[BridgeTransaction]:
        async with self.database.session() as session:
            record = await session.get(BridgeTransactionRecord, transaction_id.lower())
            return transaction_from_record(record) if record else None

    async def get_transaction_by_tx_hash(
        self,
        tx_hash: str,
        tx_type: Optional[TransactionType] = None
    ) -> Optional[BridgeTransaction]:
        """Find a transaction by correlation key or by the hash of any of its chain transactions."""
        tx_hash = tx_hash.lower()
        stmt = select(BridgeTransactionRecord).where(or_(
            BridgeTransactionRecord.id == tx_hash,
            BridgeTransactionRecord.initiated_tx_hash == tx_hash,
            BridgeTransactionRecord.proven_tx_hash == tx_hash,
            BridgeTransactionRecord.finalized_tx_hash == tx_hash,
        ))
        if tx_type is not None:
            stmt = stmt.where(BridgeTransactionRecord.type == tx_type)

        async with self.database.session() as session:
            record = (await session.execute(stmt.limit(1))).scalars().first()
            return transaction_from_record(record) if record else None

    async def query_transactions(self, query: QueryFilter) -> PaginatedResult[BridgeTransaction]:
        conditions = []
        if query.user:
            conditions.append(BridgeTransactionRecord.user_address == query.user.lower())
        if query.token:
            conditions.append(BridgeTransactionRecord.token_address == query.token.lower())
        if query.transaction_type is not None:
            conditions.append(BridgeTransactionRecord.type == query.transaction_type)
        if query.status is not None:
            conditions.append(BridgeTransactionRecord.status == query.status)
        if query.from_block is not None:
            conditions.append(BridgeTransactionRecord.initiated_block >= query.from_block)
        if query.to_block is not None:
            conditions.append(BridgeTransactionRecord.initiated_block <= query.to_block)
        if query.from_timestamp is not None:
            conditions.append(BridgeTransactionRecord.initiated_at >= query.from_timestamp)
        if query.to_timestamp is not None:
            conditions.append(BridgeTransactionRecord.initiated_at <= query.to_timestamp)

        where = and_(*conditions) if conditions else None
        count_stmt = select(func.count(BridgeTransactionRecord.id))
        stmt = select(BridgeTransactionRecord).order_by(
            BridgeTransactionRecord.initiated_at.desc(),
            BridgeTransactionRecord.id,
        )
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)

        async with self.database.session() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            result = await session.execute(stmt.offset(query.offset).limit(query.limit))
            items = [transaction_from_record(r) for r in result.scalars()]

        return PaginatedResult(items=items, total=total, offset=query.offset, limit=query.limit)

    async def list_transactions(
        self,
        tx_type: TransactionType,
        statuses: List[TransactionStatus],
        user: Optional[str] = None
    ) -> List[BridgeTransaction]:
        """All transactions of a type in the given statuses, oldest first."""
        stmt = select(BridgeTransactionRecord).where(
            BridgeTransactionRecord.type == tx_type,
            BridgeTransactionRecord.status.in_(statuses),
        ).order_by(BridgeTransactionRecord.initiated_at, BridgeTransactionRecord.id)
        if user:
            stmt = stmt.where(BridgeTransactionRecord.user_address == user.lower())

        async with self.database.session() as session:
            result = await session.execute(stmt)
            return [transaction_from_record(r) for r in result.scalars()]

    async def count_transactions_by_status(
        self,
        tx_type: TransactionType,
        user: Optional[str] = None
    ) -> Dict[TransactionStatus, int]:
        stmt = (
            select(BridgeTransactionRecord.status, func.count(BridgeTransactionRecord.id))
            .where(BridgeTransactionRecord.type == tx_type)
            .group_by(BridgeTransactionRecord.status)
        )
        if user:
            stmt = stmt.where(BridgeTransactionRecord.user_address == user.lower())

        counts = {status: 0 for status in TransactionStatus}
        async with self.database.session() as session:
            for status, count in (await session.execute(stmt)).all():
                counts[status] = count
        return counts

    # Watermarks

    async def get_watermark(
        self,
        chain: ChainType,
        session: Optional[AsyncSession] = None
    ) -> SyncWatermark:
        if session is not None:
            return await self._read_watermark(session, chain)
        async with self.database.session() as own_session:
            return await self._read_watermark(own_session, chain)

    async def _read_watermark(self, session: AsyncSession, chain: ChainType) -> SyncWatermark:
        record = await session.get(SyncStateRecord, chain)
        if record is None:
            return SyncWatermark(chain=chain)
        return SyncWatermark(
            chain=chain,
            last_synced_block=record.last_synced_block,
            last_synced_timestamp=record.last_synced_timestamp,
            is_indexing=record.is_indexing,
        )

    async def set_watermark(
        self,
        session: AsyncSession,
        chain: ChainType,
        block_number: int,
        timestamp: int,
        allow_regress: bool = False
    ) -> bool:
        """
        Record ``block_number`` as fully committed.

        A lower block is ignored unless ``allow_regress`` is set. Returns True
        if the watermark moved.
        """
        record = await session.get(SyncStateRecord, chain)
        if record is None:
            session.add(SyncStateRecord(
                chain=chain,
                last_synced_block=block_number,
                last_synced_timestamp=timestamp,
                is_indexing=False
            ))
            return True

        if block_number < record.last_synced_block and not allow_regress:
            return False

        record.last_synced_block = block_number
        record.last_synced_timestamp = timestamp
        return True

    async def reset_watermark(self, chain: ChainType, block_number: int = 0) -> None:
        """Move the watermark back so the next pass re-scans from ``block_number + 1``."""
        async with self.database.session() as session:
            await self.set_watermark(session, chain, block_number, 0, allow_regress=True)
        self.logger.warning("Watermark reset", chain=chain.value, block=block_number)

    async def try_acquire_indexing(self, chain: ChainType) -> bool:
        """Set the chain's indexing flag if it is clear. Returns False if already set."""
        async with self.database.session() as session:
            result = await session.execute(
                update(SyncStateRecord)
                .where(
                    SyncStateRecord.chain == chain,
                    SyncStateRecord.is_indexing == False  # noqa: E712
                )
                .values(is_indexing=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def release_indexing(self, chain: ChainType) -> None:
        async with self.database.session() as session:
            await session.execute(
                update(SyncStateRecord)
                .where(SyncStateRecord.chain == chain)
                .values(is_indexing=False)
                .execution_options(synchronize_session=False)
            )

    async def reset_indexing_flags(self) -> int:
        """Clear flags left set by a crashed process."""
        async with self.database.session() as session:
            result = await session.execute(
                update(SyncStateRecord)
                .where(SyncStateRecord.is_indexing == True)  # noqa: E712
                .values(is_indexing=False)
                .execution_options(synchronize_session=False)
            )
            cleared = result.rowcount or 0
        if cleared:
            self.logger.warning("Cleared stale indexing flags", count=cleared)
        return cleared
