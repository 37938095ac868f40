"""
Persists parsed events and folds them into bridge transactions.
"""

from typing import List, Optional

import structlog

from bridge_indexer.core.exceptions import DuplicateEventError
from bridge_indexer.models import ChainType, EventType, TransactionType, TransactionStatus

from .queries import CHALLENGE_PERIOD_SECONDS
from .storage import IndexerStorage
from .subscription import EventSubscription
from .types import BridgeEvent, BridgeTransaction, ProcessResult, WatermarkUpdate


logger = structlog.get_logger(__name__)


def transaction_update_for(event: BridgeEvent) -> BridgeTransaction:
    """The partial transaction state an event contributes."""
    key = event.correlation_key or event.transaction_hash
    phase = (event.transaction_hash, event.timestamp, event.block_number)

    if event.event_type in (EventType.ERC20_DEPOSIT_INITIATED, EventType.ERC721_DEPOSIT_INITIATED):
        return _initiated(key, TransactionType.DEPOSIT, event, phase)
    if event.event_type == EventType.WITHDRAWAL_INITIATED:
        return _initiated(key, TransactionType.WITHDRAWAL, event, phase)

    if event.event_type == EventType.DEPOSIT_FINALIZED:
        tx = BridgeTransaction(id=key, type=TransactionType.DEPOSIT, status=TransactionStatus.FINALIZED)
        tx.finalized_tx_hash, tx.finalized_at, tx.finalized_block = phase
        _fill_parties(tx, event)
        return tx

    if event.event_type == EventType.WITHDRAWAL_PROVEN:
        tx = BridgeTransaction(id=key, type=TransactionType.WITHDRAWAL, status=TransactionStatus.PROVEN)
        # from/to here are the messengers, not the user
        tx.proven_tx_hash, tx.proven_at, tx.proven_block = phase
        return tx

    # WithdrawalFinalized carries only the hash
    tx = BridgeTransaction(id=key, type=TransactionType.WITHDRAWAL, status=TransactionStatus.FINALIZED)
    tx.finalized_tx_hash, tx.finalized_at, tx.finalized_block = phase
    return tx


def _initiated(key: str, tx_type: TransactionType, event: BridgeEvent, phase) -> BridgeTransaction:
    tx = BridgeTransaction(id=key, type=tx_type, status=TransactionStatus.INITIATED)
    tx.initiated_tx_hash, tx.initiated_at, tx.initiated_block = phase
    _fill_parties(tx, event)
    return tx


def _fill_parties(tx: BridgeTransaction, event: BridgeEvent) -> None:
    tx.user_address = event.from_address
    tx.recipient_address = event.to_address
    tx.token_address = event.token_address
    tx.token_id = event.token_id
    tx.amount = event.amount


class EventProcessor:
    """
    Writes a batch of events in one storage transaction.

    Inside the transaction: insert each event (duplicates are skipped), fold it
    into its bridge transaction, write the watermark if one is given and, on
    L1, promote proven withdrawals whose challenge period has elapsed. Newly
    inserted events are published only after the commit.
    """

    def __init__(
        self,
        storage: IndexerStorage,
        subscription: Optional[EventSubscription] = None,
        challenge_period: int = CHALLENGE_PERIOD_SECONDS
    ):
        self.storage = storage
        self.subscription = subscription
        self.challenge_period = challenge_period
        self.logger = logger.bind(service="event_processor")

    async def process(
        self,
        events: List[BridgeEvent],
        watermark: Optional[WatermarkUpdate] = None
    ) -> ProcessResult:
        result = ProcessResult()
        ordered = sorted(events, key=lambda e: (e.block_number, e.log_index))

        async with self.storage.transaction() as session:
            for event in ordered:
                try:
                    await self.storage.insert_event(session, event)
                    result.inserted.append(event)
                except DuplicateEventError:
                    result.duplicates += 1
                    self.logger.debug("Skipping duplicate event", event_id=event.id)

                # Folding is idempotent so duplicates are folded too
                if await self.storage.upsert_transaction(session, transaction_update_for(event)):
                    result.transactions_updated += 1

            if watermark is not None:
                await self.storage.set_watermark(
                    session, watermark.chain, watermark.block_number, watermark.timestamp
                )
                if watermark.chain == ChainType.L1 and watermark.timestamp:
                    result.promoted = await self.storage.promote_ready_withdrawals(
                        session, watermark.timestamp - self.challenge_period
                    )

        if result.inserted or result.duplicates:
            self.logger.info(
                "Processed events",
                inserted=len(result.inserted),
                duplicates=result.duplicates,
                transactions_updated=result.transactions_updated,
                promoted=result.promoted
            )

        if self.subscription is not None:
            self.subscription.emit_events(result.inserted)

        return result
