"""
Test batch processing: idempotent writes, transaction folding and promotion.
"""

import pytest

from bridge_indexer.indexer.parser import EventParser
from bridge_indexer.indexer.processor import EventProcessor, transaction_update_for
from bridge_indexer.indexer.subscription import EventSubscription
from bridge_indexer.indexer.types import QueryFilter, WatermarkUpdate
from bridge_indexer.models import ChainType, TransactionStatus, TransactionType

from tests.factories import (
    ALICE,
    L1_TOKEN,
    tx_hash,
    withdrawal_finalized_log,
    withdrawal_initiated_logs,
    withdrawal_proven_log,
)


WITHDRAWAL_HASH = tx_hash(0xABC)


def _withdrawal_events(parser: EventParser):
    initiated = parser.parse_batch(
        withdrawal_initiated_logs(100, tx_hash(1), WITHDRAWAL_HASH), ChainType.L2, {100: 1_000}
    )
    proven = parser.parse_batch(
        [withdrawal_proven_log(200, tx_hash(2), WITHDRAWAL_HASH)], ChainType.L1, {200: 2_000}
    )
    return initiated, proven


async def _snapshot(storage):
    events = await storage.query_events(QueryFilter(limit=1000))
    transactions = await storage.query_transactions(QueryFilter(limit=1000))
    return (
        sorted(e.id for e in events.items),
        [t.to_dict() for t in transactions.items],
        await storage.get_watermark(ChainType.L1),
    )


def test_transaction_update_for_proven_ignores_messenger_addresses():
    parser = EventParser()
    _, proven = _withdrawal_events(parser)

    update = transaction_update_for(proven[0])

    assert update.id == WITHDRAWAL_HASH
    assert update.type == TransactionType.WITHDRAWAL
    assert update.status == TransactionStatus.PROVEN
    assert update.user_address is None
    assert (update.proven_tx_hash, update.proven_at, update.proven_block) == (tx_hash(2), 2_000, 200)


@pytest.mark.asyncio
async def test_withdrawal_initiated_and_proven_fold_into_one_row(storage):
    parser = EventParser()
    processor = EventProcessor(storage)
    initiated, proven = _withdrawal_events(parser)

    await processor.process(initiated)
    await processor.process(proven)

    tx = await storage.get_transaction(WITHDRAWAL_HASH)
    assert tx.status == TransactionStatus.PROVEN
    assert tx.initiated_block == 100
    assert tx.proven_block == 200
    assert tx.user_address == ALICE
    assert tx.token_address == L1_TOKEN
    assert tx.amount == 10 ** 18


@pytest.mark.asyncio
async def test_reprocessing_is_idempotent(storage):
    """Processing the same batch twice leaves the store unchanged and counts duplicates."""
    parser = EventParser()
    processor = EventProcessor(storage)
    initiated, proven = _withdrawal_events(parser)
    watermark = WatermarkUpdate(ChainType.L1, 200, 2_000)

    first = await processor.process(initiated + proven, watermark)
    before = await _snapshot(storage)

    second = await processor.process(initiated + proven, watermark)
    after = await _snapshot(storage)

    assert len(first.inserted) == 2
    assert first.duplicates == 0
    assert second.inserted == []
    assert second.duplicates == 2
    assert second.transactions_updated == 0
    assert before == after


@pytest.mark.asyncio
async def test_out_of_order_phases_do_not_regress(storage):
    """Finalized arriving before initiated still ends FINALIZED with all phases set."""
    parser = EventParser()
    processor = EventProcessor(storage)
    initiated, proven = _withdrawal_events(parser)
    finalized = parser.parse_batch(
        [withdrawal_finalized_log(300, tx_hash(3), WITHDRAWAL_HASH)], ChainType.L1, {300: 3_000}
    )

    await processor.process(finalized)
    await processor.process(proven)
    await processor.process(initiated)

    tx = await storage.get_transaction(WITHDRAWAL_HASH)
    assert tx.status == TransactionStatus.FINALIZED
    assert tx.initiated_block == 100
    assert tx.proven_block == 200
    assert tx.finalized_block == 300
    assert tx.user_address == ALICE


@pytest.mark.asyncio
async def test_l1_watermark_promotes_after_challenge_period(storage):
    parser = EventParser()
    processor = EventProcessor(storage, challenge_period=600)
    initiated, proven = _withdrawal_events(parser)
    await processor.process(initiated)
    await processor.process(proven)

    early = await processor.process([], WatermarkUpdate(ChainType.L1, 249, 2_599))
    assert early.promoted == 0
    assert (await storage.get_transaction(WITHDRAWAL_HASH)).status == TransactionStatus.PROVEN

    # L2 time never promotes
    l2 = await processor.process([], WatermarkUpdate(ChainType.L2, 500, 9_999))
    assert l2.promoted == 0

    ready = await processor.process([], WatermarkUpdate(ChainType.L1, 250, 2_600))
    assert ready.promoted == 1
    tx = await storage.get_transaction(WITHDRAWAL_HASH)
    assert tx.status == TransactionStatus.READY_FOR_FINALIZATION

    # Finalization still moves it forward
    finalized = parser.parse_batch(
        [withdrawal_finalized_log(300, tx_hash(3), WITHDRAWAL_HASH)], ChainType.L1, {300: 3_000}
    )
    await processor.process(finalized)
    assert (await storage.get_transaction(WITHDRAWAL_HASH)).status == TransactionStatus.FINALIZED


@pytest.mark.asyncio
async def test_subscribers_see_only_new_events(storage):
    parser = EventParser()
    subscription = EventSubscription()
    processor = EventProcessor(storage, subscription)
    initiated, proven = _withdrawal_events(parser)
    seen = []
    subscription.on_event(lambda event: seen.append(event.id))

    await processor.process(initiated)
    await processor.process(initiated + proven)

    assert seen == [initiated[0].id, proven[0].id]

