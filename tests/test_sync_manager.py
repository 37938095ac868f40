"""
Test sync passes against scripted chains: progress, resumability and locking.
"""

import asyncio

import pytest

from bridge_indexer.core.exceptions import SyncError
from bridge_indexer.indexer import IndexerContext, IndexerService, abi
from bridge_indexer.indexer.parser import cross_domain_message_hash
from bridge_indexer.indexer.types import ChainSyncState, QueryFilter
from bridge_indexer.models import ChainType, TransactionStatus, TransactionType

from tests.factories import (
    L1_BRIDGE,
    L2_BRIDGE,
    FakeChainClient,
    block_timestamp,
    erc20_args,
    erc721_deposit_finalized_logs,
    erc721_deposit_initiated_logs,
    erc721_withdrawal_initiated_logs,
    make_log,
    tx_hash,
    withdrawal_initiated_logs,
    withdrawal_proven_log,
)


WITHDRAWAL_HASH = tx_hash(0xABC)


def _script_chains(l1_client, l2_client) -> None:
    l1_client.head = 300
    l2_client.head = 300
    l2_client.add_logs(withdrawal_initiated_logs(150, tx_hash(1), WITHDRAWAL_HASH))
    l2_client.add_logs(withdrawal_initiated_logs(260, tx_hash(2), tx_hash(0xDEF)))
    l1_client.add_logs([withdrawal_proven_log(250, tx_hash(3), WITHDRAWAL_HASH)])


async def _store_contents(indexer: IndexerService):
    events = await indexer.storage.query_events(QueryFilter(limit=1000))
    transactions = await indexer.storage.query_transactions(QueryFilter(limit=1000))
    watermarks = [
        (await indexer.storage.get_watermark(chain)).last_synced_block for chain in ChainType
    ]
    return (
        sorted(e.to_dict()["id"] for e in events.items),
        sorted((t.id, t.status, t.initiated_block, t.proven_block) for t in transactions.items),
        watermarks,
    )


@pytest.mark.asyncio
async def test_sync_now_indexes_both_chains(indexer, l1_client, l2_client):
    _script_chains(l1_client, l2_client)

    counts = await indexer.sync_now()

    assert counts == {ChainType.L1: 1, ChainType.L2: 2}
    tx = await indexer.storage.get_transaction(WITHDRAWAL_HASH)
    assert tx.status == TransactionStatus.PROVEN
    assert tx.initiated_block == 150
    assert tx.initiated_at == block_timestamp(150)
    assert tx.proven_block == 250
    # One request per chunk: (1-100), (101-200), (201-300)
    assert l2_client.get_logs_calls == [(1, 100), (101, 200), (201, 300)]

    # Nothing new: the next pass fetches no logs
    assert await indexer.sync_now() == {ChainType.L1: 0, ChainType.L2: 0}
    assert len(l2_client.get_logs_calls) == 3


@pytest.mark.asyncio
async def test_failed_chunk_keeps_last_committed_watermark(indexer, l1_client, l2_client, settings, tmp_path):
    """A failure mid-pass resumes from the last good chunk and ends equal to a clean run."""
    _script_chains(l1_client, l2_client)
    l2_client.fail_from_block = 250
    errors = []
    indexer.subscription.on_error(errors.append)

    with pytest.raises(SyncError) as exc_info:
        await indexer.sync_now()

    assert exc_info.value.details["chain"] == "l2"
    assert exc_info.value.details["from_block"] == 201
    assert exc_info.value.details["to_block"] == 300
    assert (await indexer.storage.get_watermark(ChainType.L2)).last_synced_block == 200
    # L1 is unaffected
    assert (await indexer.storage.get_watermark(ChainType.L1)).last_synced_block == 300
    assert indexer.sync_manager.get_state(ChainType.L2) == ChainSyncState.BACKOFF
    assert indexer.sync_manager.consecutive_failures(ChainType.L2) == 1
    assert len(errors) == 1
    assert not (await indexer.storage.get_watermark(ChainType.L2)).is_indexing

    l2_client.fail_from_block = None
    l2_client.get_logs_calls.clear()
    await indexer.sync_now()

    assert l2_client.get_logs_calls == [(201, 300)]
    assert indexer.sync_manager.get_state(ChainType.L2) == ChainSyncState.IDLE
    resumed = await _store_contents(indexer)

    clean_settings = settings.model_copy(
        update={"database_url": f"sqlite+aiosqlite:///{tmp_path / 'clean.db'}"}
    )
    clean_l1, clean_l2 = FakeChainClient(ChainType.L1), FakeChainClient(ChainType.L2)
    _script_chains(clean_l1, clean_l2)
    context = await IndexerContext.create(
        clean_settings, clients={ChainType.L1: clean_l1, ChainType.L2: clean_l2}
    )
    async with IndexerService(context) as clean:
        await clean.sync_now()
        assert await _store_contents(clean) == resumed


@pytest.mark.asyncio
async def test_pass_skipped_while_chain_is_locked(indexer, l1_client):
    l1_client.head = 100
    assert await indexer.storage.try_acquire_indexing(ChainType.L1)

    assert await indexer.sync_manager.sync_chain(ChainType.L1) == 0
    assert l1_client.get_logs_calls == []

    await indexer.storage.release_indexing(ChainType.L1)
    await indexer.sync_manager.sync_chain(ChainType.L1)
    assert (await indexer.storage.get_watermark(ChainType.L1)).last_synced_block == 100


@pytest.mark.asyncio
async def test_synced_notification_per_chunk(indexer, l1_client):
    l1_client.head = 250
    synced = []
    indexer.subscription.on_synced(lambda chain, block: synced.append((chain, block)))

    await indexer.sync_manager.sync_chain(ChainType.L1)

    assert synced == [(ChainType.L1, 100), (ChainType.L1, 200), (ChainType.L1, 250)]


@pytest.mark.asyncio
async def test_backfill_never_rewinds_watermark(indexer, l1_client, l2_client):
    _script_chains(l1_client, l2_client)
    await indexer.sync_now()

    inserted = await indexer.backfill(ChainType.L2, 100, 200)

    assert inserted == 0
    assert (await indexer.storage.get_watermark(ChainType.L2)).last_synced_block == 300


@pytest.mark.asyncio
async def test_reset_chain_rescans_without_duplicates(indexer, l1_client, l2_client):
    _script_chains(l1_client, l2_client)
    await indexer.sync_now()

    await indexer.reset_chain(ChainType.L2, 0)
    counts = await indexer.sync_now()

    assert counts[ChainType.L2] == 0
    assert (await indexer.storage.get_watermark(ChainType.L2)).last_synced_block == 300
    assert await indexer.storage.count_events(ChainType.L2) == 2


@pytest.mark.asyncio
async def test_sync_stats(indexer, l1_client, l2_client):
    _script_chains(l1_client, l2_client)
    await indexer.sync_now()
    l2_client.head = 310

    stats = await indexer.sync_manager.get_all_sync_stats()

    assert stats[ChainType.L1].is_synced
    assert stats[ChainType.L1].blocks_behind == 0
    assert stats[ChainType.L2].blocks_behind == 10
    assert not stats[ChainType.L2].is_synced
    assert stats[ChainType.L2].event_count == 2

    summary = await indexer.get_stats()
    assert summary["chains"]["l1"]["last_synced_block"] == 300
    assert summary["events"]["total_events"] == 3
    assert summary["withdrawals"]["proven"] == 1
    assert summary["withdrawals"]["initiated"] == 1


@pytest.mark.asyncio
async def test_background_loop_follows_head(indexer, l1_client, l2_client):
    _script_chains(l1_client, l2_client)

    await indexer.start()
    try:
        for _ in range(100):
            if (await indexer.storage.get_watermark(ChainType.L2)).last_synced_block == 300:
                break
            await asyncio.sleep(0.02)
        assert indexer.is_running
    finally:
        await indexer.stop()

    assert not indexer.is_running
    assert (await indexer.storage.get_watermark(ChainType.L2)).last_synced_block == 300


@pytest.mark.asyncio
async def test_undecodable_log_is_dropped_and_sync_continues(indexer, l1_client, l2_client):
    """A log under a known topic with bad data or topics is skipped, not fatal."""
    l1_client.head = 50
    l2_client.head = 50
    bad_data = make_log(abi.ERC20_DEPOSIT_INITIATED, erc20_args(), 10, tx_hash(1), 0)
    bad_data["data"] = "0x1234"
    missing_topic = make_log(abi.ERC20_DEPOSIT_INITIATED, erc20_args(), 11, tx_hash(2), 0)
    missing_topic["topics"] = missing_topic["topics"][:2]
    l1_client.add_logs([bad_data, missing_topic])

    counts = await indexer.sync_now()

    assert counts == {ChainType.L1: 0, ChainType.L2: 0}
    assert (await indexer.storage.get_watermark(ChainType.L1)).last_synced_block == 50
    assert await indexer.storage.count_events(ChainType.L1) == 0


@pytest.mark.asyncio
async def test_erc721_withdrawal_folds_into_one_row(indexer, l1_client, l2_client):
    withdrawal_hash = tx_hash(0x721)
    l1_client.head = 300
    l2_client.head = 300
    l2_client.add_logs(erc721_withdrawal_initiated_logs(40, tx_hash(1), withdrawal_hash, token_id=3))
    l1_client.add_logs([withdrawal_proven_log(120, tx_hash(2), withdrawal_hash)])

    await indexer.sync_now()

    transactions = await indexer.storage.query_transactions(QueryFilter(limit=100))
    assert [t.id for t in transactions.items] == [withdrawal_hash]
    tx = transactions.items[0]
    assert tx.type == TransactionType.WITHDRAWAL
    assert tx.status == TransactionStatus.PROVEN
    assert tx.token_id == 3
    assert tx.initiated_tx_hash == tx_hash(1)
    assert tx.proven_tx_hash == tx_hash(2)


@pytest.mark.asyncio
async def test_erc721_deposit_folds_into_one_row(indexer, l1_client, l2_client):
    nonce = (1 << 240) | 11
    message_hash = cross_domain_message_hash(
        nonce=nonce,
        sender=L1_BRIDGE,
        target=L2_BRIDGE,
        value=0,
        gas_limit=200_000,
        message="0x07",
    )
    l1_client.head = 300
    l2_client.head = 300
    l1_client.add_logs(erc721_deposit_initiated_logs(30, tx_hash(1), nonce, token_id=4))
    l2_client.add_logs(erc721_deposit_finalized_logs(90, tx_hash(2), message_hash, token_id=4))

    await indexer.sync_now()

    transactions = await indexer.storage.query_transactions(QueryFilter(limit=100))
    assert [t.id for t in transactions.items] == [message_hash]
    tx = transactions.items[0]
    assert tx.type == TransactionType.DEPOSIT
    assert tx.status == TransactionStatus.FINALIZED
    assert tx.token_id == 4
    assert tx.initiated_block == 30
    assert tx.finalized_block == 90
