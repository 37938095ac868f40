"""
Test the relayer poll cycle end to end against scripted chains.
"""

import asyncio
import json

import pytest

from bridge_indexer.relayer import RelayerEventType, RelayerService
from bridge_indexer.relayer.health_monitor import HealthStatus
from bridge_indexer.relayer.withdrawal_processor import WALLET_NOT_CONFIGURED

from tests.factories import FakeSubmitter, tx_hash, withdrawal_initiated_logs, withdrawal_proven_log


WITHDRAWAL_HASH = tx_hash(0xABC)
INITIATED_TX = tx_hash(1)


class Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def chains(l1_client, l2_client):
    l1_client.head = 100
    l2_client.head = 100
    l2_client.add_logs(withdrawal_initiated_logs(50, INITIATED_TX, WITHDRAWAL_HASH))
    return l1_client, l2_client


def _relayer(settings, indexer, submitter, clock):
    relayer = RelayerService(settings, indexer, submitter, clock=clock)
    events = []
    relayer.on(events.append)
    return relayer, events


def _types(events):
    return [e.type for e in events]


@pytest.mark.asyncio
async def test_poll_proves_then_finalizes(settings, indexer, chains, clock):
    l1_client, _ = chains
    submitter = FakeSubmitter()
    relayer, events = _relayer(settings, indexer, submitter, clock)

    assert await relayer.poll()

    assert submitter.proved == [INITIATED_TX]
    assert _types(events) == [
        RelayerEventType.POLL,
        RelayerEventType.WITHDRAWAL_DETECTED,
        RelayerEventType.WITHDRAWAL_PROVING,
        RelayerEventType.WITHDRAWAL_PROVED,
    ]
    assert events[-1].data == {"initiated_tx_hash": INITIATED_TX, "prove_tx_hash": tx_hash(0xF001)}
    assert relayer.state.has_been_proven(INITIATED_TX)

    # Until the proof is indexed the withdrawal is not proposed again
    events.clear()
    assert await relayer.poll()
    assert submitter.proved == [INITIATED_TX]
    assert _types(events) == [RelayerEventType.POLL]

    l1_client.head = 150
    l1_client.add_logs([withdrawal_proven_log(120, tx_hash(2), WITHDRAWAL_HASH)])
    assert await relayer.poll()

    assert submitter.finalized == [INITIATED_TX]
    assert events[-1].type == RelayerEventType.WITHDRAWAL_FINALIZED
    assert events[-1].data["finalize_tx_hash"] == tx_hash(0xF101)

    stats = relayer.get_stats()
    assert stats.total_proven == 1
    assert stats.total_finalized == 1
    assert stats.total_processed == 2
    assert stats.total_failed == 0


@pytest.mark.asyncio
async def test_failed_proof_backs_off_until_exhausted(settings, indexer, chains, clock):
    """Three failures exhaust the withdrawal; later polls no longer submit it."""
    calls = []

    class FailingSubmitter(FakeSubmitter):
        async def prove_withdrawal(self, initiated_tx_hash):
            calls.append(initiated_tx_hash)
            raise RuntimeError("execution reverted")

    relayer, events = _relayer(settings, indexer, FailingSubmitter(), clock)

    await relayer.poll()
    assert len(calls) == 1
    failed = [e for e in events if e.type == RelayerEventType.WITHDRAWAL_FAILED]
    assert failed[0].data == {"tx_hash": INITIATED_TX, "phase": "prove", "error": "execution reverted"}

    # Still inside the backoff window
    await relayer.poll()
    assert len(calls) == 1

    for _ in range(4):
        clock.now += 120
        await relayer.poll()

    assert len(calls) == 3
    assert relayer.retry_handler.is_prove_exhausted(INITIATED_TX)
    assert relayer.get_retry_stats()["exhausted_proves"] == 1
    assert relayer.get_stats().total_failed == 3
    assert relayer.get_health().stats["total_failed"] == 3


@pytest.mark.asyncio
async def test_no_submitter_records_wallet_failure(settings, indexer, chains, clock):
    relayer, events = _relayer(settings, indexer, None, clock)

    await relayer.poll()

    failed = [e for e in events if e.type == RelayerEventType.WITHDRAWAL_FAILED]
    assert failed[0].data["error"] == WALLET_NOT_CONFIGURED
    health = relayer.get_health()
    assert health.checks["wallet"].status == HealthStatus.UNHEALTHY


@pytest.mark.asyncio
async def test_failed_poll_emits_error(settings, indexer, chains, clock):
    _, l2_client = chains
    l2_client.fail_from_block = 0
    relayer, events = _relayer(settings, indexer, FakeSubmitter(), clock)

    assert not await relayer.force_poll()

    assert _types(events) == [RelayerEventType.POLL, RelayerEventType.ERROR]
    assert "l2" in events[-1].data["error"]
    assert relayer.get_health().stats["consecutive_failures"] == 1


@pytest.mark.asyncio
async def test_manual_prove_bypasses_retry_gate(settings, indexer, chains, clock):
    submitter = FakeSubmitter()
    relayer, _ = _relayer(settings, indexer, submitter, clock)
    await indexer.sync_now()
    for _ in range(3):
        relayer.retry_handler.record_prove_failure(INITIATED_TX, "reverted")

    result = await relayer.prove_withdrawal(WITHDRAWAL_HASH)

    assert result.success
    assert submitter.proved == [INITIATED_TX]
    assert relayer.state.has_been_proven(INITIATED_TX)

    missing = await relayer.finalize_withdrawal(tx_hash(0xFFFF))
    assert not missing.success
    assert missing.error == "Withdrawal not found"


@pytest.mark.asyncio
async def test_listener_errors_and_unsubscribe(settings, indexer, chains, clock):
    relayer, events = _relayer(settings, indexer, FakeSubmitter(), clock)

    def broken(event):
        raise RuntimeError("listener bug")

    relayer.on(broken)
    seen = []
    unsubscribe = relayer.on(seen.append)

    await relayer.poll()
    unsubscribe()
    await relayer.poll()

    assert RelayerEventType.WITHDRAWAL_PROVED in _types(seen)
    assert _types(events).count(RelayerEventType.POLL) == 2
    assert _types(seen).count(RelayerEventType.POLL) == 1


@pytest.mark.asyncio
async def test_start_and_stop(settings, indexer, chains):
    submitter = FakeSubmitter()
    relayer = RelayerService(settings, indexer, submitter)
    events = []
    relayer.on(events.append)

    await relayer.start()
    try:
        for _ in range(100):
            if submitter.proved:
                break
            await asyncio.sleep(0.02)
        assert relayer.is_running
        assert relayer.get_health().status == HealthStatus.HEALTHY
    finally:
        await relayer.stop()

    assert not relayer.is_running
    assert submitter.closed
    assert _types(events)[0] == RelayerEventType.STARTED
    assert _types(events)[-1] == RelayerEventType.STOPPED
    assert relayer.get_health().status == HealthStatus.UNHEALTHY

    with open(settings.relayer_state_file) as f:
        state = json.load(f)
    assert state["proven_withdrawals"] == [INITIATED_TX]

    # A restarted relayer remembers the proof
    restarted = RelayerService(settings, indexer, FakeSubmitter())
    restarted.state.load()
    assert restarted.state.has_been_proven(INITIATED_TX)
    assert "Status: UNHEALTHY" in restarted.get_health_status()
