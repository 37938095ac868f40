"""
Test listener ordering, filtering and failure isolation.
"""

from bridge_indexer.indexer.subscription import EventSubscription
from bridge_indexer.indexer.types import BridgeEvent
from bridge_indexer.models import ChainType, EventType

from tests.factories import tx_hash


def _event(event_type: EventType, chain: ChainType = ChainType.L1, n: int = 1) -> BridgeEvent:
    return BridgeEvent(
        chain=chain,
        event_type=event_type,
        block_number=n,
        block_hash=tx_hash(100 + n),
        transaction_hash=tx_hash(n),
        log_index=0,
        timestamp=n,
    )


def test_listeners_called_in_registration_order():
    subscription = EventSubscription()
    calls = []
    subscription.on_event(lambda event: calls.append("first"))
    subscription.on_event(lambda event: calls.append("second"))
    subscription.on_event(lambda event: calls.append("third"))

    subscription.emit_event(_event(EventType.WITHDRAWAL_PROVEN))

    assert calls == ["first", "second", "third"]


def test_failing_listener_does_not_stop_others():
    subscription = EventSubscription()
    calls = []

    def broken(event):
        raise RuntimeError("listener bug")

    subscription.on_event(broken)
    subscription.on_event(lambda event: calls.append(event.event_type))

    subscription.emit_event(_event(EventType.WITHDRAWAL_PROVEN))

    assert calls == [EventType.WITHDRAWAL_PROVEN]


def test_unsubscribe_removes_only_that_listener():
    subscription = EventSubscription()
    calls = []
    handle = subscription.on_event(lambda event: calls.append("removed"))
    subscription.on_event(lambda event: calls.append("kept"))

    subscription.unsubscribe(handle)
    # Second removal is a no-op
    handle()
    subscription.emit_event(_event(EventType.WITHDRAWAL_PROVEN))

    assert calls == ["kept"]
    assert subscription.listener_count == 1


def test_filtered_listeners():
    subscription = EventSubscription()
    deposits, withdrawals, proven, l2 = [], [], [], []
    subscription.on_deposit(deposits.append)
    subscription.on_withdrawal(withdrawals.append)
    subscription.on_event_type(EventType.WITHDRAWAL_PROVEN, proven.append)
    subscription.on_chain(ChainType.L2, l2.append)

    subscription.emit_events([
        _event(EventType.ERC20_DEPOSIT_INITIATED, n=1),
        _event(EventType.DEPOSIT_FINALIZED, ChainType.L2, n=2),
        _event(EventType.WITHDRAWAL_INITIATED, ChainType.L2, n=3),
        _event(EventType.WITHDRAWAL_PROVEN, n=4),
    ])

    assert [e.block_number for e in deposits] == [1, 2]
    assert [e.block_number for e in withdrawals] == [3, 4]
    assert [e.block_number for e in proven] == [4]
    assert [e.block_number for e in l2] == [2, 3]


def test_synced_and_error_listeners():
    subscription = EventSubscription()
    synced, errors, events = [], [], []
    subscription.on_synced(lambda chain, block: synced.append((chain, block)))
    subscription.on_error(errors.append)
    subscription.on_event(events.append)

    subscription.emit_synced(ChainType.L1, 42)
    error = RuntimeError("boom")
    subscription.emit_error(error)

    assert synced == [(ChainType.L1, 42)]
    assert errors == [error]
    assert events == []

    subscription.remove_all()
    assert subscription.listener_count == 0
