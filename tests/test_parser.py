"""
Test log decoding and correlation key assignment.
"""

from bridge_indexer.indexer import abi
from bridge_indexer.indexer.parser import EventParser, cross_domain_message_hash
from bridge_indexer.models import ChainType, EventType

from tests.factories import (
    ALICE,
    L1_BRIDGE,
    L1_TOKEN,
    L2_BRIDGE,
    L2_TOKEN,
    deposit_finalized_logs,
    deposit_initiated_logs,
    erc721_deposit_finalized_logs,
    erc721_deposit_initiated_logs,
    erc721_withdrawal_initiated_logs,
    erc20_args,
    make_log,
    tx_hash,
    withdrawal_finalized_log,
    withdrawal_initiated_logs,
    withdrawal_proven_log,
)


def test_parse_erc20_deposit_initiated():
    parser = EventParser()
    amount = 2 ** 255 + 7
    log = make_log(abi.ERC20_DEPOSIT_INITIATED, erc20_args(amount=amount), 100, tx_hash(1), 3)

    event = parser.parse(log, ChainType.L1, timestamp=1_700_000_000)

    assert event.event_type == EventType.ERC20_DEPOSIT_INITIATED
    assert event.chain == ChainType.L1
    assert event.block_number == 100
    assert event.log_index == 3
    assert event.timestamp == 1_700_000_000
    assert event.from_address == ALICE
    assert event.to_address == ALICE
    assert event.token_address == L1_TOKEN
    assert event.data["l2_token"] == L2_TOKEN
    assert event.amount == amount
    assert event.id == f"{tx_hash(1)}-3"


def test_parse_checksummed_addresses_are_lowercased():
    parser = EventParser()
    checksummed = "0x52908400098527886E0F7030069857D2E4169EE7"
    log = make_log(
        abi.ERC20_DEPOSIT_INITIATED,
        erc20_args(sender=checksummed, recipient=checksummed, amount=1),
        1, tx_hash(1), 0,
    )

    event = parser.parse(log, ChainType.L1, timestamp=0)

    assert event.from_address == checksummed.lower()
    assert event.to_address == checksummed.lower()


def test_parse_unknown_topic_returns_none():
    parser = EventParser()
    log = make_log(abi.ERC20_DEPOSIT_INITIATED, erc20_args(), 1, tx_hash(1), 0)
    log["topics"][0] = "0x" + "00" * 32

    assert parser.parse(log, ChainType.L1) is None


def test_parse_event_from_other_chain_returns_none():
    """WithdrawalProven is only indexed on L1."""
    parser = EventParser()
    log = withdrawal_proven_log(1, tx_hash(1), tx_hash(0xABC))

    assert parser.parse(log, ChainType.L2) is None
    assert parser.parse(log, ChainType.L1).event_type == EventType.WITHDRAWAL_PROVEN


def test_parse_messaging_log_returns_none():
    parser = EventParser()
    logs = deposit_initiated_logs(1, tx_hash(1), nonce=5)

    assert parser.parse(logs[1], ChainType.L1) is None


def test_parse_truncated_data_returns_none():
    parser = EventParser()
    log = make_log(abi.ERC20_DEPOSIT_INITIATED, erc20_args(), 1, tx_hash(1), 0)
    log["data"] = log["data"][:20]

    assert parser.parse(log, ChainType.L1) is None


def test_deposit_legs_share_message_hash():
    """SentMessage on L1 and RelayedMessage on L2 give both legs the same key."""
    parser = EventParser()
    nonce = (1 << 240) | 42
    expected = cross_domain_message_hash(
        nonce=nonce,
        sender=L1_BRIDGE,
        target=L2_BRIDGE,
        value=0,
        gas_limit=200_000,
        message="0x0102",
    )

    l1_events = parser.parse_batch(deposit_initiated_logs(10, tx_hash(1), nonce), ChainType.L1)
    l2_events = parser.parse_batch(deposit_finalized_logs(20, tx_hash(2), expected), ChainType.L2)

    assert [e.event_type for e in l1_events] == [EventType.ERC20_DEPOSIT_INITIATED]
    assert [e.event_type for e in l2_events] == [EventType.DEPOSIT_FINALIZED]
    assert l1_events[0].correlation_key == expected
    assert l2_events[0].correlation_key == expected


def test_message_hash_depends_on_nonce_version():
    common = dict(sender=L1_BRIDGE, target=L2_BRIDGE, value=0, gas_limit=200_000, message="0x0102")

    legacy = cross_domain_message_hash(nonce=42, **common)
    versioned = cross_domain_message_hash(nonce=(1 << 240) | 42, **common)

    assert legacy != versioned
    assert legacy.startswith("0x") and len(legacy) == 66


def test_withdrawal_legs_share_withdrawal_hash():
    parser = EventParser()
    withdrawal_hash = tx_hash(0xABC)

    initiated = parser.parse_batch(
        withdrawal_initiated_logs(5, tx_hash(1), withdrawal_hash), ChainType.L2
    )
    proven = parser.parse_batch([withdrawal_proven_log(50, tx_hash(2), withdrawal_hash)], ChainType.L1)
    finalized = parser.parse_batch([withdrawal_finalized_log(90, tx_hash(3), withdrawal_hash)], ChainType.L1)

    assert len(initiated) == 1
    assert initiated[0].correlation_key == withdrawal_hash
    assert initiated[0].data["withdrawal_hash"] == withdrawal_hash
    assert initiated[0].data["message_nonce"] == "7"
    assert proven[0].correlation_key == withdrawal_hash
    assert finalized[0].correlation_key == withdrawal_hash
    assert finalized[0].data["success"] is True


def test_initiating_event_without_messaging_log_falls_back_to_tx_hash():
    parser = EventParser()
    logs = withdrawal_initiated_logs(5, tx_hash(1), tx_hash(0xABC))[:1]

    events = parser.parse_batch(logs, ChainType.L2)

    assert events[0].correlation_key == tx_hash(1)


def test_parse_batch_pairs_each_event_with_its_own_message():
    """Two deposits in one transaction each take the SentMessage that follows them."""
    parser = EventParser()
    first = deposit_initiated_logs(10, tx_hash(1), nonce=1, first_log_index=0)
    second = deposit_initiated_logs(10, tx_hash(1), nonce=2, first_log_index=3)

    events = parser.parse_batch(list(reversed(first + second)), ChainType.L1)

    assert [e.log_index for e in events] == [0, 3]
    assert events[0].correlation_key != events[1].correlation_key


def test_parse_batch_uses_block_timestamps():
    parser = EventParser()
    logs = withdrawal_initiated_logs(5, tx_hash(1), tx_hash(0xABC))

    events = parser.parse_batch(logs, ChainType.L2, timestamps={5: 1_234})

    assert events[0].timestamp == 1_234


def test_erc721_deposit_takes_preceding_sent_message():
    """The L1 ERC721 bridge emits its event after SentMessage; both legs still match."""
    parser = EventParser()
    nonce = (1 << 240) | 9
    expected = cross_domain_message_hash(
        nonce=nonce,
        sender=L1_BRIDGE,
        target=L2_BRIDGE,
        value=0,
        gas_limit=200_000,
        message="0x07",
    )

    l1_events = parser.parse_batch(erc721_deposit_initiated_logs(10, tx_hash(1), nonce, token_id=5), ChainType.L1)
    l2_events = parser.parse_batch(erc721_deposit_finalized_logs(20, tx_hash(2), expected, token_id=5), ChainType.L2)

    assert [e.event_type for e in l1_events] == [EventType.ERC721_DEPOSIT_INITIATED]
    assert l1_events[0].correlation_key == expected
    assert l1_events[0].token_id == 5
    assert l1_events[0].token_address == L1_TOKEN
    assert l2_events[0].correlation_key == expected
    assert l2_events[0].token_address == L1_TOKEN


def test_erc721_withdrawal_takes_preceding_message_passed():
    parser = EventParser()
    withdrawal_hash = tx_hash(0x721)

    events = parser.parse_batch(erc721_withdrawal_initiated_logs(5, tx_hash(1), withdrawal_hash), ChainType.L2)

    assert len(events) == 1
    assert events[0].correlation_key == withdrawal_hash
    assert events[0].data["message_nonce"] == "8"
    assert events[0].token_id == 1


def test_mixed_erc721_and_erc20_deposits_in_one_transaction():
    """An ERC721 deposit then an ERC20 deposit: each pairs with its own SentMessage."""
    parser = EventParser()
    logs = (
        erc721_deposit_initiated_logs(10, tx_hash(1), nonce=1, first_log_index=0)
        + deposit_initiated_logs(10, tx_hash(1), nonce=2, first_log_index=3)
    )
    expected = [
        cross_domain_message_hash(
            nonce=nonce, sender=L1_BRIDGE, target=L2_BRIDGE, value=0, gas_limit=200_000, message=message
        )
        for nonce, message in ((1, "0x07"), (2, "0x0102"))
    ]

    events = parser.parse_batch(logs, ChainType.L1)

    assert [e.event_type for e in events] == [
        EventType.ERC721_DEPOSIT_INITIATED,
        EventType.ERC20_DEPOSIT_INITIATED,
    ]
    assert [e.correlation_key for e in events] == expected
