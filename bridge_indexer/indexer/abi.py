"""
Bridge contract event definitions and their log topics.

Bridge events become stored BridgeEvents. Messaging events (SentMessage,
RelayedMessage, MessagePassed, ...) are only read to correlate the two legs
of a transfer and are never stored.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from web3 import Web3

from bridge_indexer.models import ChainType, EventType


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventDefinition:
    """A contract event and the bridge event type it maps to on a chain."""
    name: str
    inputs: Tuple[EventInput, ...]
    event_type: Optional[EventType] = None

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return to_hex(Web3.keccak(text=self.signature))

    @property
    def indexed_inputs(self) -> List[EventInput]:
        return [i for i in self.inputs if i.indexed]

    @property
    def data_inputs(self) -> List[EventInput]:
        return [i for i in self.inputs if not i.indexed]

    @property
    def is_bridge_event(self) -> bool:
        return self.event_type is not None


def to_hex(value) -> str:
    """0x-prefixed lowercase hex for bytes-like values and hex strings."""
    if isinstance(value, str):
        value = value.lower()
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


def _inputs(*inputs: Tuple[str, str, bool]) -> Tuple[EventInput, ...]:
    return tuple(EventInput(name, type_, indexed) for name, type_, indexed in inputs)


_ERC20_BRIDGE_INPUTS = _inputs(
    ("l1Token", "address", True),
    ("l2Token", "address", True),
    ("from", "address", True),
    ("to", "address", False),
    ("amount", "uint256", False),
    ("extraData", "bytes", False),
)

_ERC721_BRIDGE_INPUTS = _inputs(
    ("localToken", "address", True),
    ("remoteToken", "address", True),
    ("from", "address", True),
    ("to", "address", False),
    ("tokenId", "uint256", False),
    ("extraData", "bytes", False),
)


# L1: L1StandardBridge, L1ERC721Bridge, OptimismPortal
ERC20_DEPOSIT_INITIATED = EventDefinition(
    "ERC20DepositInitiated", _ERC20_BRIDGE_INPUTS, EventType.ERC20_DEPOSIT_INITIATED
)
L1_ERC721_BRIDGE_INITIATED = EventDefinition(
    "ERC721BridgeInitiated", _ERC721_BRIDGE_INPUTS, EventType.ERC721_DEPOSIT_INITIATED
)
WITHDRAWAL_PROVEN = EventDefinition(
    "WithdrawalProven",
    _inputs(
        ("withdrawalHash", "bytes32", True),
        ("from", "address", True),
        ("to", "address", True),
    ),
    EventType.WITHDRAWAL_PROVEN,
)
WITHDRAWAL_FINALIZED = EventDefinition(
    "WithdrawalFinalized",
    _inputs(
        ("withdrawalHash", "bytes32", True),
        ("success", "bool", False),
    ),
    EventType.WITHDRAWAL_FINALIZED,
)

# L2: L2StandardBridge, L2ERC721Bridge
DEPOSIT_FINALIZED = EventDefinition(
    "DepositFinalized", _ERC20_BRIDGE_INPUTS, EventType.DEPOSIT_FINALIZED
)
WITHDRAWAL_INITIATED = EventDefinition(
    "WithdrawalInitiated", _ERC20_BRIDGE_INPUTS, EventType.WITHDRAWAL_INITIATED
)
L2_ERC721_BRIDGE_FINALIZED = EventDefinition(
    "ERC721BridgeFinalized", _ERC721_BRIDGE_INPUTS, EventType.DEPOSIT_FINALIZED
)
L2_ERC721_BRIDGE_INITIATED = EventDefinition(
    "ERC721BridgeInitiated", _ERC721_BRIDGE_INPUTS, EventType.WITHDRAWAL_INITIATED
)

# Messaging, correlation only
SENT_MESSAGE = EventDefinition(
    "SentMessage",
    _inputs(
        ("target", "address", True),
        ("sender", "address", False),
        ("message", "bytes", False),
        ("messageNonce", "uint256", False),
        ("gasLimit", "uint256", False),
    ),
)
SENT_MESSAGE_EXTENSION = EventDefinition(
    "SentMessageExtension1",
    _inputs(
        ("sender", "address", True),
        ("value", "uint256", False),
    ),
)
RELAYED_MESSAGE = EventDefinition(
    "RelayedMessage",
    _inputs(("msgHash", "bytes32", True)),
)
MESSAGE_PASSED = EventDefinition(
    "MessagePassed",
    _inputs(
        ("nonce", "uint256", True),
        ("sender", "address", True),
        ("target", "address", True),
        ("value", "uint256", False),
        ("gasLimit", "uint256", False),
        ("data", "bytes", False),
        ("withdrawalHash", "bytes32", False),
    ),
)


CHAIN_EVENTS: Dict[ChainType, Tuple[EventDefinition, ...]] = {
    ChainType.L1: (
        ERC20_DEPOSIT_INITIATED,
        L1_ERC721_BRIDGE_INITIATED,
        WITHDRAWAL_PROVEN,
        WITHDRAWAL_FINALIZED,
        SENT_MESSAGE,
        SENT_MESSAGE_EXTENSION,
    ),
    ChainType.L2: (
        DEPOSIT_FINALIZED,
        WITHDRAWAL_INITIATED,
        L2_ERC721_BRIDGE_FINALIZED,
        L2_ERC721_BRIDGE_INITIATED,
        RELAYED_MESSAGE,
        MESSAGE_PASSED,
    ),
}


def events_by_topic(chain: ChainType) -> Dict[str, EventDefinition]:
    """topic0 -> definition for every event indexed on a chain."""
    return {definition.topic: definition for definition in CHAIN_EVENTS[chain]}


def topics_for(chain: ChainType) -> List[str]:
    return [definition.topic for definition in CHAIN_EVENTS[chain]]


# Selectors used to rebuild the cross-domain message hash
RELAY_MESSAGE_V0_SIGNATURE = "relayMessage(address,address,bytes,uint256)"
RELAY_MESSAGE_V1_SIGNATURE = "relayMessage(uint256,address,address,uint256,uint256,bytes)"
