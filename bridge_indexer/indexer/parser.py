"""
Decodes raw bridge logs into BridgeEvents and assigns correlation keys.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional

import structlog
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from bridge_indexer.models import ChainType, EventType

from .abi import (
    EventDefinition,
    events_by_topic,
    topics_for,
    to_hex,
    SENT_MESSAGE,
    SENT_MESSAGE_EXTENSION,
    RELAYED_MESSAGE,
    MESSAGE_PASSED,
    RELAY_MESSAGE_V0_SIGNATURE,
    RELAY_MESSAGE_V1_SIGNATURE,
)
from .types import BridgeEvent


logger = structlog.get_logger(__name__)

_DEPOSIT_INITIATED_TYPES = {
    EventType.ERC20_DEPOSIT_INITIATED,
    EventType.ERC721_DEPOSIT_INITIATED,
}


class EventParser:
    """
    Turns raw logs into BridgeEvents.

    ``parse`` handles a single log and only knows what that log carries.
    ``parse_batch`` also reads the messaging logs emitted in the same
    transaction so that both legs of a transfer share a correlation key:

    - deposits: the cross-domain message hash, rebuilt from SentMessage on L1
      and read from RelayedMessage on L2
    - withdrawals: the withdrawal hash, read from MessagePassed on L2 and
      carried by WithdrawalProven/WithdrawalFinalized on L1

    A bridge event is paired with the closest unused messaging log of the
    same transaction. ERC20 events precede their message and ERC721
    initiations follow it, so each side is searched first in that direction
    and then in the other. Unpaired initiating events fall back to their own
    transaction hash.
    """

    def __init__(self):
        self.logger = logger.bind(service="event_parser")
        self._definitions = {chain: events_by_topic(chain) for chain in ChainType}

    def topics_for(self, chain: ChainType) -> List[str]:
        """Every topic0 the fetcher must request for a chain."""
        return topics_for(chain)

    def parse(
        self,
        raw_log: Dict[str, Any],
        chain: ChainType,
        timestamp: Optional[int] = None
    ) -> Optional[BridgeEvent]:
        """
        Decode one log.

        Returns None for unknown topics, messaging logs and logs that fail to
        decode.
        """
        definition = self._definition_for(raw_log, chain)
        if definition is None or not definition.is_bridge_event:
            return None

        args = self._decode(definition, raw_log)
        if args is None:
            return None

        if timestamp is None:
            timestamp = _to_int(raw_log.get("blockTimestamp", 0))

        return self._build_event(definition, args, raw_log, chain, timestamp)

    def parse_batch(
        self,
        logs: List[Dict[str, Any]],
        chain: ChainType,
        timestamps: Optional[Dict[int, int]] = None
    ) -> List[BridgeEvent]:
        """Decode a batch of logs, linking each bridge event to its messaging log."""
        timestamps = timestamps or {}
        ordered = sorted(logs, key=lambda log: (_to_int(log["blockNumber"]), _to_int(log["logIndex"])))

        by_tx: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for log in ordered:
            by_tx.setdefault(to_hex(log["transactionHash"]), []).append(log)

        events: List[BridgeEvent] = []
        for tx_logs in by_tx.values():
            events.extend(self._parse_transaction(tx_logs, chain, timestamps))

        self.logger.debug(
            "Parsed log batch",
            chain=chain.value,
            logs=len(logs),
            events=len(events)
        )
        return events

    def _parse_transaction(
        self,
        tx_logs: List[Dict[str, Any]],
        chain: ChainType,
        timestamps: Dict[int, int]
    ) -> List[BridgeEvent]:
        events: List[BridgeEvent] = []
        messages: Dict[str, List[Dict[str, Any]]] = {
            SENT_MESSAGE.name: [],
            SENT_MESSAGE_EXTENSION.name: [],
            RELAYED_MESSAGE.name: [],
            MESSAGE_PASSED.name: [],
        }

        for log in tx_logs:
            definition = self._definition_for(log, chain)
            if definition is None:
                continue
            if definition.is_bridge_event:
                block_number = _to_int(log["blockNumber"])
                timestamp = timestamps.get(block_number)
                event = self.parse(log, chain, timestamp)
                if event is not None:
                    events.append(event)
                continue
            args = self._decode(definition, log)
            if args is not None:
                args["_log_index"] = _to_int(log["logIndex"])
                messages[definition.name].append(args)

        used = set()
        for event in events:
            key = None
            # ERC721 bridges send the message before emitting their own event
            before = event.token_id is not None and event.event_type != EventType.DEPOSIT_FINALIZED
            if event.event_type in _DEPOSIT_INITIATED_TYPES:
                sent = _nearest(messages[SENT_MESSAGE.name], event.log_index, used, before)
                if sent is not None:
                    extension = _next_after(
                        messages[SENT_MESSAGE_EXTENSION.name], sent["_log_index"], used
                    )
                    value = extension["value"] if extension is not None else 0
                    key = cross_domain_message_hash(
                        nonce=sent["messageNonce"],
                        sender=sent["sender"],
                        target=sent["target"],
                        value=value,
                        gas_limit=sent["gasLimit"],
                        message=sent["message"],
                    )
            elif event.event_type == EventType.DEPOSIT_FINALIZED:
                relayed = _nearest(messages[RELAYED_MESSAGE.name], event.log_index, used, before)
                if relayed is not None:
                    key = relayed["msgHash"]
            elif event.event_type == EventType.WITHDRAWAL_INITIATED:
                passed = _nearest(messages[MESSAGE_PASSED.name], event.log_index, used, before)
                if passed is not None:
                    key = passed["withdrawalHash"]
                    event.data["withdrawal_hash"] = key
                    event.data["message_nonce"] = str(passed["nonce"])

            if key is not None:
                event.correlation_key = key
            elif event.event_type in _DEPOSIT_INITIATED_TYPES or event.event_type == EventType.WITHDRAWAL_INITIATED:
                self.logger.debug(
                    "No messaging log for initiating event, keyed by transaction hash",
                    event_id=event.id,
                    event_type=event.event_type.value
                )

        return events

    def _definition_for(self, raw_log: Dict[str, Any], chain: ChainType) -> Optional[EventDefinition]:
        topics = raw_log.get("topics") or []
        if not topics:
            return None
        return self._definitions[chain].get(to_hex(topics[0]))

    def _decode(self, definition: EventDefinition, raw_log: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        topics = raw_log["topics"][1:]
        indexed = definition.indexed_inputs
        if len(topics) != len(indexed):
            self.logger.warning(
                "Topic count mismatch, dropping log",
                event_name=definition.name,
                expected=len(indexed),
                got=len(topics)
            )
            return None

        args: Dict[str, Any] = {}
        for event_input, topic in zip(indexed, topics):
            args[event_input.name] = _decode_topic(event_input.type, _to_bytes(topic))

        data_inputs = definition.data_inputs
        if data_inputs:
            try:
                values = decode([i.type for i in data_inputs], _to_bytes(raw_log.get("data", b"")))
            except (DecodingError, ValueError) as e:
                self.logger.warning("Failed to decode log data", event_name=definition.name, error=str(e))
                return None
            for event_input, value in zip(data_inputs, values):
                args[event_input.name] = _normalize_value(event_input.type, value)

        return args

    def _build_event(
        self,
        definition: EventDefinition,
        args: Dict[str, Any],
        raw_log: Dict[str, Any],
        chain: ChainType,
        timestamp: int
    ) -> BridgeEvent:
        event_type = definition.event_type
        tx_hash = to_hex(raw_log["transactionHash"])

        event = BridgeEvent(
            chain=chain,
            event_type=event_type,
            block_number=_to_int(raw_log["blockNumber"]),
            block_hash=to_hex(raw_log["blockHash"]),
            transaction_hash=tx_hash,
            log_index=_to_int(raw_log["logIndex"]),
            timestamp=timestamp,
        )

        if "withdrawalHash" in args:
            event.correlation_key = args["withdrawalHash"]
            event.data["withdrawal_hash"] = args["withdrawalHash"]
        else:
            event.correlation_key = tx_hash

        if event_type == EventType.WITHDRAWAL_FINALIZED:
            event.data["success"] = args["success"]
            return event

        event.from_address = args["from"]
        event.to_address = args["to"]

        if event_type == EventType.WITHDRAWAL_PROVEN:
            return event

        if "amount" in args:
            event.amount = args["amount"]
            event.token_address = args["l1Token"]
            event.data["l2_token"] = args["l2Token"]
        else:
            event.token_id = args["tokenId"]
            # ERC721 events name tokens relative to the emitting chain
            if chain == ChainType.L1:
                event.token_address = args["localToken"]
                event.data["l2_token"] = args["remoteToken"]
            else:
                event.token_address = args["remoteToken"]
                event.data["l2_token"] = args["localToken"]
        event.data["extra_data"] = args["extraData"]
        return event


def cross_domain_message_hash(
    nonce: int,
    sender: str,
    target: str,
    value: int,
    gas_limit: int,
    message: str
) -> str:
    """
    Hash of a cross-domain message, as relayed on the other chain.

    The message version lives in the top two bytes of the nonce.
    """
    message_bytes = _to_bytes(message)
    version = nonce >> 240
    if version == 0:
        selector = Web3.keccak(text=RELAY_MESSAGE_V0_SIGNATURE)[:4]
        encoded = encode(
            ["address", "address", "bytes", "uint256"],
            [target, sender, message_bytes, nonce]
        )
    else:
        selector = Web3.keccak(text=RELAY_MESSAGE_V1_SIGNATURE)[:4]
        encoded = encode(
            ["uint256", "address", "address", "uint256", "uint256", "bytes"],
            [nonce, sender, target, value, gas_limit, message_bytes]
        )
    return to_hex(Web3.keccak(bytes(selector) + encoded))


def _next_after(candidates: List[Dict[str, Any]], log_index: int, used: set) -> Optional[Dict[str, Any]]:
    for candidate in candidates:
        marker = id(candidate)
        if marker in used or candidate["_log_index"] <= log_index:
            continue
        used.add(marker)
        return candidate
    return None


def _nearest(
    candidates: List[Dict[str, Any]],
    log_index: int,
    used: set,
    before: bool = False
) -> Optional[Dict[str, Any]]:
    following = [c for c in candidates if id(c) not in used and c["_log_index"] > log_index]
    preceding = [c for c in candidates if id(c) not in used and c["_log_index"] < log_index]
    closest_after = min(following, key=lambda c: c["_log_index"], default=None)
    closest_before = max(preceding, key=lambda c: c["_log_index"], default=None)

    if before:
        candidate = closest_before or closest_after
    else:
        candidate = closest_after or closest_before
    if candidate is not None:
        used.add(id(candidate))
    return candidate


def _decode_topic(type_: str, topic: bytes) -> Any:
    if type_ == "address":
        return to_hex(topic[-20:])
    if type_ == "bytes32":
        return to_hex(topic)
    if type_.startswith("uint"):
        return int.from_bytes(topic, "big")
    if type_ == "bool":
        return topic[-1] == 1
    return to_hex(topic)


def _normalize_value(type_: str, value: Any) -> Any:
    if type_ == "address":
        return value.lower()
    if type_ in ("bytes", "bytes32"):
        return to_hex(value)
    return value


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        value = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(value)
    return bytes(value)


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
