"""
In-process publish/subscribe for indexed events, sync progress and errors.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog

from bridge_indexer.models import ChainType, EventType

from .types import BridgeEvent


logger = structlog.get_logger(__name__)

EventCallback = Callable[[BridgeEvent], Any]
SyncedCallback = Callable[[ChainType, int], Any]
ErrorCallback = Callable[[Exception], Any]
Unsubscribe = Callable[[], None]


class ListenerKind(Enum):
    EVENT = "event"
    SYNCED = "synced"
    ERROR = "error"


@dataclass(eq=False)
class _Listener:
    kind: ListenerKind
    callback: Callable[..., Any]
    predicate: Optional[Callable[[BridgeEvent], bool]] = None
    label: str = "all"


class EventSubscription:
    """
    Observer registry.

    Listeners are called synchronously in registration order. A listener that
    raises is logged and skipped; the next listener still runs and the
    publisher never sees the exception. Every ``on_*`` method returns a
    callable that removes that listener.
    """

    def __init__(self):
        self.logger = logger.bind(service="event_subscription")
        self._listeners: List[_Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def on_event(self, callback: EventCallback) -> Unsubscribe:
        """Every indexed event."""
        return self._add(_Listener(ListenerKind.EVENT, callback))

    def on_deposit(self, callback: EventCallback) -> Unsubscribe:
        return self._add(_Listener(
            ListenerKind.EVENT, callback, lambda event: event.is_deposit, "deposit"
        ))

    def on_withdrawal(self, callback: EventCallback) -> Unsubscribe:
        return self._add(_Listener(
            ListenerKind.EVENT, callback, lambda event: event.is_withdrawal, "withdrawal"
        ))

    def on_event_type(self, event_type: EventType, callback: EventCallback) -> Unsubscribe:
        return self._add(_Listener(
            ListenerKind.EVENT,
            callback,
            lambda event: event.event_type == event_type,
            f"type:{event_type.value}",
        ))

    def on_chain(self, chain: ChainType, callback: EventCallback) -> Unsubscribe:
        return self._add(_Listener(
            ListenerKind.EVENT,
            callback,
            lambda event: event.chain == chain,
            f"chain:{chain.value}",
        ))

    def on_synced(self, callback: SyncedCallback) -> Unsubscribe:
        """Called with (chain, block_number) after each committed chunk."""
        return self._add(_Listener(ListenerKind.SYNCED, callback, label="synced"))

    def on_error(self, callback: ErrorCallback) -> Unsubscribe:
        return self._add(_Listener(ListenerKind.ERROR, callback, label="error"))

    def unsubscribe(self, handle: Unsubscribe) -> None:
        handle()

    def remove_all(self) -> None:
        self._listeners.clear()

    def emit_event(self, event: BridgeEvent) -> None:
        for listener in list(self._listeners):
            if listener.kind is not ListenerKind.EVENT:
                continue
            if listener.predicate is not None and not listener.predicate(event):
                continue
            self._call(listener, event)

    def emit_events(self, events: List[BridgeEvent]) -> None:
        for event in events:
            self.emit_event(event)

    def emit_synced(self, chain: ChainType, block_number: int) -> None:
        for listener in list(self._listeners):
            if listener.kind is ListenerKind.SYNCED:
                self._call(listener, chain, block_number)

    def emit_error(self, error: Exception) -> None:
        for listener in list(self._listeners):
            if listener.kind is ListenerKind.ERROR:
                self._call(listener, error)

    def _add(self, listener: _Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _call(self, listener: _Listener, *args) -> None:
        try:
            listener.callback(*args)
        except Exception as e:
            self.logger.error(
                "Subscription listener failed",
                listener=listener.label,
                error=str(e),
                exc_info=True
            )
