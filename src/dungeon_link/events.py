"""Typed publish/subscribe surface for connection events.

Listeners are keyed by LinkEvent and invoked synchronously in subscription
order. A listener that raises does not stop delivery to the remaining
listeners; the fault is logged and re-published as an ErrorEvent with
kind="listener".
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from dungeon_link.logging_abstraction import get_logger
from dungeon_link.transport.types import ConnectionState, DisconnectReason

logger = get_logger(__name__)

ErrorKind = Literal["connection", "auth", "send", "parse", "listener", "queue"]


class LinkEvent(StrEnum):
    """Events raised by ConnectionCore."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
    ERROR = "error"
    RECONNECT_ATTEMPT = "reconnect_attempt"
    STATE_CHANGE = "state_change"
    MESSAGE_SENT = "message_sent"
    AUTH_CHANGE = "auth_change"


@dataclass(frozen=True)
class ConnectedEvent:
    attempts: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DisconnectedEvent:
    reason: DisconnectReason
    code: int | None = None
    reason_text: str = ""
    was_authenticated: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    raw: str | bytes = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ErrorEvent:
    kind: ErrorKind
    message: str
    error: BaseException | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ReconnectAttemptEvent:
    attempt: int
    max_attempts: int
    delay_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class StateChangeEvent:
    previous: ConnectionState
    current: ConnectionState
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MessageSentEvent:
    command: Any
    serialized: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AuthChangeEvent:
    is_authenticated: bool
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by EventBus.on(); unsubscribes on exit when used as a context manager."""

    def __init__(self, bus: EventBus, event: LinkEvent, listener: Listener) -> None:
        self.event = event
        self.listener = listener
        self._bus: EventBus | None = bus

    @property
    def active(self) -> bool:
        return self._bus is not None and self._bus.has_listener(self.event, self.listener)

    def unsubscribe(self) -> None:
        if self._bus is not None:
            self._bus.off(self.event, self.listener)
            self._bus = None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class EventBus:
    """Per-event listener lists with fault isolation."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._listeners: dict[LinkEvent, list[Listener]] = {event: [] for event in LinkEvent}

    def on(self, event: LinkEvent | str, listener: Listener) -> Subscription:
        """Subscribe listener to event. The same listener is only added once."""
        key = LinkEvent(event)
        listeners = self._listeners[key]
        if listener not in listeners:
            listeners.append(listener)
        return Subscription(self, key, listener)

    def off(self, event: LinkEvent | str, listener: Listener) -> bool:
        """Remove listener. Returns False if it was not subscribed."""
        listeners = self._listeners[LinkEvent(event)]
        try:
            listeners.remove(listener)
        except ValueError:
            return False
        return True

    def once(self, event: LinkEvent | str, listener: Listener) -> Subscription:
        """Subscribe for a single delivery."""
        key = LinkEvent(event)

        def wrapper(payload: Any) -> None:
            self.off(key, wrapper)
            listener(payload)

        return self.on(key, wrapper)

    def has_listener(self, event: LinkEvent | str, listener: Listener) -> bool:
        return listener in self._listeners[LinkEvent(event)]

    def listener_count(self, event: LinkEvent | str | None = None) -> int:
        if event is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners[LinkEvent(event)])

    def clear(self, event: LinkEvent | str | None = None) -> None:
        if event is None:
            for listeners in self._listeners.values():
                listeners.clear()
        else:
            self._listeners[LinkEvent(event)].clear()

    def emit(self, event: LinkEvent, payload: Any) -> int:
        """Deliver payload to every listener of event.

        Returns:
            Number of listeners that raised
        """
        failures = 0
        # Snapshot so listeners may unsubscribe (or once() wrappers remove themselves) mid-delivery
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception as e:
                failures += 1
                logger.exception(
                    "✗ Event listener raised",
                    extra={
                        "bus": self.name,
                        "event": event.value,
                        "listener": getattr(listener, "__qualname__", repr(listener)),
                    },
                )
                if event is LinkEvent.ERROR and isinstance(payload, ErrorEvent) and payload.kind == "listener":
                    continue
                self._report_listener_fault(event, e)
        return failures

    def _report_listener_fault(self, event: LinkEvent, error: Exception) -> None:
        fault = ErrorEvent(kind="listener", message=f"listener for '{event.value}' raised: {error}", error=error)
        for listener in list(self._listeners[LinkEvent.ERROR]):
            try:
                listener(fault)
            except Exception:
                logger.exception(
                    "✗ Error listener raised while handling a listener fault",
                    extra={"bus": self.name, "event": event.value},
                )
