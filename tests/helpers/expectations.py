"""Shared assertion helpers for dungeon-link tests."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, ParamSpec, TypeVar

from dungeon_link.events import EventBus, LinkEvent, StateChangeEvent
from dungeon_link.transport.types import ConnectionState

P = ParamSpec("P")
TException = TypeVar("TException", bound=BaseException)


async def expect_async_exception(
    func: Callable[P, Awaitable[object]],
    exception_type: type[TException],
    *args: P.args,
    **kwargs: P.kwargs,
) -> TException:
    """Await a coroutine and return the raised exception for inspection."""
    try:
        _ = await func(*args, **kwargs)
    except exception_type as err:
        return err
    message = f"Expected {exception_type.__name__} to be raised"
    raise AssertionError(message)  # pragma: no cover


def expect_exception(
    func: Callable[P, object],
    exception_type: type[TException],
    *args: P.args,
    **kwargs: P.kwargs,
) -> TException:
    """Run a callable and return the raised exception for inspection."""
    try:
        _ = func(*args, **kwargs)
    except exception_type as err:
        return err
    message = f"Expected {exception_type.__name__} to be raised"
    raise AssertionError(message)  # pragma: no cover


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0, interval: float = 0.002) -> None:
    """Poll predicate on the running loop until it holds or timeout elapses."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            message = f"Condition not met within {timeout}s"
            raise AssertionError(message)
        await asyncio.sleep(interval)


class EventRecorder:
    """Subscribes to every LinkEvent on a bus and keeps the payloads in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[LinkEvent, Any]] = []
        for event in LinkEvent:
            bus.on(event, partial(self._record, event))

    def _record(self, event: LinkEvent, payload: Any) -> None:
        self.events.append((event, payload))

    def names(self) -> list[LinkEvent]:
        return [event for event, _ in self.events]

    def of(self, event: LinkEvent) -> list[Any]:
        return [payload for name, payload in self.events if name is event]

    def states(self) -> list[tuple[ConnectionState, ConnectionState]]:
        changes: list[StateChangeEvent] = self.of(LinkEvent.STATE_CHANGE)
        return [(change.previous, change.current) for change in changes]

    def clear(self) -> None:
        self.events.clear()


class CallbackRecorder:
    """on_accepted / on_rejected pair that remembers how it was called."""

    def __init__(self) -> None:
        self.accepted = 0
        self.rejections: list[Exception] = []

    def on_accepted(self) -> None:
        self.accepted += 1

    def on_rejected(self, error: Exception) -> None:
        self.rejections.append(error)
