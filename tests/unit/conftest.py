"""
Shared fixtures for unit tests.

FakeTransport stands in for the websocket so ConnectionCore can be driven
deterministically: the test decides whether an open succeeds, fails or
hangs, and pushes server frames or closes by hand.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any

import pytest

from dungeon_link.config import LinkConfig
from dungeon_link.transport.exceptions import TransportOpenError, TransportSendError
from dungeon_link.transport.socket_abstraction import TransportHandler

TEST_URL = "ws://game.test:8080/ws"


class FakeTransport:
    """In-memory Transport whose open outcome is chosen up front.

    behaviour is "open" (succeeds immediately), "fail" (raises
    TransportOpenError) or "hang" (blocks until cancelled).
    """

    def __init__(self, url: str, behaviour: str = "open") -> None:
        self.url = url
        self.behaviour = behaviour
        self.sent: list[str | bytes] = []
        self.handler: TransportHandler | None = None
        self.open_cancelled = False
        self.close_calls: list[tuple[int, str]] = []
        self.refuse_sends = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, handler: TransportHandler) -> None:
        if self.behaviour == "fail":
            raise TransportOpenError(self.url, "connection refused")
        if self.behaviour == "hang":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.open_cancelled = True
                raise
        self.handler = handler
        self._open = True

    def send(self, data: str | bytes) -> None:
        if not self._open or self.refuse_sends:
            msg = "transport not open"
            raise TransportSendError(msg)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self._finish(code, reason, None)

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def sent_actions(self) -> list[str]:
        return [frame.get("action", frame.get("type")) for frame in self.sent_json()]

    def server_message(self, payload: dict[str, Any] | str) -> None:
        """Deliver one frame as if the server sent it."""
        assert self.handler is not None, "transport not open"
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self.handler.on_message(raw)

    def server_close(self, code: int | None = 1006, reason: str = "", error: BaseException | None = None) -> None:
        """End the channel from the server side."""
        self._finish(code, reason, error)

    def _finish(self, code: int | None, reason: str, error: BaseException | None) -> None:
        self._open = False
        handler = self.handler
        self.handler = None
        if handler is not None:
            handler.on_closed(code, reason, error)


class FakeTransportFactory:
    """TransportFactory that records every transport it builds.

    Queued behaviours are consumed one per connection attempt; once they run
    out every transport gets the default behaviour.
    """

    def __init__(self, default: str = "open") -> None:
        self.default = default
        self.behaviours: deque[str] = deque()
        self.transports: list[FakeTransport] = []

    def __call__(self, url: str) -> FakeTransport:
        behaviour = self.behaviours.popleft() if self.behaviours else self.default
        transport = FakeTransport(url, behaviour)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def fast_config() -> LinkConfig:
    """Config with millisecond-scale delays so reconnect tests run quickly."""
    return LinkConfig(
        url=TEST_URL,
        initial_reconnect_delay_ms=10,
        max_reconnect_delay_ms=40,
        connection_timeout_ms=500,
        auth_timeout_ms=500,
        session_name="unit-test",
    )
