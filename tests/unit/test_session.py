"""Unit tests for GameSession endpoint resolution and lifecycle."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dungeon_link.directory.models import ProbeResult, ServerEndpoint
from dungeon_link.directory.service import InMemoryServerDirectory
from dungeon_link.events import LinkEvent, StateChangeEvent
from dungeon_link.protocol.commands import move_by
from dungeon_link.session import GameSession
from dungeon_link.transport.exceptions import LinkConnectionError
from dungeon_link.transport.types import ConnectionState, SendStatus
from tests.helpers.expectations import expect_async_exception, expect_exception

# Test constants
SLOW = ServerEndpoint(id="slow", name="Slow", host="slow.test", port=9001)
FAST = ServerEndpoint(id="fast", name="Fast", host="fast.test", port=9002)
DOWN = ServerEndpoint(id="down", name="Down", host="down.test", port=9003)
LATENCIES = {"slow": 180.0, "fast": 25.0}


async def _probe(endpoint: ServerEndpoint) -> ProbeResult:
    latency = LATENCIES.get(endpoint.id)
    if latency is None:
        return ProbeResult(endpoint_id=endpoint.id, reachable=False, error="Connection failed")
    return ProbeResult(endpoint_id=endpoint.id, reachable=True, latency_ms=latency)


def _directory(*endpoints: ServerEndpoint) -> InMemoryServerDirectory:
    return InMemoryServerDirectory(endpoints=list(endpoints), probe_fn=AsyncMock(side_effect=_probe))


class TestResolveEndpoint:
    """Tests for choosing which server to connect to."""

    @pytest.mark.asyncio
    async def test_explicit_id_wins(self):
        """Test an explicit id is used even when another is selected."""
        directory = _directory(SLOW, FAST)
        await directory.select("fast")
        session = GameSession(directory)

        assert await session.resolve_endpoint("slow") == SLOW

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        """Test an unknown explicit id raises KeyError."""
        session = GameSession(_directory(SLOW))
        _ = await expect_async_exception(session.resolve_endpoint, KeyError, "nowhere")

    @pytest.mark.asyncio
    async def test_selected_endpoint(self):
        """Test the directory selection is used without probing."""
        directory = _directory(SLOW, FAST)
        await directory.select("slow")
        session = GameSession(directory)

        assert await session.resolve_endpoint() == SLOW
        directory._probe_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fastest_reachable(self):
        """Test the reachable endpoint with the lowest latency is chosen."""
        session = GameSession(_directory(DOWN, SLOW, FAST))
        assert await session.resolve_endpoint() == FAST

    @pytest.mark.asyncio
    async def test_nothing_reachable(self):
        """Test LinkConnectionError when every probe fails."""
        session = GameSession(_directory(DOWN))
        error = await expect_async_exception(session.resolve_endpoint, LinkConnectionError)
        assert "reachable" in error.reason


class TestSessionLifecycle:
    """Tests for start, send and close."""

    @pytest.mark.asyncio
    async def test_start_connects_to_endpoint(self, fast_config, transport_factory):
        """Test start() opens a transport to the endpoint URL and reaches READY."""
        session = GameSession(_directory(FAST), fast_config, transport_factory=transport_factory)
        try:
            state = await session.start("fast")

            assert state is ConnectionState.READY
            assert session.endpoint == FAST
            assert transport_factory.last.url == FAST.url
            assert session.core.config.url == FAST.url
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_start_with_url_bypasses_directory(self, fast_config, transport_factory):
        """Test an explicit URL skips endpoint resolution."""
        directory = _directory(DOWN)
        session = GameSession(directory, fast_config, transport_factory=transport_factory)
        try:
            state = await session.start(url="ws://direct.test:7000/ws")

            assert state is ConnectionState.READY
            assert session.endpoint is None
            assert transport_factory.last.url == "ws://direct.test:7000/ws"
            directory._probe_fn.assert_not_awaited()
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_listeners_registered_before_start(self, fast_config, transport_factory):
        """Test listeners added before start() see the connection events."""
        states: list[tuple[ConnectionState, ConnectionState]] = []

        def on_state(event: StateChangeEvent) -> None:
            states.append((event.previous, event.current))

        session = GameSession(_directory(FAST), fast_config, transport_factory=transport_factory)
        session.on(LinkEvent.STATE_CHANGE, on_state)
        try:
            _ = await session.start("fast")
        finally:
            await session.close()

        assert states[0] == (ConnectionState.IDLE, ConnectionState.CONNECTING)
        assert states[1] == (ConnectionState.CONNECTING, ConnectionState.READY)

    @pytest.mark.asyncio
    async def test_start_twice(self, fast_config, transport_factory):
        """Test a running session refuses a second start()."""
        session = GameSession(_directory(FAST), fast_config, transport_factory=transport_factory)
        try:
            _ = await session.start("fast")
            _ = await expect_async_exception(session.start, LinkConnectionError, "fast")
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_restart_after_close_shuts_down_previous_core(self, fast_config, transport_factory):
        """Test starting again once Closed replaces the core and shuts the old one down."""
        states: list[ConnectionState] = []

        def on_state(event: StateChangeEvent) -> None:
            states.append(event.current)

        session = GameSession(_directory(FAST), fast_config, transport_factory=transport_factory)
        session.on(LinkEvent.STATE_CHANGE, on_state)
        try:
            _ = await session.start("fast")
            first_core = session.core
            first_core.send(move_by(1, 0))
            first_core.disconnect()
            first_core.send(move_by(2, 0))

            assert await session.start("fast") is ConnectionState.READY

            assert session.core is not first_core
            assert first_core.events.listener_count() == 0
            assert first_core.pending_commands == 0
            _ = expect_exception(first_core.connect, LinkConnectionError)
            assert len(transport_factory.transports) == 2
            assert states.count(ConnectionState.READY) == 2
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_send(self, fast_config, transport_factory):
        """Test send() goes through the ConnectionCore."""
        session = GameSession(_directory(FAST), fast_config, transport_factory=transport_factory)
        try:
            _ = await session.start("fast")
            result = session.send(move_by(1, 0))

            assert result.status is SendStatus.SENT
            assert transport_factory.last.sent_actions() == ["MOVE"]
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_not_started(self):
        """Test send and login before start() raise."""
        session = GameSession(_directory(FAST))
        _ = expect_exception(session.send, LinkConnectionError, move_by(1, 0))
        _ = await expect_async_exception(session.login, LinkConnectionError, "token")

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self, fast_config, transport_factory):
        """Test leaving the async with block shuts the core down."""
        async with GameSession(_directory(FAST), fast_config, transport_factory=transport_factory) as session:
            _ = await session.start("fast")

        assert session.core.state is ConnectionState.CLOSED
        assert transport_factory.last.is_open is False

    @pytest.mark.asyncio
    async def test_close_without_start(self):
        """Test close() on an unstarted session is a no-op."""
        session = GameSession(_directory(FAST))
        await session.close()
        assert session.core is None
