"""Client session: pick an endpoint from a directory and drive a ConnectionCore."""

from __future__ import annotations

import asyncio
from typing import Any

from dungeon_link.config import LinkConfig
from dungeon_link.directory.models import ServerEndpoint
from dungeon_link.directory.service import ServerDirectory
from dungeon_link.events import LinkEvent, Listener
from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics.collector import MetricsCollector
from dungeon_link.protocol.codec import MessageCodec
from dungeon_link.transport.connection_core import ConnectionCore
from dungeon_link.transport.exceptions import LinkConnectionError
from dungeon_link.transport.socket_abstraction import TransportFactory
from dungeon_link.transport.types import ConnectionState, SendResult

logger = get_logger(__name__)


class GameSession:
    """One client session against one server.

    The directory is injected; listeners registered before start() are
    attached to the ConnectionCore when it is built.
    """

    lp: str = "GameSession:"

    def __init__(
        self,
        directory: ServerDirectory,
        config: LinkConfig | None = None,
        codec: MessageCodec | None = None,
        transport_factory: TransportFactory | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.directory = directory
        self.config = config or LinkConfig()
        self._codec = codec
        self._transport_factory = transport_factory
        self._metrics = metrics
        self._listeners: list[tuple[LinkEvent, Listener]] = []
        self.core: ConnectionCore | None = None
        self.endpoint: ServerEndpoint | None = None

    def on(self, event: LinkEvent | str, listener: Listener) -> None:
        key = LinkEvent(event)
        self._listeners.append((key, listener))
        if self.core is not None:
            self.core.on(key, listener)

    async def resolve_endpoint(self, endpoint_id: str | None = None) -> ServerEndpoint:
        """Pick the endpoint to connect to.

        Order: the explicit id, then the directory's selection, then the
        reachable endpoint with the lowest probe latency.

        Raises:
            KeyError: If endpoint_id is given but unknown
            LinkConnectionError: If nothing is selected and no endpoint is reachable

        """
        if endpoint_id is not None:
            endpoint = self.directory.get(endpoint_id)
            if endpoint is None:
                raise KeyError(endpoint_id)
            return endpoint

        selected_id = self.directory.selected_id
        if selected_id is not None:
            endpoint = self.directory.get(selected_id)
            if endpoint is not None:
                return endpoint

        endpoints = self.directory.list_endpoints()
        results = await asyncio.gather(*(self.directory.probe(ep) for ep in endpoints))
        reachable = [
            (result.latency_ms if result.latency_ms is not None else float("inf"), ep)
            for ep, result in zip(endpoints, results, strict=True)
            if result.reachable
        ]
        if not reachable:
            msg = "no reachable server in directory"
            raise LinkConnectionError(msg, ConnectionState.IDLE.value)
        latency_ms, endpoint = min(reachable, key=lambda item: item[0])
        logger.info(
            "%s Selected fastest endpoint",
            self.lp,
            extra={"endpoint_id": endpoint.id, "latency_ms": round(latency_ms, 1)},
        )
        return endpoint

    async def start(self, endpoint_id: str | None = None, url: str | None = None) -> ConnectionState:
        """Build the ConnectionCore and connect.

        Args:
            endpoint_id: Directory endpoint to use
            url: Connect to this URL directly, bypassing the directory

        Returns:
            State the first connection attempt settled in

        """
        if self.core is not None and self.core.state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            msg = "session already started"
            raise LinkConnectionError(msg, self.core.state.value)

        if url is None:
            self.endpoint = await self.resolve_endpoint(endpoint_id)
            url = self.endpoint.url

        if self.core is not None:
            await self.core.shutdown()

        logger.info("%s → Starting session", self.lp, extra={"url": url})
        self.core = ConnectionCore(
            self.config.with_url(url),
            codec=self._codec,
            transport_factory=self._transport_factory,
            metrics=self._metrics,
        )
        for event, listener in self._listeners:
            self.core.on(event, listener)
        return await self.core.connect()

    def _require_core(self) -> ConnectionCore:
        if self.core is None:
            msg = "session not started"
            raise LinkConnectionError(msg, ConnectionState.IDLE.value)
        return self.core

    def send(self, command: Any, queue_if_offline: bool = True, **callbacks: Any) -> SendResult:
        return self._require_core().send(command, queue_if_offline=queue_if_offline, **callbacks)

    async def login(self, token: str) -> ConnectionState:
        return await self._require_core().login(token)

    async def close(self) -> None:
        if self.core is not None:
            await self.core.shutdown()
            logger.info("%s ✓ Session closed", self.lp, extra={"session_id": self.core.session_id})

    async def __aenter__(self) -> GameSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
