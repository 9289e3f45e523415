"""Transport abstraction and its aiohttp websocket implementation.

The connection core only sees the Transport protocol: open, a synchronous
send hand-off, close, and two callbacks on a TransportHandler. One transport
instance serves exactly one connection attempt.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import aiohttp

from dungeon_link.const import WS_ABNORMAL_CLOSURE, WS_NORMAL_CLOSURE
from dungeon_link.logging_abstraction import get_logger
from dungeon_link.transport.exceptions import TransportOpenError, TransportSendError

logger = get_logger(__name__)


class TransportHandler(Protocol):
    """Receives events from an opened transport."""

    def on_message(self, raw: str | bytes) -> None: ...

    def on_closed(self, code: int | None, reason: str, error: BaseException | None) -> None:
        """Called exactly once after a successful open, however the channel ends."""
        ...


@runtime_checkable
class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def open(self, handler: TransportHandler) -> None:
        """Open the channel.

        Raises:
            TransportOpenError: If the channel cannot be opened

        """
        ...

    def send(self, data: str | bytes) -> None:
        """Hand a frame to the transport without waiting for the write.

        Raises:
            TransportSendError: If the transport is not open

        """
        ...

    async def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None: ...


TransportFactory = Callable[[str], Transport]


class WebSocketTransport:
    """Websocket channel over aiohttp with a reader task and a FIFO writer task."""

    lp: str = "WebSocketTransport:"

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession | None = None,
        max_msg_size: int = 4 * 1024 * 1024,
    ):
        """Initialize websocket transport.

        Args:
            url: ws:// or wss:// endpoint
            session: Shared ClientSession; when None the transport creates and
                owns one for its lifetime
            max_msg_size: Largest inbound frame accepted
        """
        self.url = url
        self.max_msg_size = max_msg_size
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._handler: TransportHandler | None = None
        self._outbox: asyncio.Queue[str | bytes] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._finished = False
        self._close_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._finished

    async def open(self, handler: TransportHandler) -> None:
        if self._ws is not None or self._finished:
            raise TransportOpenError(self.url, "transport already used")

        start_time = time.perf_counter()
        logger.info("%s → Opening websocket", self.lp, extra={"url": self.url})
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url, max_msg_size=self.max_msg_size)
        except (aiohttp.ClientError, OSError, ValueError) as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.warning(
                "%s ✗ Websocket open failed",
                self.lp,
                extra={"url": self.url, "elapsed_ms": round(elapsed_ms, 1), "error": str(e)},
            )
            self._finished = True
            await self._close_owned_session()
            raise TransportOpenError(self.url, str(e) or type(e).__name__) from e
        except asyncio.CancelledError:
            self._finished = True
            await self._close_owned_session()
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "%s ✓ Websocket open",
            self.lp,
            extra={"url": self.url, "elapsed_ms": round(elapsed_ms, 1)},
        )
        self._handler = handler
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"ws-reader:{self.url}")
        self._writer_task = asyncio.create_task(self._write_loop(), name=f"ws-writer:{self.url}")

    def send(self, data: str | bytes) -> None:
        if not self.is_open:
            msg = "transport not open"
            raise TransportSendError(msg)
        self._outbox.put_nowait(data)

    async def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the websocket and release the session if owned. Safe to call repeatedly."""
        if self._ws is None:
            self._finished = True
            await self._close_owned_session()
            return
        await self._finish(code, reason, None)

    async def _read_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        code: int | None = None
        reason = ""
        error: BaseException | None = None
        try:
            while True:
                msg = await ws.receive()
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    if self._handler is not None:
                        self._handler.on_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.CLOSE:
                    code = msg.data
                    reason = msg.extra or ""
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception()
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            error = e

        if code is None:
            code = ws.close_code or (WS_ABNORMAL_CLOSURE if error is not None else WS_NORMAL_CLOSURE)
        logger.debug("%s Reader finished", self.lp, extra={"url": self.url, "code": code, "reason": reason})
        await self._finish(code, reason, error)

    async def _write_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        while True:
            data = await self._outbox.get()
            try:
                if isinstance(data, bytes):
                    await ws.send_bytes(data)
                else:
                    await ws.send_str(data)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                logger.warning("%s ✗ Websocket write failed", self.lp, extra={"url": self.url, "error": str(e)})
                await self._finish(WS_ABNORMAL_CLOSURE, "write failed", e)
                return

    async def _finish(self, code: int | None, reason: str, error: BaseException | None) -> None:
        async with self._close_lock:
            if self._finished:
                return
            self._finished = True

        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.close(code=code or WS_NORMAL_CLOSURE, message=reason.encode())
            except (aiohttp.ClientError, ConnectionError) as e:
                logger.debug("%s Websocket close raised", self.lp, extra={"url": self.url, "error": str(e)})
        await self._close_owned_session()

        logger.info(
            "%s Websocket closed",
            self.lp,
            extra={"url": self.url, "code": code, "reason": reason, "error": str(error) if error else None},
        )
        handler = self._handler
        self._handler = None
        if handler is not None:
            handler.on_closed(code, reason, error)

    async def _close_owned_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
