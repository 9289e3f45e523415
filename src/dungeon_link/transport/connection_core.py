"""Connection state machine for one game-server session.

ConnectionCore owns the transport handle and wires the outbound queue, the
heartbeat monitor, the reconnect scheduler and the metrics collector
together. All of its work runs on the event loop that called connect(); the
only entry point that may be used from another thread is send_threadsafe().

State transitions:

    IDLE -> CONNECTING                  connect()
    CONNECTING -> READY                 transport open, no auth configured
    CONNECTING -> CONNECTED             transport open, auth configured
    CONNECTING -> RECONNECTING|CLOSED   connect timeout or open failure
    CONNECTED -> AUTHENTICATING         login() (automatic with a stored token)
    AUTHENTICATING -> READY             auth ack
    AUTHENTICATING -> CLOSED            auth reject or auth timeout
    READY -> RECONNECTING|CLOSED        transport closed or heartbeat timeout
    RECONNECTING -> CONNECTING          retry timer fires
    RECONNECTING -> CLOSED              attempt budget exhausted
    any -> CLOSED                       disconnect()

Every connection attempt gets a new epoch. Transport callbacks and timers
carry the epoch they were created under and are ignored once it is stale.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from dungeon_link.config import LinkConfig
from dungeon_link.const import WS_NORMAL_CLOSURE
from dungeon_link.correlation import correlation_context, generate_correlation_id
from dungeon_link.events import (
    AuthChangeEvent,
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    ErrorKind,
    EventBus,
    LinkEvent,
    Listener,
    MessageEvent,
    MessageSentEvent,
    ReconnectAttemptEvent,
    StateChangeEvent,
    Subscription,
)
from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics import registry
from dungeon_link.metrics.collector import MetricsCollector, MetricsSnapshot
from dungeon_link.protocol.codec import AuthOutcome, JsonMessageCodec, MessageCodec
from dungeon_link.protocol.exceptions import CommandEncodeError, MessageDecodeError
from dungeon_link.transport.exceptions import (
    AlreadyConnectingError,
    AlreadyReadyError,
    AuthenticationError,
    LinkConnectionError,
    NotConnectedError,
    ReconnectExhaustedError,
    TransportError,
    TransportSendError,
)
from dungeon_link.transport.heartbeat import HeartbeatMonitor
from dungeon_link.transport.outbound_queue import OutboundQueue
from dungeon_link.transport.retry_policy import BackoffPolicy, ReconnectScheduler
from dungeon_link.transport.socket_abstraction import Transport, TransportFactory, WebSocketTransport
from dungeon_link.transport.timers import CallbackTimer
from dungeon_link.transport.types import (
    ConnectionState,
    DisconnectReason,
    QueuedCommand,
    ReconnectionState,
    SendResult,
    SendStatus,
)

logger = get_logger(__name__)

_COMPONENT_LOGGERS = (
    __name__,
    "dungeon_link.transport.heartbeat",
    "dungeon_link.transport.retry_policy",
    "dungeon_link.transport.outbound_queue",
    "dungeon_link.transport.socket_abstraction",
    "dungeon_link.transport.timers",
    "dungeon_link.events",
)

_IN_FLIGHT_STATES = (ConnectionState.CONNECTING, ConnectionState.CONNECTED, ConnectionState.AUTHENTICATING)
_ESTABLISHED_STATES = (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATING, ConnectionState.READY)


class _EpochHandler:
    """TransportHandler that forwards events tagged with the attempt epoch."""

    def __init__(self, core: ConnectionCore, epoch: int) -> None:
        self._core = core
        self._epoch = epoch

    def on_message(self, raw: str | bytes) -> None:
        self._core._handle_transport_message(self._epoch, raw)

    def on_closed(self, code: int | None, reason: str, error: BaseException | None) -> None:
        self._core._handle_transport_closed(self._epoch, code, reason, error)


class ConnectionCore:
    """Single logical channel to a game server that survives network drops.

    Commands sent while the link is not Ready are queued and transmitted in
    order once it is. Connection progress is reported through events
    (see on()) and through the futures returned by connect() and login().
    """

    lp: str = "ConnectionCore:"

    def __init__(
        self,
        config: LinkConfig | None = None,
        codec: MessageCodec | None = None,
        transport_factory: TransportFactory | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """Initialize connection core.

        Args:
            config: Session options; defaults are used for anything unset
            codec: Wire codec (default: JsonMessageCodec)
            transport_factory: Builds one transport per attempt from the URL
                (default: WebSocketTransport)
            metrics: Collector to record into (default: a new one per core)
        """
        self.config = config or LinkConfig()
        self.session_id = self.config.session_name or generate_correlation_id()[:12]

        self._codec: MessageCodec = codec or JsonMessageCodec()
        self._transport_factory: TransportFactory = transport_factory or WebSocketTransport

        self.events = EventBus(self.session_id)
        self.queue = OutboundQueue(self.config.max_queue_size, self.session_id)
        self.heartbeat = HeartbeatMonitor(
            self.config.heartbeat_interval_ms,
            self.config.heartbeat_timeout_ms,
            self.session_id,
        )
        self.scheduler = ReconnectScheduler(
            BackoffPolicy(
                initial_delay_ms=self.config.initial_reconnect_delay_ms,
                max_delay_ms=self.config.max_reconnect_delay_ms,
                multiplier=self.config.reconnect_delay_multiplier,
                jitter_factor=self.config.reconnect_jitter,
            ),
            max_attempts=self.config.max_reconnect_attempts,
        )
        self.metrics = metrics or MetricsCollector(self.config.latency_window, self.session_id)

        self._state = ConnectionState.IDLE
        self._epoch = 0
        self._transport: Transport | None = None
        self._open_task: asyncio.Task[None] | None = None
        self._connect_timer = CallbackTimer("connect-timeout")
        self._auth_timer = CallbackTimer("auth-timeout")
        self._token: str | None = self.config.auth_token
        self._authenticated = False
        self._manual_close = False
        self._shut_down = False
        # Set from entering Ready until the queue has drained
        self._draining = False
        self._pending: asyncio.Future[ConnectionState] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        if self.config.debug_logging:
            for name in _COMPONENT_LOGGERS:
                get_logger(name).set_level(logging.DEBUG)

        registry.record_connection_state(self.session_id, self._state.value)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def get_state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        """Transport open (authenticated or not)."""
        return self._state in _ESTABLISHED_STATES

    def is_authenticated(self) -> bool:
        return self._authenticated

    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def pending_commands(self) -> int:
        return len(self.queue)

    def get_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot(queue_size=len(self.queue))

    def get_reconnection_state(self) -> ReconnectionState:
        return self.scheduler.state()

    def on(self, event: LinkEvent | str, listener: Listener) -> Subscription:
        return self.events.on(event, listener)

    def off(self, event: LinkEvent | str, listener: Listener) -> bool:
        return self.events.off(event, listener)

    def once(self, event: LinkEvent | str, listener: Listener) -> Subscription:
        return self.events.once(event, listener)

    def connect(self) -> asyncio.Future[ConnectionState]:
        """Start connecting. Must be called from the owning event loop.

        Returns:
            Future resolved with the state the attempt settles in: READY,
            CONNECTED (auth required but no token stored) or CLOSED.
            Intermediate reconnects do not resolve it.

        Raises:
            AlreadyConnectingError: If an attempt or handshake is in flight
            AlreadyReadyError: If the link is already Ready
            LinkConnectionError: If no URL is configured or the core was shut down

        """
        if self._shut_down:
            msg = "connection core has been shut down"
            raise LinkConnectionError(msg, self._state.value)
        if self._state in _IN_FLIGHT_STATES:
            raise AlreadyConnectingError(self._state.value)
        if self._state is ConnectionState.READY:
            raise AlreadyReadyError
        if not self.config.url:
            msg = "no endpoint url configured"
            raise LinkConnectionError(msg, self._state.value)

        self._loop = asyncio.get_running_loop()
        if self._state is ConnectionState.RECONNECTING:
            self.scheduler.cancel()
        elif self._state is ConnectionState.CLOSED:
            self.scheduler.reset()

        if self._token is None:
            self._token = self.config.auth_token
        self._manual_close = False

        future = self._pending_future()
        logger.info("%s → Connecting", self.lp, extra={"session_id": self.session_id, "url": self.config.url})
        self._open_transport()
        return future

    def login(self, token: str) -> asyncio.Future[ConnectionState]:
        """Authenticate an open connection.

        Returns:
            Future resolved with READY on ack or CLOSED on reject/timeout

        Raises:
            LinkConnectionError: If the link is not in CONNECTED
            ValueError: If token is empty

        """
        if self._state is not ConnectionState.CONNECTED:
            msg = "login requires an open, unauthenticated connection"
            raise LinkConnectionError(msg, self._state.value)
        if not token:
            msg = "token must not be empty"
            raise ValueError(msg)

        self._token = token
        future = self._pending_future()
        self._begin_auth(token)
        return future

    def disconnect(self, reason: str = "client disconnect") -> None:
        """Close the link for good. No automatic reconnect follows; idempotent."""
        self._manual_close = True
        self.scheduler.cancel()
        if self._state is ConnectionState.CLOSED and self._transport is None:
            return

        previous = self._state
        was_authenticated = self._authenticated
        logger.info(
            "%s → Disconnecting",
            self.lp,
            extra={"session_id": self.session_id, "state": previous.value, "reason": reason},
        )

        self._invalidate_attempt()
        self._authenticated = False
        self._detach_transport(WS_NORMAL_CLOSURE, reason)
        self._set_state(ConnectionState.CLOSED)

        if previous in _ESTABLISHED_STATES:
            self.metrics.record_disconnect()
            if was_authenticated:
                self._emit(LinkEvent.AUTH_CHANGE, AuthChangeEvent(is_authenticated=False))
            self._emit(
                LinkEvent.DISCONNECTED,
                DisconnectedEvent(
                    reason=DisconnectReason.NORMAL,
                    code=WS_NORMAL_CLOSURE,
                    reason_text=reason,
                    was_authenticated=was_authenticated,
                ),
            )
        self._resolve(ConnectionState.CLOSED)
        logger.info("%s ✓ Disconnected", self.lp, extra={"session_id": self.session_id})

    async def shutdown(self) -> None:
        """Disconnect, reject every queued command, drop listeners and wait for the transport."""
        if not self._shut_down:
            self.disconnect("shutdown")
            self._shut_down = True
            self.queue.clear(notify_rejected=True, reason="connection shut down")
            self.metrics.set_queue_size(0)
            self.events.clear()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for every background task (transport open/close) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear_queue(self, notify_rejected: bool = False) -> int:
        dropped = self.queue.clear(notify_rejected=notify_rejected)
        self.metrics.set_queue_size(0)
        return dropped

    def reset_metrics(self) -> None:
        self.metrics.reset()

    def send(
        self,
        command: Any,
        queue_if_offline: bool = True,
        on_accepted: Callable[[], None] | None = None,
        on_rejected: Callable[[Exception], None] | None = None,
    ) -> SendResult:
        """Transmit now if Ready, otherwise queue (or reject).

        Never raises for transport problems. An offline rejection
        (queue_if_offline=False) has no side effects and does not invoke
        the callbacks. Commands sent while the queue is still draining after
        reaching Ready (e.g. from a connected listener) are queued behind the
        older commands.
        """
        if self._shut_down:
            error = LinkConnectionError("connection core has been shut down", self._state.value)
            return SendResult(SendStatus.REJECTED, error=error)

        if self._state is ConnectionState.READY and self._transport is not None:
            if not self._draining:
                return self._transmit(QueuedCommand(command=command, on_accepted=on_accepted, on_rejected=on_rejected))
        elif not queue_if_offline:
            logger.debug(
                "%s Command rejected, not connected",
                self.lp,
                extra={"session_id": self.session_id, "state": self._state.value},
            )
            return SendResult(SendStatus.REJECTED, error=NotConnectedError(self._state.value))

        self.queue.enqueue(command, on_accepted=on_accepted, on_rejected=on_rejected)
        self.metrics.set_queue_size(len(self.queue))
        return SendResult(SendStatus.QUEUED)

    def send_threadsafe(
        self,
        command: Any,
        queue_if_offline: bool = True,
        on_accepted: Callable[[], None] | None = None,
        on_rejected: Callable[[Exception], None] | None = None,
    ) -> concurrent.futures.Future[SendResult]:
        """Submit send() onto the owning loop from another thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            msg = "no event loop bound, call connect() first"
            raise LinkConnectionError(msg, self._state.value)

        async def _submit() -> SendResult:
            return self.send(command, queue_if_offline, on_accepted, on_rejected)

        return asyncio.run_coroutine_threadsafe(_submit(), loop)

    def _transmit(self, entry: QueuedCommand) -> SendResult:
        try:
            serialized = self._codec.encode(entry.command)
        except CommandEncodeError as e:
            self._report_error("send", e)
            self._notify_rejected(entry, e)
            return SendResult(SendStatus.REJECTED, error=e)

        transport = self._transport
        try:
            if transport is None:
                msg = "no transport"
                raise TransportSendError(msg)
            transport.send(serialized)
        except TransportSendError as e:
            entry.attempt_count += 1
            logger.warning(
                "%s ✗ Transport refused command, re-queued",
                self.lp,
                extra={"session_id": self.session_id, "attempt_count": entry.attempt_count, "error": str(e)},
            )
            self.queue.enqueue_entry(entry)
            self.metrics.set_queue_size(len(self.queue))
            self._report_error("send", e)
            return SendResult(SendStatus.QUEUED, error=e)

        self.metrics.record_message_sent()
        logger.debug("%s Command sent", self.lp, extra={"session_id": self.session_id, "bytes": len(serialized)})
        self._emit(LinkEvent.MESSAGE_SENT, MessageSentEvent(command=entry.command, serialized=serialized))
        if entry.on_accepted is not None:
            try:
                entry.on_accepted()
            except Exception:
                logger.exception("%s on_accepted callback failed", self.lp, extra={"session_id": self.session_id})
        return SendResult(SendStatus.SENT)

    def _flush_queue(self) -> None:
        """Send queued commands in FIFO order, including any queued while draining."""
        self._draining = True
        try:
            while self.queue and self._state is ConnectionState.READY:
                entries = self.queue.flush()
                logger.info(
                    "%s → Flushing queued commands",
                    self.lp,
                    extra={"session_id": self.session_id, "count": len(entries)},
                )
                refused = False
                for index, entry in enumerate(entries):
                    if self._state is not ConnectionState.READY:
                        # A listener took the link down mid-flush
                        self.queue.restore(entries[index:])
                        break
                    if self._transmit(entry).status is SendStatus.QUEUED:
                        refused = True
                if refused:
                    break
        finally:
            self._draining = False
        self.metrics.set_queue_size(len(self.queue))

    def _open_transport(self) -> None:
        self._invalidate_attempt()
        self._epoch += 1
        epoch = self._epoch
        self._set_state(ConnectionState.CONNECTING)
        if self._epoch != epoch:
            return

        transport = self._transport_factory(self.config.url)
        self._transport = transport
        if self.config.connection_timeout_ms > 0:
            self._connect_timer.arm(
                self.config.connection_timeout_ms / 1000.0,
                lambda: self._handle_connect_timeout(epoch),
            )
        self._open_task = self._spawn(self._run_open(epoch, transport), name=f"link-open:{self.session_id}:{epoch}")

    async def _run_open(self, epoch: int, transport: Transport) -> None:
        try:
            await transport.open(_EpochHandler(self, epoch))
        except TransportError as e:
            if epoch == self._epoch:
                self._handle_connect_failure(e, DisconnectReason.ERROR)
            return
        except Exception as e:
            logger.exception(
                "%s ✗ Unexpected error opening transport",
                self.lp,
                extra={"session_id": self.session_id},
            )
            if epoch == self._epoch:
                self._handle_connect_failure(TransportError(str(e) or type(e).__name__), DisconnectReason.ERROR)
            return

        if epoch != self._epoch:
            # Superseded (timeout or disconnect) while the open was in flight
            await self._close_quietly(transport, WS_NORMAL_CLOSURE, "superseded")
            return
        self._handle_transport_open(epoch)

    def _handle_connect_timeout(self, epoch: int) -> None:
        if epoch != self._epoch or self._state is not ConnectionState.CONNECTING:
            return
        logger.warning(
            "%s ✗ Connection attempt timed out",
            self.lp,
            extra={"session_id": self.session_id, "timeout_ms": self.config.connection_timeout_ms},
        )
        self._handle_connect_failure(TransportError("connection timed out"), DisconnectReason.TIMEOUT)

    def _handle_connect_failure(self, error: TransportError, reason: DisconnectReason) -> None:
        self._invalidate_attempt()
        self._detach_transport(WS_NORMAL_CLOSURE, "connect failed")
        epoch = self._epoch
        logger.warning(
            "%s ✗ Connection attempt failed",
            self.lp,
            extra={"session_id": self.session_id, "reason": reason.value, "error": str(error)},
        )
        self._report_error("connection", error)
        if epoch != self._epoch or self._manual_close:
            return
        self._reconnect_or_close()

    def _handle_transport_open(self, epoch: int) -> None:
        self._connect_timer.cancel()
        attempts = self.scheduler.attempts
        self.metrics.record_connect()
        logger.info(
            "%s ✓ Transport open",
            self.lp,
            extra={"session_id": self.session_id, "url": self.config.url, "attempts": attempts},
        )

        if not self.config.has_auth:
            self._enter_ready(attempts)
            if self._epoch != epoch:
                return
            self._emit(LinkEvent.CONNECTED, ConnectedEvent(attempts=attempts))
            self._complete_ready()
            return

        self._set_state(ConnectionState.CONNECTED)
        if self._epoch != epoch:
            return
        self._emit(LinkEvent.CONNECTED, ConnectedEvent(attempts=attempts))
        if self._epoch != epoch or self._state is not ConnectionState.CONNECTED:
            return
        if self._token is not None:
            self._begin_auth(self._token)
        else:
            logger.info("%s Waiting for login()", self.lp, extra={"session_id": self.session_id})
            self._resolve(ConnectionState.CONNECTED)

    def _enter_ready(self, attempts: int) -> None:
        self._draining = True
        self._set_state(ConnectionState.READY)
        if attempts > 0:
            self.metrics.record_reconnect_success()
        self.scheduler.reset()
        self.metrics.set_reconnect_delay(0)
        self.heartbeat.start(self._send_ping, self._handle_heartbeat_timeout, self.metrics.record_latency)

    def _complete_ready(self) -> None:
        if self._state is not ConnectionState.READY:
            return
        self._flush_queue()
        if self._state is ConnectionState.READY:
            logger.info("%s ✓ Ready", self.lp, extra={"session_id": self.session_id})
            self._resolve(ConnectionState.READY)

    def _reconnect_or_close(self) -> None:
        if not self.config.auto_reconnect:
            self._set_state(ConnectionState.CLOSED)
            self._resolve(ConnectionState.CLOSED)
            return
        if self.scheduler.is_exhausted:
            self._give_up()
            return

        self._set_state(ConnectionState.RECONNECTING)
        self.scheduler.schedule(self._retry, on_attempt=self._on_reconnect_attempt, on_exhausted=self._give_up)

    def _on_reconnect_attempt(self, attempt: int, max_attempts: int, delay_ms: float) -> None:
        self.metrics.record_reconnect_attempt()
        self.metrics.set_reconnect_delay(delay_ms)
        self._emit(
            LinkEvent.RECONNECT_ATTEMPT,
            ReconnectAttemptEvent(attempt=attempt, max_attempts=max_attempts, delay_ms=delay_ms),
        )

    def _retry(self) -> None:
        if self._state is not ConnectionState.RECONNECTING or self._manual_close:
            return
        logger.info(
            "%s → Reconnecting",
            self.lp,
            extra={"session_id": self.session_id, "attempt": self.scheduler.attempts},
        )
        self._open_transport()

    def _give_up(self) -> None:
        error = ReconnectExhaustedError(self.scheduler.attempts)
        logger.error("%s ✗ %s", self.lp, error, extra={"session_id": self.session_id})
        self._set_state(ConnectionState.CLOSED)
        self.queue.clear(notify_rejected=True, reason="reconnection attempts exhausted")
        self.metrics.set_queue_size(0)
        self._report_error("connection", error)
        self._resolve(ConnectionState.CLOSED)

    def _begin_auth(self, token: str) -> None:
        epoch = self._epoch
        self._set_state(ConnectionState.AUTHENTICATING)
        if self._epoch != epoch:
            return
        logger.info("%s → Authenticating", self.lp, extra={"session_id": self.session_id})

        try:
            serialized = self._codec.encode(self._codec.login_command(token))
        except (CommandEncodeError, ValueError) as e:
            self._handle_auth_failure(f"cannot encode login: {e}", timed_out=False)
            return

        if self.config.auth_timeout_ms > 0:
            self._auth_timer.arm(self.config.auth_timeout_ms / 1000.0, lambda: self._handle_auth_timeout(epoch))

        transport = self._transport
        try:
            if transport is None:
                msg = "no transport"
                raise TransportSendError(msg)
            transport.send(serialized)
        except TransportSendError as e:
            # The transport is going away; its close event drives the state machine
            logger.warning(
                "%s ✗ Login could not be sent",
                self.lp,
                extra={"session_id": self.session_id, "error": str(e)},
            )

    def _handle_auth_timeout(self, epoch: int) -> None:
        if epoch != self._epoch or self._state is not ConnectionState.AUTHENTICATING:
            return
        self._handle_auth_failure("no response within auth timeout", timed_out=True)

    def _handle_auth_success(self) -> None:
        self._auth_timer.cancel()
        epoch = self._epoch
        attempts = self.scheduler.attempts
        self._authenticated = True
        logger.info("%s ✓ Authenticated", self.lp, extra={"session_id": self.session_id})
        self._enter_ready(attempts)
        if self._epoch != epoch:
            return
        self._emit(LinkEvent.AUTH_CHANGE, AuthChangeEvent(is_authenticated=True))
        if self._epoch != epoch:
            return
        self._complete_ready()

    def _handle_auth_failure(self, reason: str, timed_out: bool) -> None:
        error = AuthenticationError(reason, timed_out=timed_out)
        logger.error(
            "%s ✗ Authentication failed",
            self.lp,
            extra={"session_id": self.session_id, "reason": reason, "timed_out": timed_out},
        )
        self._invalidate_attempt()
        self._authenticated = False
        self._token = None
        self._detach_transport(WS_NORMAL_CLOSURE, "authentication failed")
        self._set_state(ConnectionState.CLOSED)
        self.metrics.record_disconnect()

        self._emit(LinkEvent.AUTH_CHANGE, AuthChangeEvent(is_authenticated=False))
        self._report_error("auth", error)
        self._emit(
            LinkEvent.DISCONNECTED,
            DisconnectedEvent(
                reason=DisconnectReason.TIMEOUT if timed_out else DisconnectReason.ERROR,
                reason_text=reason,
                was_authenticated=False,
            ),
        )
        self._resolve(ConnectionState.CLOSED)

    def _handle_transport_message(self, epoch: int, raw: str | bytes) -> None:
        if epoch != self._epoch:
            return
        try:
            message = self._codec.decode(raw)
        except MessageDecodeError as e:
            logger.warning(
                "%s ✗ Undecodable message",
                self.lp,
                extra={"session_id": self.session_id, "reason": e.reason, "preview": e.data_preview},
            )
            self._report_error("parse", e)
            return

        self.metrics.record_message_received()

        is_pong, seq = self._codec.pong_seq(message)
        if is_pong:
            self.heartbeat.handle_pong(seq)
            return

        if self._state is ConnectionState.AUTHENTICATING:
            outcome, reason = self._codec.auth_outcome(message)
            if outcome is AuthOutcome.REJECT:
                self._handle_auth_failure(reason, timed_out=False)
                return
            if outcome is AuthOutcome.ACK:
                self._handle_auth_success()
                if self._epoch != epoch:
                    return

        self._emit(LinkEvent.MESSAGE, MessageEvent(data=message, raw=raw))

    def _handle_transport_closed(self, epoch: int, code: int | None, reason: str, error: BaseException | None) -> None:
        if epoch != self._epoch:
            return
        self._transport = None
        disconnect_reason = (
            DisconnectReason.NORMAL if error is None and code == WS_NORMAL_CLOSURE else DisconnectReason.ERROR
        )
        self._handle_link_lost(disconnect_reason, code, reason, error)

    def _handle_heartbeat_timeout(self) -> None:
        if self._state is not ConnectionState.READY:
            return
        self._handle_link_lost(DisconnectReason.TIMEOUT, None, "heartbeat timeout", None)

    def _handle_link_lost(
        self,
        reason: DisconnectReason,
        code: int | None,
        reason_text: str,
        error: BaseException | None,
    ) -> None:
        """Shared path for an established link going away unexpectedly."""
        previous = self._state
        was_authenticated = self._authenticated
        logger.warning(
            "%s ✗ Connection lost",
            self.lp,
            extra={
                "session_id": self.session_id,
                "state": previous.value,
                "reason": reason.value,
                "code": code,
                "reason_text": reason_text,
            },
        )

        self._invalidate_attempt()
        epoch = self._epoch
        self._authenticated = False
        self._detach_transport(WS_NORMAL_CLOSURE, reason_text or reason.value)
        self.metrics.record_disconnect()

        if was_authenticated:
            self._emit(LinkEvent.AUTH_CHANGE, AuthChangeEvent(is_authenticated=False))
        if error is not None:
            self._report_error("connection", error)
        elif reason is DisconnectReason.TIMEOUT:
            self._report_error("connection", TransportError(reason_text))
        self._emit(
            LinkEvent.DISCONNECTED,
            DisconnectedEvent(
                reason=reason,
                code=code,
                reason_text=reason_text,
                was_authenticated=was_authenticated,
            ),
        )

        if epoch != self._epoch or self._manual_close:
            return
        self._reconnect_or_close()

    def _send_ping(self, seq: int) -> bool:
        transport = self._transport
        if transport is None or self._state is not ConnectionState.READY:
            return False
        try:
            transport.send(self._codec.encode_ping(seq))
        except TransportSendError:
            return False
        return True

    def _set_state(self, new_state: ConnectionState) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        logger.debug(
            "%s State %s -> %s",
            self.lp,
            previous.value,
            new_state.value,
            extra={"session_id": self.session_id, "from": previous.value, "to": new_state.value},
        )
        registry.record_connection_state(self.session_id, new_state.value)
        self._emit(LinkEvent.STATE_CHANGE, StateChangeEvent(previous=previous, current=new_state))

    def _invalidate_attempt(self) -> None:
        """Make every callback of the current attempt stale and stop its timers."""
        self._epoch += 1
        self._draining = False
        self._connect_timer.cancel()
        self._auth_timer.cancel()
        self.heartbeat.stop()
        if self._open_task is not None and not self._open_task.done() and self._open_task is not asyncio.current_task():
            self._open_task.cancel()
        self._open_task = None

    def _detach_transport(self, code: int, reason: str) -> None:
        transport = self._transport
        self._transport = None
        if transport is not None:
            self._spawn(self._close_quietly(transport, code, reason), name=f"link-close:{self.session_id}")

    async def _close_quietly(self, transport: Transport, code: int, reason: str) -> None:
        try:
            await transport.close(code, reason)
        except Exception:
            logger.exception("%s Transport close failed", self.lp, extra={"session_id": self.session_id})

    def _report_error(self, kind: ErrorKind, error: BaseException) -> None:
        self.metrics.record_error(kind)
        self._emit(LinkEvent.ERROR, ErrorEvent(kind=kind, message=str(error), error=error))

    def _emit(self, event: LinkEvent, payload: Any) -> None:
        failures = self.events.emit(event, payload)
        for _ in range(failures):
            self.metrics.record_error("listener")

    def _notify_rejected(self, entry: QueuedCommand, error: Exception) -> None:
        if entry.on_rejected is None:
            return
        try:
            entry.on_rejected(error)
        except Exception:
            logger.exception("%s on_rejected callback failed", self.lp, extra={"session_id": self.session_id})

    def _pending_future(self) -> asyncio.Future[ConnectionState]:
        if self._pending is None or self._pending.done():
            self._pending = asyncio.get_running_loop().create_future()
        return self._pending

    def _resolve(self, state: ConnectionState) -> None:
        future = self._pending
        self._pending = None
        if future is not None and not future.done():
            future.set_result(state)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        async def _run() -> Any:
            with correlation_context(self.session_id):
                return await coro

        task = asyncio.create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "%s Background task failed",
                self.lp,
                extra={"session_id": self.session_id, "task": task.get_name(), "error": str(exc)},
            )

    def __repr__(self) -> str:
        return f"ConnectionCore(session_id={self.session_id!r}, state={self._state.value}, url={self.config.url!r})"
