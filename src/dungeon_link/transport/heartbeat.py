"""Heartbeat ping/pong liveness monitor.

The monitor only reports suspected death through its timeout callback. The
connection core decides what that means for the state machine.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics import registry
from dungeon_link.transport.timers import CallbackTimer

logger = get_logger(__name__)

SendPingFn = Callable[[int], bool]
OnTimeoutFn = Callable[[], None]
OnPongFn = Callable[[float], None]


class HeartbeatMonitor:
    """Sends a ping every interval and waits timeout_ms for the matching pong.

    The next ping is scheduled only after the pong for the previous one
    arrives, so at most one ping is outstanding. An interval of 0 disables the
    monitor entirely.
    """

    def __init__(self, interval_ms: float = 0, timeout_ms: float = 10000, session_id: str = "") -> None:
        self.interval_ms = interval_ms
        self.timeout_ms = timeout_ms
        self.session_id = session_id

        self._interval_timer = CallbackTimer("heartbeat-interval")
        self._timeout_timer = CallbackTimer("heartbeat-timeout")

        self._send_ping: SendPingFn | None = None
        self._on_timeout: OnTimeoutFn | None = None
        self._on_pong: OnPongFn | None = None

        self._running = False
        self._seq = 0
        self._last_ping_at: float | None = None

    @property
    def enabled(self) -> bool:
        return self.interval_ms > 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def awaiting_pong(self) -> bool:
        return self._timeout_timer.armed

    @property
    def last_seq(self) -> int:
        return self._seq

    def start(self, send_ping: SendPingFn, on_timeout: OnTimeoutFn, on_pong: OnPongFn | None = None) -> None:
        """Start pinging. Restarts cleanly if already running."""
        self.stop()

        if not self.enabled:
            logger.debug("Heartbeat disabled (interval = 0)", extra={"session_id": self.session_id})
            return

        self._send_ping = send_ping
        self._on_timeout = on_timeout
        self._on_pong = on_pong
        self._running = True
        self._interval_timer.arm(self.interval_ms / 1000.0, self._tick)

        logger.debug(
            "Heartbeat started",
            extra={"session_id": self.session_id, "interval_ms": self.interval_ms, "timeout_ms": self.timeout_ms},
        )

    def stop(self) -> None:
        """Cancel the interval and any outstanding timeout timer."""
        was_running = self._running
        self._interval_timer.cancel()
        self._timeout_timer.cancel()
        self._running = False
        self._send_ping = None
        self._on_timeout = None
        self._on_pong = None
        self._last_ping_at = None
        if was_running:
            logger.debug("Heartbeat stopped", extra={"session_id": self.session_id})

    def handle_pong(self, seq: int | None = None) -> float | None:
        """Record a pong.

        Args:
            seq: Sequence number echoed by the server, None if it sent none

        Returns:
            Round-trip latency in milliseconds, or None if the pong was ignored
        """
        if not self._running or not self._timeout_timer.armed:
            logger.debug("Stale pong ignored", extra={"session_id": self.session_id, "seq": seq})
            return None
        if seq is not None and seq != self._seq:
            logger.debug(
                "Pong for unexpected seq ignored",
                extra={"session_id": self.session_id, "seq": seq, "expected": self._seq},
            )
            return None

        self._timeout_timer.cancel()
        latency_ms = 0.0
        if self._last_ping_at is not None:
            latency_ms = (time.perf_counter() - self._last_ping_at) * 1000.0
        self._last_ping_at = None

        registry.record_heartbeat(self.session_id, "pong")
        logger.debug("Pong received", extra={"session_id": self.session_id, "latency_ms": round(latency_ms, 2)})

        on_pong = self._on_pong
        self._interval_timer.arm(self.interval_ms / 1000.0, self._tick)
        if on_pong is not None:
            on_pong(latency_ms)
        return latency_ms

    def update_config(self, interval_ms: float | None = None, timeout_ms: float | None = None) -> None:
        """Change timing. Takes effect on the next start()."""
        if interval_ms is not None:
            self.interval_ms = interval_ms
        if timeout_ms is not None:
            self.timeout_ms = timeout_ms
        logger.debug(
            "Heartbeat config updated",
            extra={"session_id": self.session_id, "interval_ms": self.interval_ms, "timeout_ms": self.timeout_ms},
        )

    def _tick(self) -> None:
        if not self._running or self._send_ping is None:
            return

        self._seq += 1
        self._last_ping_at = time.perf_counter()
        try:
            sent = self._send_ping(self._seq)
        except Exception as e:
            logger.warning(
                "✗ Heartbeat ping raised",
                extra={"session_id": self.session_id, "seq": self._seq, "error": str(e)},
            )
            sent = False

        if not sent:
            registry.record_heartbeat(self.session_id, "send_failed")
            self._last_ping_at = None
            self._interval_timer.arm(self.interval_ms / 1000.0, self._tick)
            return

        registry.record_heartbeat(self.session_id, "ping")
        self._timeout_timer.arm(self.timeout_ms / 1000.0, self._handle_timeout)

    def _handle_timeout(self) -> None:
        on_timeout = self._on_timeout
        logger.warning(
            "✗ Heartbeat timeout, connection may be dead",
            extra={"session_id": self.session_id, "seq": self._seq, "timeout_ms": self.timeout_ms},
        )
        registry.record_heartbeat(self.session_id, "timeout")
        self.stop()
        if on_timeout is not None:
            on_timeout()
