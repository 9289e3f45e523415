"""In-process connection metrics.

MetricsCollector keeps plain counters and a bounded window of latency
samples for one session, and mirrors each recorded fact to the Prometheus
registry. Recording never raises: a failure is logged and dropped so that
metrics can not affect connection behavior.
"""

from __future__ import annotations

import functools
import statistics
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import ParamSpec

from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics import registry

logger = get_logger(__name__)

P = ParamSpec("P")


def _never_raise(func: Callable[P, None]) -> Callable[P, None]:
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            logger.exception("Metrics recording failed", extra={"operation": func.__name__})

    return wrapper


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only view of a session's metrics.

    Timestamps are epoch seconds, latencies and delays are milliseconds.
    """

    connected_at: float | None
    disconnected_at: float | None
    messages_sent: int
    messages_received: int
    reconnect_attempts: int
    reconnect_successes: int
    errors: int
    current_reconnect_delay: float
    queue_size: int
    average_latency: float
    last_latency: float


class MetricsCollector:
    """Counters plus a capped sliding window of latency samples."""

    def __init__(self, window: int = 10, session_id: str = "") -> None:
        if window < 1:
            msg = f"window must be at least 1, got {window}"
            raise ValueError(msg)
        self.window = window
        self.session_id = session_id
        self._latencies: deque[float] = deque(maxlen=window)
        self.reset()

    @_never_raise
    def reset(self) -> None:
        """Zero every counter and drop all latency samples."""
        self.connected_at: float | None = None
        self.disconnected_at: float | None = None
        self.messages_sent = 0
        self.messages_received = 0
        self.reconnect_attempts = 0
        self.reconnect_successes = 0
        self.errors = 0
        self.last_latency = 0.0
        self.current_reconnect_delay = 0.0
        self.queue_size = 0
        self._latencies.clear()
        logger.debug("Metrics reset", extra={"session_id": self.session_id})

    @_never_raise
    def reset_reconnect_counters(self) -> None:
        self.reconnect_attempts = 0
        self.current_reconnect_delay = 0.0

    @_never_raise
    def record_connect(self) -> None:
        self.connected_at = time.time()

    @_never_raise
    def record_disconnect(self) -> None:
        self.disconnected_at = time.time()

    @_never_raise
    def record_message_sent(self) -> None:
        self.messages_sent += 1
        registry.record_message_sent(self.session_id)

    @_never_raise
    def record_message_received(self) -> None:
        self.messages_received += 1
        registry.record_message_received(self.session_id)

    @_never_raise
    def record_reconnect_attempt(self) -> None:
        self.reconnect_attempts += 1
        registry.record_reconnect_attempt(self.session_id)

    @_never_raise
    def record_reconnect_success(self) -> None:
        self.reconnect_successes += 1
        registry.record_reconnect_success(self.session_id)

    @_never_raise
    def record_error(self, kind: str = "connection") -> None:
        self.errors += 1
        registry.record_error(self.session_id, kind)

    @_never_raise
    def record_latency(self, latency_ms: float) -> None:
        """Add a round-trip sample; the oldest sample falls out of the window."""
        self.last_latency = latency_ms
        self._latencies.append(latency_ms)
        registry.record_latency(self.session_id, latency_ms / 1000.0)

    @_never_raise
    def set_reconnect_delay(self, delay_ms: float) -> None:
        self.current_reconnect_delay = delay_ms

    @_never_raise
    def set_queue_size(self, size: int) -> None:
        self.queue_size = size
        registry.record_queue_size(self.session_id, size)

    @property
    def latency_samples(self) -> list[float]:
        return list(self._latencies)

    @property
    def average_latency(self) -> float:
        """Mean of the current window, recomputed on every read."""
        if not self._latencies:
            return 0.0
        return statistics.fmean(self._latencies)

    def connection_duration(self) -> float | None:
        """Seconds since the last connect, up to the last disconnect if it came later."""
        if self.connected_at is None:
            return None
        end = time.time()
        if self.disconnected_at is not None and self.disconnected_at >= self.connected_at:
            end = self.disconnected_at
        return end - self.connected_at

    def snapshot(self, queue_size: int | None = None, current_reconnect_delay: float | None = None) -> MetricsSnapshot:
        """Build a snapshot, optionally overriding the live queue size and delay."""
        return MetricsSnapshot(
            connected_at=self.connected_at,
            disconnected_at=self.disconnected_at,
            messages_sent=self.messages_sent,
            messages_received=self.messages_received,
            reconnect_attempts=self.reconnect_attempts,
            reconnect_successes=self.reconnect_successes,
            errors=self.errors,
            current_reconnect_delay=(
                self.current_reconnect_delay if current_reconnect_delay is None else current_reconnect_delay
            ),
            queue_size=self.queue_size if queue_size is None else queue_size,
            average_latency=self.average_latency,
            last_latency=self.last_latency,
        )
