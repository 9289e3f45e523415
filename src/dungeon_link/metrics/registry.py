"""Prometheus metrics registry for dungeon-link sessions."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

CONNECTION_STATES: Final = (
    "idle",
    "connecting",
    "connected",
    "authenticating",
    "ready",
    "reconnecting",
    "closed",
)

# Traffic metrics
dlink_messages_sent_total: Final = Counter(  # type: ignore[assignment]
    "dlink_messages_sent_total",
    "Total commands handed to the transport",
    ["session_id"],
)

dlink_messages_received_total: Final = Counter(  # type: ignore[assignment]
    "dlink_messages_received_total",
    "Total messages received from the server",
    ["session_id"],
)

dlink_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "dlink_latency_seconds",
    "Heartbeat round-trip latency in seconds",
    ["session_id"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

dlink_errors_total: Final = Counter(  # type: ignore[assignment]
    "dlink_errors_total",
    "Total errors reported by the connection core",
    ["session_id", "kind"],
)

# Connection metrics
dlink_connection_state: Final = Gauge(  # type: ignore[assignment]
    "dlink_connection_state",
    "Current connection state",
    ["session_id", "state"],
)

dlink_reconnect_attempts_total: Final = Counter(  # type: ignore[assignment]
    "dlink_reconnect_attempts_total",
    "Total reconnection attempts scheduled",
    ["session_id"],
)

dlink_reconnect_success_total: Final = Counter(  # type: ignore[assignment]
    "dlink_reconnect_success_total",
    "Total reconnections that reached Ready",
    ["session_id"],
)

dlink_heartbeat_total: Final = Counter(  # type: ignore[assignment]
    "dlink_heartbeat_total",
    "Total heartbeat events",
    ["session_id", "outcome"],
)

# Queue metrics
dlink_queue_size: Final = Gauge(  # type: ignore[assignment]
    "dlink_queue_size",
    "Current outbound queue size",
    ["session_id"],
)

dlink_queue_evictions_total: Final = Counter(  # type: ignore[assignment]
    "dlink_queue_evictions_total",
    "Total queued commands evicted on overflow",
    ["session_id"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_message_sent(session_id: str) -> None:
    """Record a command handed to the transport."""
    dlink_messages_sent_total.labels(session_id=session_id).inc()  # type: ignore[no-untyped-call]


def record_message_received(session_id: str) -> None:
    """Record a received message."""
    dlink_messages_received_total.labels(session_id=session_id).inc()  # type: ignore[no-untyped-call]


def record_latency(session_id: str, latency_seconds: float) -> None:
    """Record heartbeat round-trip latency."""
    dlink_latency_seconds.labels(session_id=session_id).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_error(session_id: str, kind: str) -> None:
    """Record an error by kind."""
    dlink_errors_total.labels(session_id=session_id, kind=kind).inc()  # type: ignore[no-untyped-call]


def record_connection_state(session_id: str, state: str) -> None:
    """Record connection state change."""
    # Set gauge to 1 for current state, 0 for all others
    for s in CONNECTION_STATES:
        value = 1 if s == state else 0
        dlink_connection_state.labels(session_id=session_id, state=s).set(value)  # type: ignore[no-untyped-call]


def record_reconnect_attempt(session_id: str) -> None:
    """Record a scheduled reconnection attempt."""
    dlink_reconnect_attempts_total.labels(session_id=session_id).inc()  # type: ignore[no-untyped-call]


def record_reconnect_success(session_id: str) -> None:
    """Record a reconnection that reached Ready."""
    dlink_reconnect_success_total.labels(session_id=session_id).inc()  # type: ignore[no-untyped-call]


def record_heartbeat(session_id: str, outcome: str) -> None:
    """Record a heartbeat event (ping, pong, timeout, send_failed)."""
    dlink_heartbeat_total.labels(session_id=session_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_queue_size(session_id: str, size: int) -> None:
    """Record outbound queue size."""
    dlink_queue_size.labels(session_id=session_id).set(size)  # type: ignore[no-untyped-call]


def record_queue_eviction(session_id: str) -> None:
    """Record a queued command evicted on overflow."""
    dlink_queue_evictions_total.labels(session_id=session_id).inc()  # type: ignore[no-untyped-call]
