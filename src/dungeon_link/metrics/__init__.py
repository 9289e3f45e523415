"""Metrics module."""

from .collector import MetricsCollector, MetricsSnapshot
from .registry import (
    record_connection_state,
    record_error,
    record_heartbeat,
    record_queue_eviction,
    start_metrics_server,
)

__all__ = [
    "MetricsCollector",
    "MetricsSnapshot",
    "record_connection_state",
    "record_error",
    "record_heartbeat",
    "record_queue_eviction",
    "start_metrics_server",
]
