"""Core data types for the dungeon-link connection layer.

This module defines the connection state machine states and the dataclasses
used to track queued commands, send results and reconnection progress.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(Enum):
    """Connection state machine states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"  # transport open, not authenticated
    AUTHENTICATING = "authenticating"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class DisconnectReason(Enum):
    """Why an established link went away."""

    NORMAL = "normal"
    ERROR = "error"
    TIMEOUT = "timeout"


class SendStatus(Enum):
    """Outcome of ConnectionCore.send()."""

    SENT = "sent"
    QUEUED = "queued"
    REJECTED = "rejected"


@dataclass
class QueuedCommand:
    """Command waiting for the link to become Ready.

    Attributes:
        command: Abstract command value, encoded only when transmitted
        enqueued_at: Timestamp when the command was first queued (time.time())
        attempt_count: Number of failed transmission attempts so far
        on_accepted: Called once the command has been handed to the transport
        on_rejected: Called with the reason if the command is dropped

    """

    command: Any
    enqueued_at: float = field(default_factory=time.time)
    attempt_count: int = 0
    on_accepted: Callable[[], None] | None = None
    on_rejected: Callable[[Exception], None] | None = None


@dataclass(frozen=True)
class SendResult:
    """Result of ConnectionCore.send().

    Attributes:
        status: SENT, QUEUED or REJECTED
        timestamp: When the decision was made (time.time())
        error: Rejection reason when status is REJECTED

    """

    status: SendStatus
    timestamp: float = field(default_factory=time.time)
    error: Exception | None = None

    @property
    def sent(self) -> bool:
        return self.status is SendStatus.SENT

    @property
    def queued(self) -> bool:
        return self.status is SendStatus.QUEUED


@dataclass(frozen=True)
class ReconnectionState:
    """Snapshot of ReconnectScheduler progress.

    Attributes:
        attempts: Attempts made since the last successful connection
        max_attempts: Attempt budget
        current_delay_ms: Delay the next attempt will use (before capping)
        is_scheduled: Whether a retry timer is currently armed

    """

    attempts: int
    max_attempts: int
    current_delay_ms: float
    is_scheduled: bool
