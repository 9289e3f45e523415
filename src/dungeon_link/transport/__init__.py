"""Connection layer: state machine, transport, queue, heartbeat and backoff.

Only the dependency-free modules are re-exported here; import ConnectionCore
from dungeon_link.transport.connection_core.
"""

from .exceptions import (
    AlreadyConnectingError,
    AlreadyReadyError,
    AuthenticationError,
    LinkConnectionError,
    NotConnectedError,
    QueueClearedError,
    QueueOverflowError,
    ReconnectExhaustedError,
    TransportError,
    TransportOpenError,
    TransportSendError,
)
from .types import (
    ConnectionState,
    DisconnectReason,
    QueuedCommand,
    ReconnectionState,
    SendResult,
    SendStatus,
)

__all__ = [
    "AlreadyConnectingError",
    "AlreadyReadyError",
    "AuthenticationError",
    "ConnectionState",
    "DisconnectReason",
    "LinkConnectionError",
    "NotConnectedError",
    "QueueClearedError",
    "QueueOverflowError",
    "QueuedCommand",
    "ReconnectExhaustedError",
    "ReconnectionState",
    "SendResult",
    "SendStatus",
    "TransportError",
    "TransportOpenError",
    "TransportSendError",
]
