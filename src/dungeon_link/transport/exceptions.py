"""Exception types for connection, transport, authentication and queue errors."""

from __future__ import annotations

from dungeon_link.protocol.exceptions import LinkProtocolError


class LinkConnectionError(LinkProtocolError):
    """Operation is not valid in the current connection state.

    Attributes:
        reason: Specific failure reason
        state: Connection state when the error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Connection error: {reason} (state: {state})")


class AlreadyConnectingError(LinkConnectionError):
    """connect() called while a connection attempt or handshake is in flight."""

    def __init__(self, state: str) -> None:
        super().__init__("connection attempt already in progress", state=state)


class AlreadyReadyError(LinkConnectionError):
    """connect() called while the link is already Ready."""

    def __init__(self) -> None:
        super().__init__("already connected and ready", state="ready")


class NotConnectedError(LinkConnectionError):
    """Command rejected because the link is not Ready and queuing was declined."""

    def __init__(self, state: str) -> None:
        super().__init__("not connected to server", state=state)


class TransportError(LinkProtocolError):
    """Failure of the underlying channel (refused, dropped, write failed).

    Always recovered by the connection state machine, never raised from send().
    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Transport error: {reason}")


class TransportOpenError(TransportError):
    """The channel could not be opened."""

    def __init__(self, url: str, reason: str) -> None:
        self.url: str = url
        super().__init__(f"cannot open {url}: {reason}")


class TransportSendError(TransportError):
    """The channel refused an outbound frame."""


class AuthenticationError(LinkProtocolError):
    """Server rejected the auth token, or did not answer in time.

    Attributes:
        reason: Server-provided or local reason
        timed_out: True when no answer arrived before the auth timeout

    """

    def __init__(self, reason: str, timed_out: bool = False) -> None:
        self.reason: str = reason
        self.timed_out: bool = timed_out
        super().__init__(f"Authentication failed: {reason}")


class QueueOverflowError(LinkProtocolError):
    """Queued command evicted to make room for a newer one."""

    def __init__(self, max_size: int) -> None:
        self.max_size: int = max_size
        super().__init__(f"Command dropped: outbound queue overflow (max {max_size})")


class QueueClearedError(LinkProtocolError):
    """Queued command discarded without being sent."""

    def __init__(self, reason: str = "queue cleared") -> None:
        self.reason: str = reason
        super().__init__(f"Command dropped: {reason}")


class ReconnectExhaustedError(LinkProtocolError):
    """Reconnection budget used up; the link is Closed."""

    def __init__(self, attempts: int) -> None:
        self.attempts: int = attempts
        super().__init__(f"Maximum reconnection attempts exceeded ({attempts})")
