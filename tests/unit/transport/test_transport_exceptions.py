"""Unit tests for connection and transport exceptions."""

from __future__ import annotations

from dungeon_link.protocol.exceptions import CommandEncodeError, LinkProtocolError, MessageDecodeError
from dungeon_link.transport.exceptions import (
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

# Test constants
EXPECTED_ATTEMPTS = 10
LONG_FRAME = "x" * 200


class TestExceptionHierarchy:
    """Tests for exception inheritance."""

    def test_all_exceptions_inherit_from_link_protocol_error(self):
        """Test that every package exception derives from LinkProtocolError."""
        for exc_type in (
            LinkConnectionError,
            TransportError,
            AuthenticationError,
            QueueOverflowError,
            QueueClearedError,
            ReconnectExhaustedError,
            MessageDecodeError,
            CommandEncodeError,
        ):
            assert issubclass(exc_type, LinkProtocolError)

    def test_state_errors_are_connection_errors(self):
        """Test the connect()/send() state errors share LinkConnectionError."""
        assert issubclass(AlreadyConnectingError, LinkConnectionError)
        assert issubclass(AlreadyReadyError, LinkConnectionError)
        assert issubclass(NotConnectedError, LinkConnectionError)

    def test_transport_errors(self):
        """Test open and send failures are TransportErrors."""
        assert issubclass(TransportOpenError, TransportError)
        assert issubclass(TransportSendError, TransportError)


class TestLinkConnectionError:
    """Tests for LinkConnectionError and its subclasses."""

    def test_reason_only(self):
        """Test LinkConnectionError with reason only."""
        error = LinkConnectionError(reason="no endpoint url configured")
        assert error.reason == "no endpoint url configured"
        assert error.state == "unknown"
        assert "no endpoint url configured" in str(error)

    def test_reason_and_state(self):
        """Test LinkConnectionError with reason and state."""
        error = LinkConnectionError(reason="bad state", state="reconnecting")
        assert "reconnecting" in str(error)

    def test_already_connecting(self):
        """Test AlreadyConnectingError keeps the state."""
        error = AlreadyConnectingError("authenticating")
        assert error.state == "authenticating"
        assert "in progress" in str(error)

    def test_already_ready(self):
        """Test AlreadyReadyError reports the ready state."""
        assert AlreadyReadyError().state == "ready"

    def test_not_connected(self):
        """Test NotConnectedError keeps the state."""
        assert NotConnectedError("closed").state == "closed"


class TestOtherErrors:
    """Tests for the remaining error types."""

    def test_transport_open_error(self):
        """Test TransportOpenError carries url and reason."""
        error = TransportOpenError("ws://h:1/ws", "refused")
        assert error.url == "ws://h:1/ws"
        assert "refused" in str(error)

    def test_authentication_error(self):
        """Test AuthenticationError reason and timeout flag."""
        assert AuthenticationError("bad token").timed_out is False
        error = AuthenticationError("no response", timed_out=True)
        assert error.timed_out is True
        assert "no response" in str(error)

    def test_reconnect_exhausted(self):
        """Test ReconnectExhaustedError message includes the count."""
        error = ReconnectExhaustedError(EXPECTED_ATTEMPTS)
        assert error.attempts == EXPECTED_ATTEMPTS
        assert str(error) == "Maximum reconnection attempts exceeded (10)"

    def test_queue_errors(self):
        """Test the queue rejection errors keep their details."""
        assert QueueOverflowError(5).max_size == 5
        assert QueueClearedError().reason == "queue cleared"

    def test_decode_error_truncates_preview(self):
        """Test MessageDecodeError keeps only the first 64 characters."""
        error = MessageDecodeError("invalid_json", LONG_FRAME)
        assert error.reason == "invalid_json"
        assert len(error.data_preview) == 64
