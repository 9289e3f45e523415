"""Exception types for dungeon-link protocol errors.

Every error raised by the package derives from LinkProtocolError, so callers
can catch the whole family at once while still handling specific failures.
"""

from __future__ import annotations


class LinkProtocolError(Exception):
    """Base exception for all dungeon-link errors."""


class MessageDecodeError(LinkProtocolError):
    """Inbound frame cannot be decoded into a server message.

    Attributes:
        reason: Specific failure reason (e.g., "invalid_json", "not_an_object")
        data_preview: First 64 characters of the frame

    """

    def __init__(self, reason: str, data: str | bytes = "") -> None:
        self.reason = reason
        self.data_preview = data[:64] if data else ""
        super().__init__(f"Message decode failed: {reason}")


class CommandEncodeError(LinkProtocolError):
    """Outbound command cannot be encoded for the wire.

    Attributes:
        reason: Specific failure reason

    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Command encode failed: {reason}")
