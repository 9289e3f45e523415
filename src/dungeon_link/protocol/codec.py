"""JSON wire codec for dungeon-link.

Outbound commands are JSON objects ``{"action": ..., "payload": {...}}``.
Inbound frames are JSON objects tagged by ``type``:

    INIT / UPDATE   full game state for the current tick
    ERROR           server-side error, also the auth reject during login
    AUTH_OK         explicit auth acknowledgement
    AUTH_FAILED     explicit auth rejection
    PONG            heartbeat reply, optionally echoing the ping ``seq``

Unknown types decode to GenericMessage so newer servers do not break older
clients.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from dungeon_link.const import PING_MESSAGE_TYPE, PONG_MESSAGE_TYPE
from dungeon_link.instrumentation import timed
from dungeon_link.logging_abstraction import get_logger
from dungeon_link.protocol.commands import LoginCommand
from dungeon_link.protocol.exceptions import CommandEncodeError, MessageDecodeError

logger = get_logger(__name__)


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel, extra="ignore")


class GridMeta(_Message):
    w: int
    h: int


class LogEntry(_Message):
    id: str
    text: str
    type: str = "INFO"
    timestamp: float = 0


class UpdateMessage(_Message):
    """Game state for one tick. Map tiles and entity views are left as raw mappings."""

    type: Literal["INIT", "UPDATE"]
    tick: int = 0
    my_entity_id: str = ""
    active_entity_id: str = ""
    grid: GridMeta | None = None
    map: list[dict[str, Any]] = Field(default_factory=list)
    entities: list[dict[str, Any]] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)


class ErrorMessage(_Message):
    type: Literal["ERROR"] = "ERROR"
    error: str = ""
    code: str | None = None


class AuthResultMessage(_Message):
    type: Literal["AUTH_OK", "AUTH_FAILED"]
    reason: str = ""


class PongMessage(_Message):
    type: Literal["PONG"] = "PONG"
    seq: int | None = None


class GenericMessage(_Message):
    """Any frame whose type this client does not model."""

    type: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


ServerMessage = UpdateMessage | ErrorMessage | AuthResultMessage | PongMessage | GenericMessage

_MESSAGE_TYPES: dict[str, type[_Message]] = {
    "INIT": UpdateMessage,
    "UPDATE": UpdateMessage,
    "ERROR": ErrorMessage,
    "AUTH_OK": AuthResultMessage,
    "AUTH_FAILED": AuthResultMessage,
    PONG_MESSAGE_TYPE: PongMessage,
}


class AuthOutcome(Enum):
    """How a message received while authenticating affects the handshake."""

    ACK = "ack"
    REJECT = "reject"
    NONE = "none"


class MessageCodec(Protocol):
    """Encoding collaborator used by ConnectionCore."""

    def encode(self, command: Any) -> str: ...

    def decode(self, raw: str | bytes) -> Any: ...

    def encode_ping(self, seq: int) -> str: ...

    def login_command(self, token: str) -> Any: ...

    def pong_seq(self, message: Any) -> tuple[bool, int | None]: ...

    def auth_outcome(self, message: Any) -> tuple[AuthOutcome, str]: ...


class JsonMessageCodec:
    """MessageCodec for the JSON protocol."""

    @timed("codec_encode")
    def encode(self, command: Any) -> str:
        """Serialize a command model or a raw mapping.

        Raises:
            CommandEncodeError: If the command is not a known model or mapping,
                or cannot be represented as JSON

        """
        if isinstance(command, BaseModel) and hasattr(command, "to_wire"):
            wire = command.to_wire()
        elif isinstance(command, Mapping):
            if "action" not in command:
                msg = "mapping has no 'action'"
                raise CommandEncodeError(msg)
            wire = dict(command)
        else:
            msg = f"unsupported command type {type(command).__name__}"
            raise CommandEncodeError(msg)

        try:
            return json.dumps(wire, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CommandEncodeError(str(e)) from e

    @timed("codec_decode")
    def decode(self, raw: str | bytes) -> ServerMessage:
        """Parse one inbound frame.

        Raises:
            MessageDecodeError: If the frame is not a JSON object or a known
                type fails validation

        """
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MessageDecodeError("invalid_json", raw) from e

        if not isinstance(obj, dict):
            raise MessageDecodeError("not_an_object", raw)

        msg_type = obj.get("type")
        model = _MESSAGE_TYPES.get(msg_type) if isinstance(msg_type, str) else None
        if model is None:
            logger.debug("Unknown message type", extra={"type": msg_type})
            return GenericMessage(type=msg_type if isinstance(msg_type, str) else "", data=obj)

        try:
            return model.model_validate(obj)  # type: ignore[return-value]
        except ValidationError as e:
            raise MessageDecodeError(f"invalid_{msg_type.lower()}", raw) from e

    def encode_ping(self, seq: int) -> str:
        return json.dumps({"type": PING_MESSAGE_TYPE, "seq": seq}, separators=(",", ":"))

    def login_command(self, token: str) -> LoginCommand:
        return LoginCommand(token=token)

    def pong_seq(self, message: Any) -> tuple[bool, int | None]:
        """Return (is_pong, echoed seq)."""
        if isinstance(message, PongMessage):
            return True, message.seq
        return False, None

    def auth_outcome(self, message: Any) -> tuple[AuthOutcome, str]:
        """Classify a message received while authenticating.

        Returns:
            (outcome, reason) where reason is the server's text for a reject

        """
        if isinstance(message, UpdateMessage) and message.type == "INIT":
            return AuthOutcome.ACK, ""
        if isinstance(message, AuthResultMessage):
            if message.type == "AUTH_OK":
                return AuthOutcome.ACK, ""
            return AuthOutcome.REJECT, message.reason or "authentication rejected"
        if isinstance(message, ErrorMessage):
            return AuthOutcome.REJECT, message.error or "authentication rejected"
        return AuthOutcome.NONE, ""
