"""Wire protocol: command models, message codec and protocol errors."""

from .codec import (
    AuthOutcome,
    AuthResultMessage,
    ErrorMessage,
    GenericMessage,
    JsonMessageCodec,
    MessageCodec,
    PongMessage,
    ServerMessage,
    UpdateMessage,
)
from .commands import (
    Command,
    CustomCommand,
    ItemCommand,
    LoginCommand,
    MoveCommand,
    TargetCommand,
    WaitCommand,
    move_by,
    move_to,
    parse_command,
)
from .exceptions import CommandEncodeError, LinkProtocolError, MessageDecodeError

__all__ = [
    "AuthOutcome",
    "AuthResultMessage",
    "Command",
    "CommandEncodeError",
    "CustomCommand",
    "ErrorMessage",
    "GenericMessage",
    "ItemCommand",
    "JsonMessageCodec",
    "LinkProtocolError",
    "LoginCommand",
    "MessageCodec",
    "MessageDecodeError",
    "MoveCommand",
    "PongMessage",
    "ServerMessage",
    "TargetCommand",
    "UpdateMessage",
    "WaitCommand",
    "move_by",
    "move_to",
    "parse_command",
]
