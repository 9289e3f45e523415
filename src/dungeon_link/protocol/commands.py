"""Client-to-server command models.

Commands are a closed set of tagged variants discriminated by ``action``.
Each model renders its own wire mapping with ``to_wire()``; the connection
core treats them as opaque values and hands them to a MessageCodec.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from dungeon_link.protocol.exceptions import CommandEncodeError

TargetAction = Literal["ATTACK", "TALK", "INTERACT"]
ItemAction = Literal["PICKUP", "DROP", "USE", "EQUIP", "UNEQUIP"]


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel, extra="forbid")

    action: str

    def payload(self) -> dict[str, Any]:
        """Wire payload: every field except action, camelCase keys, unset optionals dropped."""
        return self.model_dump(by_alias=True, exclude={"action"}, exclude_none=True)

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "payload": self.payload()}


class LoginCommand(_Command):
    """Authenticate the session. The token travels at the top level, not in a payload."""

    action: Literal["LOGIN"] = "LOGIN"
    token: str = Field(min_length=1)

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "token": self.token}

    def __repr__(self) -> str:
        return "LoginCommand(token=***)"


class MoveCommand(_Command):
    """Move by a delta (dx, dy) or to an absolute position (x, y), never both."""

    action: Literal["MOVE"] = "MOVE"
    dx: int | None = None
    dy: int | None = None
    x: int | None = None
    y: int | None = None

    @model_validator(mode="after")
    def _delta_or_position(self) -> MoveCommand:
        has_delta = self.dx is not None or self.dy is not None
        has_position = self.x is not None or self.y is not None
        if has_delta == has_position:
            msg = "MOVE needs exactly one of a delta (dx, dy) or a position (x, y)"
            raise ValueError(msg)
        if has_position and (self.x is None or self.y is None):
            msg = "MOVE to a position needs both x and y"
            raise ValueError(msg)
        return self


def move_by(dx: int, dy: int) -> MoveCommand:
    return MoveCommand(dx=dx, dy=dy)


def move_to(x: int, y: int) -> MoveCommand:
    return MoveCommand(x=x, y=y)


class TargetCommand(_Command):
    """Act on another entity."""

    action: TargetAction
    target_id: str = Field(min_length=1)


class WaitCommand(_Command):
    action: Literal["WAIT"] = "WAIT"


class ItemCommand(_Command):
    """Pick up, drop, use, equip or unequip an item by id."""

    action: ItemAction
    item_id: str = Field(min_length=1)
    count: int | None = Field(default=None, ge=1)
    target_id: str | None = None


class CustomCommand(_Command):
    """Free-form payload passed through untouched."""

    action: Literal["CUSTOM"] = "CUSTOM"
    payload_data: dict[str, Any] = Field(default_factory=dict, alias="payload")

    def payload(self) -> dict[str, Any]:
        return dict(self.payload_data)


Command = Annotated[
    LoginCommand | MoveCommand | TargetCommand | WaitCommand | ItemCommand | CustomCommand,
    Field(discriminator="action"),
]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(data: Mapping[str, Any]) -> Command:
    """Build a command from its wire mapping.

    Accepts ``{"action": ..., "payload": {...}}`` (``token`` at top level for
    LOGIN) as well as flat mappings with the fields next to ``action``.

    Raises:
        CommandEncodeError: If the mapping is not a valid command

    """
    if not isinstance(data, Mapping):
        msg = f"command must be a mapping, got {type(data).__name__}"
        raise CommandEncodeError(msg)

    action = data.get("action")
    if not isinstance(action, str):
        msg = "missing 'action'"
        raise CommandEncodeError(msg)
    action = action.upper()

    fields: dict[str, Any] = {k: v for k, v in data.items() if k not in ("action", "payload")}
    payload = data.get("payload")
    if action == "CUSTOM":
        fields["payload"] = payload if payload is not None else {}
    elif isinstance(payload, Mapping):
        fields.update(payload)
    elif payload is not None:
        msg = f"{action}: payload must be a mapping"
        raise CommandEncodeError(msg)

    try:
        return _command_adapter.validate_python({"action": action, **fields})
    except ValidationError as e:
        msg = f"invalid {action} command: {e.error_count()} validation error(s): {e.errors()[0]['msg']}"
        raise CommandEncodeError(msg) from e
