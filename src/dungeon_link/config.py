"""Connection configuration.

LinkConfig is immutable for the lifetime of a ConnectionCore. Every option
has a default, so LinkConfig() is valid on its own; the endpoint URL just
has to be filled in before connect().
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dungeon_link.logging_abstraction import get_logger

logger = get_logger(__name__)


def _millis(default: float, camel_name: str) -> Any:
    """Non-negative millisecond field that also accepts its unit-less camelCase name."""
    return Field(default=default, ge=0, validation_alias=AliasChoices(camel_name, f"{camel_name}Ms"))


class LinkConfig(BaseModel):
    """Options for one client session.

    Field names are snake_case; the camelCase names (autoReconnect,
    maxReconnectAttempts, ...) are accepted as aliases. Durations are in
    milliseconds.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel, extra="forbid")

    url: str = ""
    auto_reconnect: bool = True
    max_reconnect_attempts: int = Field(default=10, ge=0)
    initial_reconnect_delay_ms: float = _millis(1000, "initialReconnectDelay")
    max_reconnect_delay_ms: float = _millis(30000, "maxReconnectDelay")
    reconnect_delay_multiplier: float = Field(default=1.5, ge=1.0)
    reconnect_jitter: float = Field(default=0.0, ge=0.0, le=1.0)
    connection_timeout_ms: float = _millis(10000, "connectionTimeout")
    heartbeat_interval_ms: float = _millis(0, "heartbeatInterval")  # 0 disables the heartbeat
    heartbeat_timeout_ms: float = _millis(10000, "heartbeatTimeout")
    max_queue_size: int = Field(default=100, ge=1)
    latency_window: int = Field(default=10, ge=1)
    debug_logging: bool = False

    auth_token: str | None = None
    require_auth: bool = False
    auth_timeout_ms: float = _millis(10000, "authTimeout")

    session_name: str = ""

    @property
    def has_auth(self) -> bool:
        """Whether the link stops in Connected and authenticates before Ready."""
        return self.auth_token is not None or self.require_auth

    def with_url(self, url: str) -> LinkConfig:
        return self.model_copy(update={"url": url})


def load_config(path: str | Path, **overrides: Any) -> LinkConfig:
    """Load a LinkConfig from a YAML mapping.

    Args:
        path: YAML file path. Keys may use the Python or camelCase names
        **overrides: Values that take precedence over the file

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file does not hold a mapping
        pydantic.ValidationError: If a value is invalid

    """
    config_path = Path(path)
    logger.debug("Loading link config", extra={"path": str(config_path)})

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except Exception:
        logger.exception("Failed to read config file", extra={"path": str(config_path)})
        raise

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"{config_path}: expected a mapping, got {type(data).__name__}"
        raise ValueError(msg)

    config = LinkConfig.model_validate(data)
    if overrides:
        # File keys may be camelCase aliases; merge on field names
        config = LinkConfig.model_validate({**config.model_dump(), **overrides})
    logger.info("✓ Loaded link config", extra={"path": str(config_path), "url": config.url})
    return config
