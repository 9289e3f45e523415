"""Server directory data models."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field, computed_field

from dungeon_link.const import DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT


class ServerEndpoint(BaseModel):
    """A known game server."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    secure: bool = False
    path: str = "/ws"
    is_default: bool = False
    added_at: float = Field(default_factory=time.time)

    @computed_field
    @property
    def url(self) -> str:
        """Websocket URL built from scheme, host, port and path."""
        scheme = "wss" if self.secure else "ws"
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"{scheme}://{self.host}:{self.port}{path}"


class ProbeResult(BaseModel):
    """Outcome of a one-shot reachability probe.

    Attributes:
        endpoint_id: Probed endpoint
        reachable: Whether a websocket could be opened
        latency_ms: Time to open the websocket, None when unreachable
        checked_at: When the probe finished (epoch seconds)
        error: Failure description when unreachable

    """

    model_config = ConfigDict(frozen=True)

    endpoint_id: str
    reachable: bool
    latency_ms: float | None = None
    checked_at: float = Field(default_factory=time.time)
    error: str | None = None

    def is_fresh(self, max_age_seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.checked_at < max_age_seconds


def default_endpoints() -> list[ServerEndpoint]:
    return [
        ServerEndpoint(
            id="local",
            name="Local Server",
            host=DEFAULT_SERVER_HOST,
            port=DEFAULT_SERVER_PORT,
            is_default=True,
        ),
    ]
