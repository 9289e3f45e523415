"""Server directory: CRUD over known endpoints plus a cached reachability probe.

A directory is an explicit object handed to GameSession. There is no
process-wide registry, so tests can use InMemoryServerDirectory and several
sessions never contend on shared state.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import ValidationError

from dungeon_link.const import SERVER_STATUS_CACHE_SECONDS
from dungeon_link.directory.models import ProbeResult, ServerEndpoint, default_endpoints
from dungeon_link.directory.probe import probe_endpoint
from dungeon_link.logging_abstraction import get_logger

logger = get_logger(__name__)

ProbeFn = Callable[[ServerEndpoint], Awaitable[ProbeResult]]

_IMMUTABLE_FIELDS = frozenset({"id", "added_at", "is_default"})


class ServerDirectory(Protocol):
    """Store of known endpoints consumed by GameSession."""

    @property
    def selected_id(self) -> str | None: ...

    def list_endpoints(self) -> list[ServerEndpoint]: ...

    def get(self, endpoint_id: str) -> ServerEndpoint | None: ...

    async def add(self, name: str, host: str, port: int, secure: bool = False, path: str = "/ws") -> ServerEndpoint: ...

    async def update(self, endpoint_id: str, **changes: Any) -> ServerEndpoint | None: ...

    async def remove(self, endpoint_id: str) -> bool: ...

    async def select(self, endpoint_id: str | None) -> None: ...

    async def probe(self, endpoint: ServerEndpoint, use_cache: bool = True) -> ProbeResult: ...

    def cached_status(self, endpoint_id: str) -> ProbeResult | None: ...


def _new_endpoint_id() -> str:
    return f"server_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class InMemoryServerDirectory:
    """ServerDirectory kept entirely in memory, seeded with the default endpoint."""

    lp: str = "ServerDirectory:"

    def __init__(
        self,
        endpoints: list[ServerEndpoint] | None = None,
        probe_fn: ProbeFn | None = None,
        cache_seconds: float = SERVER_STATUS_CACHE_SECONDS,
    ) -> None:
        seed = default_endpoints() if endpoints is None else endpoints
        self._endpoints: dict[str, ServerEndpoint] = {ep.id: ep for ep in seed}
        self._selected_id: str | None = None
        self._status: dict[str, ProbeResult] = {}
        self._probe_fn: ProbeFn = probe_fn or probe_endpoint
        self.cache_seconds = cache_seconds

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    def list_endpoints(self) -> list[ServerEndpoint]:
        return list(self._endpoints.values())

    def get(self, endpoint_id: str) -> ServerEndpoint | None:
        return self._endpoints.get(endpoint_id)

    def selected(self) -> ServerEndpoint | None:
        if self._selected_id is None:
            return None
        return self._endpoints.get(self._selected_id)

    async def add(self, name: str, host: str, port: int, secure: bool = False, path: str = "/ws") -> ServerEndpoint:
        endpoint = ServerEndpoint(id=_new_endpoint_id(), name=name, host=host, port=port, secure=secure, path=path)
        self._endpoints[endpoint.id] = endpoint
        logger.info("%s ✓ Endpoint added", self.lp, extra={"endpoint_id": endpoint.id, "url": endpoint.url})
        await self._persist()
        return endpoint

    async def update(self, endpoint_id: str, **changes: Any) -> ServerEndpoint | None:
        """Apply field changes. id, added_at and is_default can not be changed.

        Raises:
            ValueError: If a change names an immutable or unknown field, or a
                value is invalid

        """
        current = self._endpoints.get(endpoint_id)
        if current is None:
            return None
        blocked = _IMMUTABLE_FIELDS.intersection(changes)
        if blocked:
            msg = f"cannot change {', '.join(sorted(blocked))}"
            raise ValueError(msg)
        unknown = set(changes) - set(ServerEndpoint.model_fields)
        if unknown:
            msg = f"unknown endpoint fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        data = current.model_dump(exclude={"url"})
        data.update(changes)
        updated = ServerEndpoint.model_validate(data)
        self._endpoints[endpoint_id] = updated
        self._status.pop(endpoint_id, None)
        logger.info("%s ✓ Endpoint updated", self.lp, extra={"endpoint_id": endpoint_id, "fields": sorted(changes)})
        await self._persist()
        return updated

    async def remove(self, endpoint_id: str) -> bool:
        """Remove an endpoint. Default endpoints are never removed."""
        endpoint = self._endpoints.get(endpoint_id)
        if endpoint is None:
            return False
        if endpoint.is_default:
            logger.warning("%s Refusing to remove default endpoint", self.lp, extra={"endpoint_id": endpoint_id})
            return False
        del self._endpoints[endpoint_id]
        self._status.pop(endpoint_id, None)
        if self._selected_id == endpoint_id:
            self._selected_id = None
        logger.info("%s ✓ Endpoint removed", self.lp, extra={"endpoint_id": endpoint_id})
        await self._persist()
        return True

    async def select(self, endpoint_id: str | None) -> None:
        """Remember the endpoint to use by default; None clears the selection.

        Raises:
            KeyError: If endpoint_id is not known

        """
        if endpoint_id is not None and endpoint_id not in self._endpoints:
            raise KeyError(endpoint_id)
        self._selected_id = endpoint_id
        await self._persist()

    async def probe(self, endpoint: ServerEndpoint, use_cache: bool = True) -> ProbeResult:
        if use_cache:
            cached = self.cached_status(endpoint.id)
            if cached is not None:
                logger.debug("%s Using cached status", self.lp, extra={"endpoint_id": endpoint.id})
                return cached
        result = await self._probe_fn(endpoint)
        self._status[endpoint.id] = result
        return result

    async def probe_all(self, use_cache: bool = True) -> list[ProbeResult]:
        endpoints = self.list_endpoints()
        return list(await asyncio.gather(*(self.probe(ep, use_cache) for ep in endpoints)))

    def cached_status(self, endpoint_id: str) -> ProbeResult | None:
        """Last probe result if younger than the cache window."""
        result = self._status.get(endpoint_id)
        if result is not None and result.is_fresh(self.cache_seconds):
            return result
        return None

    async def _persist(self) -> None:
        """Hook for persistent subclasses."""


class YamlServerDirectory(InMemoryServerDirectory):
    """InMemoryServerDirectory backed by a YAML file.

    File layout::

        selected: local
        servers:
          - id: local
            name: Local Server
            host: localhost
            port: 8080
            ...
    """

    lp: str = "YamlServerDirectory:"

    def __init__(
        self,
        path: str | Path,
        probe_fn: ProbeFn | None = None,
        cache_seconds: float = SERVER_STATUS_CACHE_SECONDS,
    ) -> None:
        self.path = Path(path).expanduser()
        endpoints, selected = self._read()
        super().__init__(endpoints=endpoints, probe_fn=probe_fn, cache_seconds=cache_seconds)
        if selected in self._endpoints:
            self._selected_id = selected

    def _read(self) -> tuple[list[ServerEndpoint] | None, str | None]:
        if not self.path.exists():
            logger.debug("%s No servers file, using defaults", self.lp, extra={"path": str(self.path)})
            return None, None

        try:
            with self.path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            logger.exception("%s Failed to read servers file", self.lp, extra={"path": str(self.path)})
            raise
        if not isinstance(data, dict):
            msg = f"{self.path}: expected a mapping, got {type(data).__name__}"
            raise ValueError(msg)

        endpoints: list[ServerEndpoint] = []
        for raw in data.get("servers") or []:
            try:
                endpoints.append(ServerEndpoint.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "%s Skipping invalid server entry",
                    self.lp,
                    extra={"path": str(self.path), "entry": raw, "error": str(e)},
                )
        if not any(ep.is_default for ep in endpoints):
            endpoints = default_endpoints() + endpoints

        selected = data.get("selected")
        logger.info("%s Loaded servers", self.lp, extra={"path": str(self.path), "count": len(endpoints)})
        return endpoints, selected if isinstance(selected, str) else None

    async def _persist(self) -> None:
        document = {
            "selected": self._selected_id,
            "servers": [ep.model_dump(exclude={"url"}) for ep in self._endpoints.values()],
        }

        def _write_yaml() -> None:
            """Write YAML file synchronously (runs in thread pool)."""
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w") as f:
                _ = f.write(yaml.safe_dump(document, sort_keys=False))

        try:
            await asyncio.to_thread(_write_yaml)
        except OSError:
            logger.exception("%s Failed to write servers file", self.lp, extra={"path": str(self.path)})
            raise
