"""Cancellable one-shot timers bound to the running event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from dungeon_link.logging_abstraction import get_logger

logger = get_logger(__name__)


class CallbackTimer:
    """One-shot timer built on loop.call_later with a generation guard.

    Every arm() or cancel() bumps the generation. A callback only runs if the
    generation it was armed under is still current, so a callback that was
    already queued by the loop when cancel() ran is a no-op.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def generation(self) -> int:
        return self._generation

    def arm(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        """Arm the timer, replacing any previously armed callback."""
        self.cancel()
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(delay_seconds, 0.0), self._fire, generation, callback)

    def cancel(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int, callback: Callable[[], None]) -> None:
        if generation != self._generation:
            logger.debug(
                "Stale timer callback ignored",
                extra={"timer": self.name, "generation": generation, "current": self._generation},
            )
            return
        self._handle = None
        callback()
