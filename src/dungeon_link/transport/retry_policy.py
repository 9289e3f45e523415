"""Reconnect backoff policy and scheduler.

The policy is pure arithmetic over millisecond delays. The scheduler owns the
reconnection budget and a single armed retry timer; its state persists across
schedule() calls until reset(), which the connection core calls once per
successful transition into Ready.
"""

from __future__ import annotations

import math
import random
from collections.abc import Callable

from dungeon_link.logging_abstraction import get_logger
from dungeon_link.transport.timers import CallbackTimer
from dungeon_link.transport.types import ReconnectionState

logger = get_logger(__name__)


class BackoffPolicy:
    """Exponential backoff with a ceiling and optional jitter.

    Delays grow as initial * multiplier^n, floored to whole milliseconds and
    capped at max_delay_ms when applied.
    """

    def __init__(
        self,
        initial_delay_ms: float = 1000,
        max_delay_ms: float = 30000,
        multiplier: float = 1.5,
        jitter_factor: float = 0.0,
    ):
        """Initialize backoff policy.

        Args:
            initial_delay_ms: Delay for the first attempt
            max_delay_ms: Maximum delay cap
            multiplier: Growth factor applied after every attempt
            jitter_factor: Random fraction of the delay added on top (0 disables)
        """
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.multiplier = multiplier
        self.jitter_factor = jitter_factor

    def apply(self, current_delay_ms: float) -> float:
        """Delay to actually wait for the given backoff value."""
        delay = min(current_delay_ms, self.max_delay_ms)
        if self.jitter_factor > 0:
            delay += random.uniform(0, delay * self.jitter_factor)
        return delay

    def grow(self, current_delay_ms: float) -> float:
        """Backoff value for the attempt after current_delay_ms."""
        return math.floor(current_delay_ms * self.multiplier)

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(initial={self.initial_delay_ms}ms, "
            f"max={self.max_delay_ms}ms, "
            f"multiplier={self.multiplier}, "
            f"jitter_factor={self.jitter_factor})"
        )


class ReconnectScheduler:
    """Arms delayed retries until the attempt budget is used up."""

    def __init__(self, policy: BackoffPolicy | None = None, max_attempts: int = 10) -> None:
        self.policy = policy or BackoffPolicy()
        self.max_attempts = max_attempts
        self._attempts = 0
        self._current_delay_ms: float = self.policy.initial_delay_ms
        self._timer = CallbackTimer("reconnect")

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def current_delay_ms(self) -> float:
        return self._current_delay_ms

    @property
    def is_scheduled(self) -> bool:
        return self._timer.armed

    @property
    def is_exhausted(self) -> bool:
        return self._attempts >= self.max_attempts

    def schedule(
        self,
        retry_fn: Callable[[], None],
        on_attempt: Callable[[int, int, float], None] | None = None,
        on_exhausted: Callable[[], None] | None = None,
    ) -> bool:
        """Arm the next retry.

        Args:
            retry_fn: Called when the delay elapses
            on_attempt: Called synchronously with (attempt, max_attempts, delay_ms)
                before the wait begins
            on_exhausted: Called instead of arming when the budget is used up

        Returns:
            True if a retry was armed, False if the budget is exhausted
        """
        if self.is_exhausted:
            logger.warning(
                "✗ Reconnect budget exhausted",
                extra={"attempts": self._attempts, "max_attempts": self.max_attempts},
            )
            if on_exhausted is not None:
                on_exhausted()
            return False

        self._attempts += 1
        delay_ms = self.policy.apply(self._current_delay_ms)

        logger.info(
            "→ Scheduling reconnect attempt",
            extra={"attempt": self._attempts, "max_attempts": self.max_attempts, "delay_ms": delay_ms},
        )
        if on_attempt is not None:
            on_attempt(self._attempts, self.max_attempts, delay_ms)

        self._timer.arm(delay_ms / 1000.0, retry_fn)
        self._current_delay_ms = self.policy.grow(self._current_delay_ms)
        return True

    def cancel(self) -> None:
        """Disarm any pending retry, keeping attempts and delay."""
        if self._timer.armed:
            logger.debug("Reconnect timer cancelled", extra={"attempts": self._attempts})
        self._timer.cancel()

    def reset(self) -> None:
        """Cancel and restore the initial attempt count and delay."""
        self.cancel()
        self._attempts = 0
        self._current_delay_ms = self.policy.initial_delay_ms

    def state(self) -> ReconnectionState:
        return ReconnectionState(
            attempts=self._attempts,
            max_attempts=self.max_attempts,
            current_delay_ms=self._current_delay_ms,
            is_scheduled=self.is_scheduled,
        )

    def __repr__(self) -> str:
        return f"ReconnectScheduler(attempts={self._attempts}/{self.max_attempts}, policy={self.policy!r})"
