"""Unit tests for BackoffPolicy and ReconnectScheduler."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from dungeon_link.transport.retry_policy import BackoffPolicy, ReconnectScheduler

# Test constants
DEFAULT_DELAYS_MS = [1000, 1500, 2250, 3375, 5062, 7593, 11389, 17083, 25624, 30000]
FAST_INITIAL_MS = 10


def _collect_delays(scheduler: ReconnectScheduler, count: int) -> list[float]:
    delays: list[float] = []
    for _ in range(count):
        scheduler.schedule(MagicMock(), on_attempt=lambda _attempt, _max, delay: delays.append(delay))
    return delays


class TestBackoffPolicy:
    """Tests for BackoffPolicy arithmetic."""

    def test_defaults(self):
        """Test default initial, max and multiplier."""
        policy = BackoffPolicy()
        assert policy.initial_delay_ms == 1000
        assert policy.max_delay_ms == 30000
        assert policy.multiplier == 1.5
        assert policy.jitter_factor == 0.0

    def test_grow_floors_to_whole_milliseconds(self):
        """Test growth is floored after multiplying."""
        policy = BackoffPolicy()
        assert policy.grow(3375) == 5062
        assert policy.grow(1000) == 1500

    def test_apply_caps_at_max(self):
        """Test applied delay never exceeds the cap without jitter."""
        policy = BackoffPolicy(max_delay_ms=5000)
        assert policy.apply(4000) == 4000
        assert policy.apply(7000) == 5000

    def test_apply_with_jitter_stays_in_range(self):
        """Test jitter only ever adds up to jitter_factor of the delay."""
        policy = BackoffPolicy(jitter_factor=0.5)
        for _ in range(50):
            delay = policy.apply(1000)
            assert 1000 <= delay <= 1500

    def test_repr_includes_parameters(self):
        """Test repr lists the policy parameters."""
        text = repr(BackoffPolicy(initial_delay_ms=200, max_delay_ms=800, multiplier=2.0))
        assert "initial=200ms" in text
        assert "max=800ms" in text
        assert "multiplier=2.0" in text


class TestReconnectSchedulerDelays:
    """Tests for the delay sequence handed to on_attempt."""

    @pytest.mark.asyncio
    async def test_default_sequence(self):
        """Test delays grow by 1.5x from 1000ms and cap at 30000ms."""
        scheduler = ReconnectScheduler(max_attempts=10)
        try:
            delays = _collect_delays(scheduler, 10)
        finally:
            scheduler.cancel()
        assert delays == DEFAULT_DELAYS_MS

    @pytest.mark.asyncio
    async def test_reset_restarts_sequence(self):
        """Test reset restores the initial delay and attempt count."""
        scheduler = ReconnectScheduler()
        try:
            _ = _collect_delays(scheduler, 3)
            assert scheduler.attempts == 3
            scheduler.reset()
            assert scheduler.attempts == 0
            assert scheduler.current_delay_ms == 1000
            assert _collect_delays(scheduler, 2) == [1000, 1500]
        finally:
            scheduler.cancel()

    @pytest.mark.asyncio
    async def test_on_attempt_receives_attempt_numbers(self):
        """Test on_attempt gets (attempt, max_attempts, delay) synchronously."""
        scheduler = ReconnectScheduler(max_attempts=5)
        on_attempt = MagicMock()
        try:
            scheduler.schedule(MagicMock(), on_attempt=on_attempt)
            on_attempt.assert_called_once_with(1, 5, 1000)
            scheduler.schedule(MagicMock(), on_attempt=on_attempt)
            on_attempt.assert_called_with(2, 5, 1500)
        finally:
            scheduler.cancel()


class TestReconnectSchedulerLifecycle:
    """Tests for arming, firing, cancelling and exhaustion."""

    @pytest.mark.asyncio
    async def test_retry_fires_after_delay(self):
        """Test retry_fn runs once the delay elapses."""
        scheduler = ReconnectScheduler(BackoffPolicy(initial_delay_ms=FAST_INITIAL_MS))
        retry = MagicMock()

        assert scheduler.schedule(retry) is True
        assert scheduler.is_scheduled is True
        retry.assert_not_called()

        await asyncio.sleep(0.05)

        retry.assert_called_once()
        assert scheduler.is_scheduled is False

    @pytest.mark.asyncio
    async def test_cancel_keeps_attempts_and_delay(self):
        """Test cancel disarms without touching the backoff state."""
        scheduler = ReconnectScheduler(BackoffPolicy(initial_delay_ms=FAST_INITIAL_MS))
        retry = MagicMock()
        scheduler.schedule(retry)

        scheduler.cancel()
        await asyncio.sleep(0.05)

        retry.assert_not_called()
        assert scheduler.is_scheduled is False
        assert scheduler.attempts == 1
        assert scheduler.current_delay_ms == 15

    @pytest.mark.asyncio
    async def test_exhausted_calls_on_exhausted_without_arming(self):
        """Test a schedule past the budget reports exhaustion and arms nothing."""
        scheduler = ReconnectScheduler(max_attempts=2)
        on_exhausted = MagicMock()
        on_attempt = MagicMock()

        scheduler.schedule(MagicMock(), on_attempt=on_attempt, on_exhausted=on_exhausted)
        scheduler.schedule(MagicMock(), on_attempt=on_attempt, on_exhausted=on_exhausted)
        scheduler.cancel()
        assert scheduler.is_exhausted is True

        assert scheduler.schedule(MagicMock(), on_attempt=on_attempt, on_exhausted=on_exhausted) is False

        on_exhausted.assert_called_once()
        assert on_attempt.call_count == 2
        assert scheduler.is_scheduled is False
        assert scheduler.attempts == 2

    @pytest.mark.asyncio
    async def test_zero_budget_is_exhausted_immediately(self):
        """Test max_attempts=0 never arms a retry."""
        scheduler = ReconnectScheduler(max_attempts=0)
        on_exhausted = MagicMock()

        assert scheduler.schedule(MagicMock(), on_exhausted=on_exhausted) is False
        on_exhausted.assert_called_once()

    @pytest.mark.asyncio
    async def test_state_snapshot(self):
        """Test state() mirrors the scheduler."""
        scheduler = ReconnectScheduler(max_attempts=4)
        try:
            scheduler.schedule(MagicMock())
            state = scheduler.state()
        finally:
            scheduler.cancel()

        assert state.attempts == 1
        assert state.max_attempts == 4
        assert state.current_delay_ms == 1500
        assert state.is_scheduled is True
