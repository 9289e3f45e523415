"""
Unit tests for instrumentation module.

Tests timing decorators, the slow-operation warning and the
DLINK_PERF_TRACKING switch.
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock, patch

import pytest

from dungeon_link.instrumentation import measure_time, timed, timed_async
from tests.helpers.expectations import expect_async_exception, expect_exception


class TestMeasureTime:
    """Tests for measure_time"""

    def test_returns_milliseconds(self):
        """Test elapsed time is reported in milliseconds"""
        start = time.perf_counter()
        time.sleep(0.01)
        elapsed_ms = measure_time(start)

        # 10ms sleep, generous upper bound for slow CI hosts
        assert 5 < elapsed_ms < 200

    def test_zero_elapsed(self):
        """Test an immediate reading is small and non-negative"""
        assert 0 <= measure_time(time.perf_counter()) < 5


class TestTimedDecorator:
    """Tests for timed (sync)"""

    def test_passes_arguments_and_result(self):
        """Test the wrapped function sees its arguments and returns its result"""

        @timed("encode_frame")
        def encode(action, payload=None):
            return {"action": action, "payload": payload or {}}

        assert encode("MOVE", payload={"dx": 1}) == {"action": "MOVE", "payload": {"dx": 1}}

    def test_preserves_function_name(self):
        """Test functools.wraps keeps the name"""

        @timed()
        def decode_frame():
            pass

        assert decode_frame.__name__ == "decode_frame"

    def test_exception_propagates(self):
        """Test errors from the wrapped function are not swallowed"""

        @timed("failing")
        def failing():
            msg = "bad frame"
            raise ValueError(msg)

        _ = expect_exception(failing, ValueError)

    def test_slow_operation_warns(self):
        """Test exceeding the threshold logs a warning with the operation name"""
        mock_logger = MagicMock()

        @timed("slow_op")
        def slow():
            return "done"

        with (
            patch("dungeon_link.const.DLINK_PERF_THRESHOLD_MS", -1),
            patch("dungeon_link.logging_abstraction.get_logger", return_value=mock_logger),
        ):
            assert slow() == "done"

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.args[1] == "slow_op"
        assert mock_logger.warning.call_args.kwargs["extra"]["exceeded_threshold"] is True

    def test_fast_operation_logs_debug(self):
        """Test staying under the threshold logs at debug only"""
        mock_logger = MagicMock()

        @timed("fast_op")
        def fast():
            return 1

        with (
            patch("dungeon_link.const.DLINK_PERF_THRESHOLD_MS", 60_000),
            patch("dungeon_link.logging_abstraction.get_logger", return_value=mock_logger),
        ):
            _ = fast()

        mock_logger.warning.assert_not_called()
        mock_logger.debug.assert_called_once()

    def test_tracking_disabled(self):
        """Test DLINK_PERF_TRACKING=0 skips timing entirely"""
        mock_logger = MagicMock()

        @timed("untracked")
        def untracked():
            return "plain"

        with (
            patch("dungeon_link.const.DLINK_PERF_TRACKING", False),
            patch("dungeon_link.logging_abstraction.get_logger", return_value=mock_logger),
        ):
            assert untracked() == "plain"

        mock_logger.debug.assert_not_called()
        mock_logger.warning.assert_not_called()


class TestTimedAsyncDecorator:
    """Tests for timed_async"""

    @pytest.mark.asyncio
    async def test_passes_arguments_and_result(self):
        """Test the coroutine result is returned"""

        @timed_async("probe")
        async def probe(host, port):
            await asyncio.sleep(0.001)
            return f"{host}:{port}"

        assert await probe("localhost", 8080) == "localhost:8080"

    @pytest.mark.asyncio
    async def test_preserves_function_name(self):
        """Test functools.wraps keeps the coroutine name"""

        @timed_async()
        async def probe_endpoint():
            pass

        assert probe_endpoint.__name__ == "probe_endpoint"

    @pytest.mark.asyncio
    async def test_exception_propagates_and_is_timed(self):
        """Test a failing coroutine still logs its timing"""
        mock_logger = MagicMock()

        @timed_async("failing_probe")
        async def failing():
            msg = "refused"
            raise OSError(msg)

        with (
            patch("dungeon_link.const.DLINK_PERF_THRESHOLD_MS", 60_000),
            patch("dungeon_link.logging_abstraction.get_logger", return_value=mock_logger),
        ):
            _ = await expect_async_exception(failing, OSError)

        mock_logger.debug.assert_called_once()
        assert mock_logger.debug.call_args.args[1] == "failing_probe"
