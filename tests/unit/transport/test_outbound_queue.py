"""Unit tests for OutboundQueue."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dungeon_link.protocol.commands import WaitCommand, move_by
from dungeon_link.transport.exceptions import QueueClearedError, QueueOverflowError
from dungeon_link.transport.outbound_queue import OutboundQueue
from dungeon_link.transport.types import QueuedCommand
from tests.helpers.expectations import CallbackRecorder, expect_exception

# Test constants
SMALL_CAPACITY = 3


class TestOutboundQueueBasics:
    """Tests for FIFO behaviour and accessors."""

    def test_rejects_non_positive_capacity(self):
        """Test max_size below 1 is refused."""
        error = expect_exception(OutboundQueue, ValueError, 0)
        assert "max_size" in str(error)

    def test_flush_returns_enqueue_order(self):
        """Test flush empties the queue oldest first."""
        queue = OutboundQueue(max_size=10)
        commands = [move_by(1, 0), move_by(0, 1), WaitCommand()]
        for command in commands:
            queue.enqueue(command)

        entries = queue.flush()

        assert [entry.command for entry in entries] == commands
        assert queue.is_empty is True
        assert len(queue) == 0

    def test_size_and_full(self):
        """Test size tracking and the is_full flag."""
        queue = OutboundQueue(max_size=2)
        queue.enqueue(WaitCommand())
        assert queue.size == 1
        assert queue.is_full is False
        queue.enqueue(WaitCommand())
        assert queue.is_full is True

    def test_peek_and_dequeue(self):
        """Test peek leaves the head in place and dequeue removes it."""
        queue = OutboundQueue()
        assert queue.peek() is None
        assert queue.dequeue() is None

        first = queue.enqueue(move_by(1, 1))
        queue.enqueue(WaitCommand())

        assert queue.peek() is first
        assert queue.dequeue() is first
        assert queue.size == 1

    def test_entries_carry_enqueue_time(self):
        """Test enqueue stamps the entry and starts attempt_count at zero."""
        entry = OutboundQueue().enqueue(WaitCommand())
        assert entry.enqueued_at > 0
        assert entry.attempt_count == 0


class TestOutboundQueueOverflow:
    """Tests for oldest-first eviction."""

    def test_overflow_evicts_oldest(self):
        """Test the newest command is always accepted and the oldest dropped."""
        queue = OutboundQueue(max_size=SMALL_CAPACITY)
        recorders = [CallbackRecorder() for _ in range(SMALL_CAPACITY + 1)]
        for index, recorder in enumerate(recorders):
            queue.enqueue(move_by(index, 0), on_rejected=recorder.on_rejected)

        assert queue.size == SMALL_CAPACITY
        assert [entry.command.dx for entry in queue.flush()] == [1, 2, 3]
        assert len(recorders[0].rejections) == 1
        assert isinstance(recorders[0].rejections[0], QueueOverflowError)
        assert recorders[0].rejections[0].max_size == SMALL_CAPACITY
        assert all(not recorder.rejections for recorder in recorders[1:])
        assert queue.evicted_total == 1

    def test_raising_rejection_callback_does_not_break_enqueue(self):
        """Test a failing on_rejected is logged and the enqueue still succeeds."""
        queue = OutboundQueue(max_size=1)
        queue.enqueue(WaitCommand(), on_rejected=MagicMock(side_effect=RuntimeError("boom")))

        entry = queue.enqueue(move_by(1, 0))

        assert queue.peek() is entry

    def test_restore_puts_entries_back_at_head(self):
        """Test restore keeps flushed entries ahead of newer ones."""
        queue = OutboundQueue(max_size=10)
        queue.enqueue(move_by(1, 0))
        queue.enqueue(move_by(2, 0))
        flushed = queue.flush()
        queue.enqueue(move_by(3, 0))

        queue.restore(flushed)

        assert [entry.command.dx for entry in queue.flush()] == [1, 2, 3]

    def test_restore_overflow_evicts_from_head(self):
        """Test restore respects capacity by dropping the oldest entries."""
        queue = OutboundQueue(max_size=2)
        recorder = CallbackRecorder()
        entries = [
            QueuedCommand(command=move_by(1, 0), on_rejected=recorder.on_rejected),
            QueuedCommand(command=move_by(2, 0)),
        ]
        queue.enqueue(move_by(3, 0))

        queue.restore(entries)

        assert [entry.command.dx for entry in queue.flush()] == [2, 3]
        assert len(recorder.rejections) == 1


class TestOutboundQueueClear:
    """Tests for clear()."""

    def test_clear_without_notify(self):
        """Test a silent clear drops entries without callbacks."""
        queue = OutboundQueue()
        recorder = CallbackRecorder()
        queue.enqueue(WaitCommand(), on_rejected=recorder.on_rejected)

        assert queue.clear() == 1
        assert queue.is_empty is True
        assert recorder.rejections == []

    @pytest.mark.parametrize("reason", ["queue cleared", "connection shut down"])
    def test_clear_with_notify(self, reason: str):
        """Test a notifying clear rejects every entry with the reason."""
        queue = OutboundQueue()
        recorders = [CallbackRecorder(), CallbackRecorder()]
        for recorder in recorders:
            queue.enqueue(WaitCommand(), on_rejected=recorder.on_rejected)

        assert queue.clear(notify_rejected=True, reason=reason) == 2

        for recorder in recorders:
            assert len(recorder.rejections) == 1
            error = recorder.rejections[0]
            assert isinstance(error, QueueClearedError)
            assert error.reason == reason
