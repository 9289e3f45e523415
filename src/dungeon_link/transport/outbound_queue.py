"""Bounded FIFO of commands waiting for the link to become Ready."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from typing import Any

from dungeon_link.logging_abstraction import get_logger
from dungeon_link.metrics import registry
from dungeon_link.transport.exceptions import QueueClearedError, QueueOverflowError
from dungeon_link.transport.types import QueuedCommand

logger = get_logger(__name__)


def _reject(entry: QueuedCommand, error: Exception) -> None:
    if entry.on_rejected is None:
        return
    try:
        entry.on_rejected(error)
    except Exception:
        logger.exception("on_rejected callback failed", extra={"command": repr(entry.command)})


class OutboundQueue:
    """FIFO with a capacity bound and oldest-first eviction.

    The queue always accepts the newest command. When full, the oldest entry
    is evicted and its on_rejected callback receives a QueueOverflowError.
    """

    def __init__(self, max_size: int = 100, session_id: str = "") -> None:
        if max_size < 1:
            msg = f"max_size must be at least 1, got {max_size}"
            raise ValueError(msg)
        self._max_size = max_size
        self.session_id = session_id
        self._entries: deque[QueuedCommand] = deque()
        self.evicted_total = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def enqueue(
        self,
        command: Any,
        on_accepted: Callable[[], None] | None = None,
        on_rejected: Callable[[Exception], None] | None = None,
    ) -> QueuedCommand:
        """Append a new command, evicting the oldest if at capacity."""
        return self.enqueue_entry(QueuedCommand(command=command, on_accepted=on_accepted, on_rejected=on_rejected))

    def enqueue_entry(self, entry: QueuedCommand) -> QueuedCommand:
        """Append an existing entry (used when re-queuing after a failed send)."""
        if self.is_full:
            evicted = self._entries.popleft()
            self.evicted_total += 1
            registry.record_queue_eviction(self.session_id)
            logger.warning(
                "✗ Outbound queue full, dropping oldest command",
                extra={"max_size": self._max_size, "command": repr(evicted.command)},
            )
            _reject(evicted, QueueOverflowError(self._max_size))

        self._entries.append(entry)
        logger.debug("Command queued", extra={"queue_size": len(self._entries)})
        return entry

    def flush(self) -> list[QueuedCommand]:
        """Empty the queue and return every entry in enqueue order."""
        entries = list(self._entries)
        self._entries.clear()
        if entries:
            logger.debug("Outbound queue flushed", extra={"count": len(entries)})
        return entries

    def restore(self, entries: list[QueuedCommand]) -> None:
        """Put flushed entries back at the head, ahead of anything queued since.

        Capacity still applies; overflow evicts from the head.
        """
        self._entries.extendleft(reversed(entries))
        while len(self._entries) > self._max_size:
            evicted = self._entries.popleft()
            self.evicted_total += 1
            registry.record_queue_eviction(self.session_id)
            _reject(evicted, QueueOverflowError(self._max_size))

    def clear(self, notify_rejected: bool = False, reason: str = "queue cleared") -> int:
        """Discard all entries without sending them.

        Args:
            notify_rejected: Invoke on_rejected for every discarded entry
            reason: Reason passed in the QueueClearedError

        Returns:
            Number of entries discarded
        """
        entries = self.flush()
        if notify_rejected:
            for entry in entries:
                _reject(entry, QueueClearedError(reason))
        if entries:
            logger.info(
                "Outbound queue cleared",
                extra={"count": len(entries), "notified": notify_rejected, "reason": reason},
            )
        return len(entries)

    def peek(self) -> QueuedCommand | None:
        return self._entries[0] if self._entries else None

    def dequeue(self) -> QueuedCommand | None:
        return self._entries.popleft() if self._entries else None
