"""Thread-safe FIFO buffering events between a producer and the tracker.

The producer (a device driver or file replay thread) appends batches with
``push_batch``; the tracking loop removes fixed-size batches with
``try_drain``. A drain either returns exactly ``n`` events or nothing, so the
tracker never sees a partial batch.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Iterable

from .events import Event


class EventQueue:
    """Mutex-guarded FIFO of events with an exact-N drain.

    Besides the queue itself, the most recently pushed batch is kept in a
    diagnostic "all events" history so it can be exported with
    ``TrackingLoop.save_events``. The history is never used for tracking.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._events: deque[Event] = deque()
        self._history: list[Event] = []

    def push_batch(self, events: Iterable[Event]) -> int:
        """Append events in arrival order.

        The diagnostic history is replaced by this batch.

        Args:
            events: Events to append

        Returns:
            Number of events appended
        """
        batch = list(events)
        with self._not_empty:
            self._events.extend(batch)
            self._history = batch
            self._not_empty.notify_all()
        return len(batch)

    def try_drain(self, n: int) -> list[Event]:
        """Remove and return exactly ``n`` events, or none.

        Args:
            n: Number of events to drain

        Returns:
            List of ``n`` events in FIFO order, or an empty list if fewer
            than ``n`` events are queued
        """
        if n <= 0:
            raise ValueError(f"Drain size must be positive, got {n}")

        with self._lock:
            if len(self._events) < n:
                return []
            return [self._events.popleft() for _ in range(n)]

    def wait_for(self, n: int, timeout: float) -> bool:
        """Block until at least ``n`` events are queued or timeout elapses.

        Args:
            n: Required number of queued events
            timeout: Maximum wait in seconds

        Returns:
            True if at least ``n`` events are queued on return
        """
        with self._not_empty:
            return self._not_empty.wait_for(
                lambda: len(self._events) >= n, timeout=timeout
            )

    def clear(self) -> None:
        """Drop all queued events."""
        with self._lock:
            self._events.clear()

    def history(self) -> list[Event]:
        """Return a copy of the diagnostic history."""
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
