"""Event and event batch data structures."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Sequence

import numpy as np


@dataclass(frozen=True)
class Event:
    """Single brightness-change sample from the event sensor.

    Attributes:
        t: Timestamp in seconds
        x: Raw (distorted) sensor column
        y: Raw (distorted) sensor row
        polarity: Sign of the brightness change (typically -1/0 or +1)
        x_undist: Undistorted column, None until undistortion ran
        y_undist: Undistorted row, None until undistortion ran
    """

    t: float
    x: int
    y: int
    polarity: int
    x_undist: int | None = None
    y_undist: int | None = None

    def with_undistorted(self, x_undist: int, y_undist: int) -> Event:
        """Return a copy carrying the undistorted pixel coordinates."""
        return replace(self, x_undist=int(x_undist), y_undist=int(y_undist))

    @property
    def is_undistorted(self) -> bool:
        """Return True if undistorted coordinates are set."""
        return self.x_undist is not None and self.y_undist is not None


class EventBatch:
    """Time-ordered group of events processed as one tracking unit.

    The batch timestamp is the midpoint between the first and the last
    event, which is what the pose log reports for the batch.
    """

    def __init__(self, events: Iterable[Event]) -> None:
        self._events: tuple[Event, ...] = tuple(events)

    @property
    def events(self) -> tuple[Event, ...]:
        return self._events

    @property
    def t_begin(self) -> float:
        if not self._events:
            raise ValueError("Empty batch has no begin time")
        return self._events[0].t

    @property
    def t_end(self) -> float:
        if not self._events:
            raise ValueError("Empty batch has no end time")
        return self._events[-1].t

    @property
    def timestamp(self) -> float:
        """Representative batch time (midpoint of first and last event)."""
        t_begin = self.t_begin
        return t_begin + 0.5 * (self.t_end - t_begin)

    def points(self) -> np.ndarray:
        """Return undistorted pixel coordinates as (N, 2) float array.

        Events without undistorted coordinates are skipped.
        """
        coords = [
            (e.x_undist, e.y_undist) for e in self._events if e.is_undistorted
        ]
        if not coords:
            return np.empty((0, 2), dtype=np.float64)
        return np.asarray(coords, dtype=np.float64)

    def polarities(self) -> np.ndarray:
        """Return polarities as (N,) int array."""
        return np.fromiter((e.polarity for e in self._events), dtype=np.int32)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._events)

    def __getitem__(self, idx: int) -> Event:
        return self._events[idx]

    def __repr__(self) -> str:
        if not self._events:
            return "EventBatch(empty)"
        return (
            f"EventBatch(n={len(self._events)}, "
            f"t=[{self.t_begin:.6f}, {self.t_end:.6f}])"
        )


def events_from_arrays(
    t: Sequence[float],
    x: Sequence[int],
    y: Sequence[int],
    polarity: Sequence[int],
) -> list[Event]:
    """Build events from parallel column arrays.

    Args:
        t: Timestamps in seconds
        x: Sensor columns
        y: Sensor rows
        polarity: Event polarities

    Returns:
        List of Event in input order

    Raises:
        ValueError: If the columns differ in length
    """
    n = len(t)
    if not (len(x) == len(y) == len(polarity) == n):
        raise ValueError(
            f"Column lengths differ: t={n}, x={len(x)}, y={len(y)}, "
            f"polarity={len(polarity)}"
        )
    return [
        Event(t=float(t[i]), x=int(x[i]), y=int(y[i]), polarity=int(polarity[i]))
        for i in range(n)
    ]
