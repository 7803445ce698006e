"""Plain-text event files.

One event per line::

    t x y polarity

with ``t`` in seconds written with 6 decimals and an integer polarity.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from ..events import Event

logger = logging.getLogger(__name__)


def load_events(path: str | Path) -> list[Event]:
    """Read events from a text file.

    Reading is tolerant: blank lines, comment lines starting with ``#`` and
    malformed or truncated records (such as a partially written last line)
    are skipped.

    Args:
        path: Event file

    Returns:
        Events in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Event file not found: {path}")

    events: list[Event] = []
    skipped = 0
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            parts = line.split()
            if len(parts) < 4:
                skipped += 1
                continue

            try:
                events.append(
                    Event(
                        t=float(parts[0]),
                        x=int(parts[1]),
                        y=int(parts[2]),
                        polarity=int(float(parts[3])),
                    )
                )
            except ValueError:
                skipped += 1

    if skipped:
        logger.warning("Skipped %d malformed line(s) in %s", skipped, path)
    return events


def save_events(path: str | Path, events: Iterable[Event]) -> int:
    """Write events to a text file, overwriting it.

    Args:
        path: Output file
        events: Events to write

    Returns:
        Number of events written
    """
    count = 0
    with open(path, "w") as f:
        for event in events:
            f.write(f"{event.t:.6f} {event.x} {event.y} {event.polarity:d}\n")
            count += 1
    return count
