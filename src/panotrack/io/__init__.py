"""I/O utilities for event files, panorama exports and pose logs."""

from .event_io import load_events, save_events
from .map_io import save_color, save_state
from .pose_log import PoseLog

__all__ = [
    "load_events",
    "save_events",
    "save_state",
    "save_color",
    "PoseLog",
]
