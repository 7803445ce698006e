"""Append-only log of estimated poses.

Each line is ``timestamp 0 0 0 qx qy qz qw``: the tracker estimates
rotation only, so the translation columns are zero.
"""

from __future__ import annotations

from pathlib import Path
from typing import TextIO

import numpy as np

from ..rotation import rotvec_to_quaternion

POSE_LOG_RELATIVE_PATH = Path("output_pose") / "estimated_pose_rpg.txt"


class PoseLog:
    """Lazily opened pose log owned by the tracking loop.

    The file is created (truncated) on the first ``write`` and stays open
    until ``close``. Writing after ``close`` reopens and truncates it again.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._file: TextIO | None = None
        self._num_lines = 0

    @classmethod
    def in_directory(cls, output_dir: str | Path) -> PoseLog:
        return cls(Path(output_dir) / POSE_LOG_RELATIVE_PATH)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def num_lines(self) -> int:
        return self._num_lines

    def write(self, timestamp: float, pose: np.ndarray) -> None:
        """Append the pose of one batch."""
        if self._file is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._path, "w")
            self._num_lines = 0

        qx, qy, qz, qw = rotvec_to_quaternion(pose)
        self._file.write(f"{timestamp} 0 0 0 {qx} {qy} {qz} {qw}\n")
        self._file.flush()
        self._num_lines += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> PoseLog:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
