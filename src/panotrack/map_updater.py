"""Panorama accumulation and its gating policy."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .kernels import PanoramaKernels
    from .panorama import MutablePanoramaView

logger = logging.getLogger(__name__)


class MapUpdater:
    """Projects motion-compensated events into the panorama.

    The first ``bootstrap_batches`` batches after a (re)start always update
    the map, since there is no reference to track against yet. Afterwards a
    batch updates the map only if its pose estimate succeeded and its
    tracking quality exceeds ``quality_threshold``; otherwise the map is
    left untouched.
    """

    def __init__(
        self,
        kernels: PanoramaKernels,
        camera_width: int,
        camera_height: int,
        bootstrap_batches: int = 10,
        quality_threshold: float = 0.25,
    ) -> None:
        self._kernels = kernels
        self.camera_width = camera_width
        self.camera_height = camera_height
        self.bootstrap_batches = bootstrap_batches
        self.quality_threshold = quality_threshold

    def should_update(self, image_id: int, success: bool, quality: float) -> bool:
        """Apply the gating policy for one batch."""
        if image_id <= self.bootstrap_batches:
            return True
        return success and quality > self.quality_threshold

    def update(
        self,
        panorama: MutablePanoramaView,
        pose: np.ndarray,
        old_pose: np.ndarray,
        points: np.ndarray,
    ) -> float:
        """Accumulate one batch into the panorama.

        Args:
            panorama: Writable panorama view
            pose: Pose at the end of the batch
            old_pose: Pose at the start of the batch
            points: (N, 2) undistorted events in sensor pixels

        Returns:
            Elapsed time in milliseconds
        """
        start_time = time.perf_counter()
        hits = self._kernels.update_map(
            panorama,
            points,
            pose,
            old_pose,
            self.camera_width,
            self.camera_height,
        )
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("Map update: %d/%d events in %.2f ms", hits, len(points), elapsed_ms)
        return elapsed_ms
