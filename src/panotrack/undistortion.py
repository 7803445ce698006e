"""Lookup table removing lens distortion from raw event coordinates.

The table is built by pushing every pixel of an ideal (undistorted) grid
through the radial-tangential distortion model and recording, at the
distorted sensor pixel it lands on, the index of the undistorted pixel:

    table[round(v_d) * width + round(u_d)] = V * grid_width + U

Distorted pixels that no undistorted pixel lands on stay invalid (-1) and
events there are dropped. Several undistorted pixels may land on the same
distorted pixel; the one landing closest to the pixel center wins, so a
finer grid refines event positions without shifting them.

The undistorted grid may be finer than the sensor (``scale`` > 1) so that
high-resolution panoramas get sub-pixel event positions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

import numpy as np

from .camera import CameraIntrinsics, DistortionCoeffs
from .events import Event

if TYPE_CHECKING:
    from .camera import CameraParameters

INVALID = -1


def distort_normalized(
    x: np.ndarray, y: np.ndarray, distortion: DistortionCoeffs
) -> tuple[np.ndarray, np.ndarray]:
    """Apply the radial-tangential model to normalized image coordinates.

    Args:
        x: Normalized x coordinates (any shape)
        y: Normalized y coordinates (same shape as x)
        distortion: Distortion coefficients

    Returns:
        Tuple of distorted (x_d, y_d)
    """
    k1, k2, p1, p2 = distortion.k1, distortion.k2, distortion.p1, distortion.p2
    r2 = x * x + y * y
    radial = 1.0 + k1 * r2 + k2 * r2 * r2
    x_d = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    y_d = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
    return x_d, y_d


@dataclass(frozen=True)
class UndistortionMap:
    """Precomputed distorted -> undistorted pixel correspondence.

    Attributes:
        table: (width * height,) int array indexed by distorted pixel,
            holding the undistorted grid index or -1
        width: Sensor width
        height: Sensor height
        scale: Undistorted grid resolution relative to the sensor
    """

    table: np.ndarray
    width: int
    height: int
    scale: float = 1.0

    @property
    def grid_width(self) -> int:
        return int(round(self.width * self.scale))

    @property
    def grid_height(self) -> int:
        return int(round(self.height * self.scale))

    @property
    def num_valid(self) -> int:
        """Number of distorted pixels with a valid correspondence."""
        return int(np.count_nonzero(self.table != INVALID))

    @classmethod
    def build(
        cls,
        intrinsics: CameraIntrinsics,
        distortion: DistortionCoeffs,
        width: int,
        height: int,
        scale: float = 1.0,
    ) -> UndistortionMap:
        """Build the lookup table for a camera.

        Args:
            intrinsics: Sensor intrinsics
            distortion: Lens distortion coefficients
            width: Sensor width
            height: Sensor height
            scale: Undistorted grid resolution relative to the sensor

        Returns:
            Immutable UndistortionMap
        """
        if scale <= 0:
            raise ValueError(f"Scale must be positive, got {scale}")

        grid_w = int(round(width * scale))
        grid_h = int(round(height * scale))
        fx, fy = intrinsics.fx, intrinsics.fy
        cx, cy = intrinsics.cx, intrinsics.cy

        v, u = np.mgrid[0:grid_h, 0:grid_w]
        x = (u / scale - cx) / fx
        y = (v / scale - cy) / fy
        x_d, y_d = distort_normalized(x, y, distortion)
        u_d = (fx * x_d + cx).ravel()
        v_d = (fy * y_d + cy).ravel()

        # Sensor pixel centers sit on integer coordinates
        u_px = np.floor(u_d + 0.5)
        v_px = np.floor(v_d + 0.5)
        inside = (u_px >= 0) & (v_px >= 0) & (u_px < width) & (v_px < height)
        idx_distorted = (
            v_px[inside].astype(np.int64) * width + u_px[inside].astype(np.int64)
        )
        idx_undistorted = (v.ravel() * grid_w + u.ravel())[inside]
        offset = ((u_d - u_px) ** 2 + (v_d - v_px) ** 2)[inside]

        table = np.full(width * height, INVALID, dtype=np.int64)
        if idx_distorted.size:
            # Keep the sample closest to the pixel center per distorted slot
            order = np.lexsort((offset, idx_distorted))
            slots = idx_distorted[order]
            first = np.ones(slots.size, dtype=bool)
            first[1:] = slots[1:] != slots[:-1]
            table[slots[first]] = idx_undistorted[order][first]

        table.setflags(write=False)
        return cls(table=table, width=width, height=height, scale=float(scale))

    @classmethod
    def from_parameters(cls, params: CameraParameters) -> UndistortionMap:
        """Build the table for a camera parameter set at its upscale."""
        return cls.build(
            params.intrinsics,
            params.distortion,
            params.width,
            params.height,
            scale=params.upscale,
        )

    def lookup(self, x: int, y: int) -> tuple[int, int] | None:
        """Return undistorted grid pixel for a raw pixel, or None if invalid."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            return None
        idx = self.table[y * self.width + x]
        if idx == INVALID:
            return None
        return int(idx % self.grid_width), int(idx // self.grid_width)

    def lookup_array(
        self, xs: np.ndarray, ys: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Vectorized lookup.

        Args:
            xs: Raw sensor columns
            ys: Raw sensor rows

        Returns:
            Tuple of (x_undist, y_undist, valid); coordinates are only
            meaningful where valid is True
        """
        xs = np.asarray(xs, dtype=np.int64)
        ys = np.asarray(ys, dtype=np.int64)
        in_bounds = (xs >= 0) & (ys >= 0) & (xs < self.width) & (ys < self.height)
        idx = np.full(xs.shape, INVALID, dtype=np.int64)
        idx[in_bounds] = self.table[ys[in_bounds] * self.width + xs[in_bounds]]
        valid = idx != INVALID
        safe = np.where(valid, idx, 0)
        return safe % self.grid_width, safe // self.grid_width, valid

    def undistort_events(self, events: Iterable[Event]) -> list[Event]:
        """Attach undistorted coordinates, dropping events without a match."""
        events = list(events)
        if not events:
            return []
        xs = np.fromiter((e.x for e in events), dtype=np.int64, count=len(events))
        ys = np.fromiter((e.y for e in events), dtype=np.int64, count=len(events))
        xu, yu, valid = self.lookup_array(xs, ys)
        return [
            event.with_undistorted(xu[i], yu[i])
            for i, event in enumerate(events)
            if valid[i]
        ]

    def to_sensor(self, points: np.ndarray) -> np.ndarray:
        """Convert undistorted grid coordinates to sensor pixel units."""
        return np.asarray(points, dtype=np.float64) / self.scale
