"""Pixel kernels shared by the pose estimator and the map updater.

These are the compute primitives of the tracker: projecting sensor pixels
onto the panorama, sampling the map and its gradient at projected events,
accumulating events into the map and rendering a color preview.

Panorama projection of a ray X in the sphere frame:

    u = upscale * px / pi * atan2(X1, X0) + W / 2      (wrapped modulo W)
    v = upscale * py * X2 / |X|            + H / 2

Every call is synchronous. Any numerical failure inside a kernel is
reported as ``ComputeError`` naming the failing operation; the tracker
treats it as fatal.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

import cv2
import numpy as np
from scipy.ndimage import map_coordinates

from .rotation import R_SPHERE, rodrigues, rodrigues_batch

if TYPE_CHECKING:
    from .camera import CameraParameters
    from .panorama import MutablePanoramaView, PanoramaView


class ComputeError(RuntimeError):
    """A compute kernel failed; the tracker cannot continue."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


@contextmanager
def _kernel(operation: str) -> Iterator[None]:
    try:
        yield
    except ComputeError:
        raise
    except (ValueError, IndexError, FloatingPointError, MemoryError, cv2.error) as e:
        raise ComputeError(operation, str(e)) from e


class PanoramaKernels:
    """Compute primitives operating on a panorama.

    ``set_camera_matrices`` must be called before any other kernel and again
    whenever the intrinsics or the upscale factor change.
    """

    def __init__(self) -> None:
        self._K: np.ndarray | None = None
        self._K_inv: np.ndarray | None = None
        self._px = 0.0
        self._py = 0.0
        self._upscale = 1.0
        # Cached unit rays of every panorama pixel, keyed by projection setup
        self._grid_key: tuple | None = None
        self._grid_rays: np.ndarray | None = None

    @classmethod
    def from_parameters(cls, params: CameraParameters) -> PanoramaKernels:
        kernels = cls()
        kernels.set_camera_matrices(
            params.K, params.K_inv, params.px, params.py, params.upscale
        )
        return kernels

    def set_camera_matrices(
        self,
        K: np.ndarray,
        K_inv: np.ndarray,
        px: float,
        py: float,
        upscale: float,
    ) -> None:
        """Upload the camera matrices used by all kernels.

        Args:
            K: 3x3 sensor intrinsic matrix
            K_inv: Inverse of K
            px: Horizontal angular scale
            py: Vertical angular scale
            upscale: Panorama zoom factor
        """
        K = np.asarray(K, dtype=np.float64)
        K_inv = np.asarray(K_inv, dtype=np.float64)
        if K.shape != (3, 3) or K_inv.shape != (3, 3):
            raise ValueError(
                f"Camera matrices must be 3x3, got {K.shape} and {K_inv.shape}"
            )
        if upscale <= 0:
            raise ValueError(f"Upscale must be positive, got {upscale}")

        self._K = K.copy()
        self._K_inv = K_inv.copy()
        self._px = float(px)
        self._py = float(py)
        self._upscale = float(upscale)
        self._grid_key = None
        self._grid_rays = None

    @property
    def is_configured(self) -> bool:
        return self._K is not None

    @property
    def px(self) -> float:
        return self._px

    @property
    def py(self) -> float:
        return self._py

    @property
    def upscale(self) -> float:
        return self._upscale

    def _require_matrices(self, operation: str) -> None:
        if self._K is None:
            raise ComputeError(operation, "camera matrices not set")

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def sphere_points(self, points: np.ndarray) -> np.ndarray:
        """Lift undistorted sensor pixels onto the unit sphere.

        Args:
            points: (N, 2) undistorted pixel coordinates

        Returns:
            (N, 3) unit rays in the sphere frame, before rotation
        """
        self._require_matrices("sphere_points")
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        homogeneous = np.column_stack([points, np.ones(len(points))])
        rays = homogeneous @ (R_SPHERE @ self._K_inv).T
        norms = np.linalg.norm(rays, axis=1, keepdims=True)
        return rays / norms

    def project_rays(
        self, rays: np.ndarray, width: int, height: int
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project (N, 3) rotated rays to panorama coordinates (u, v).

        u is wrapped into [0, width); v is not clipped.
        """
        rays = np.asarray(rays, dtype=np.float64).reshape(-1, 3)
        norm = np.linalg.norm(rays, axis=1)
        u = self._upscale * self._px / np.pi * np.arctan2(rays[:, 1], rays[:, 0])
        v = self._upscale * self._py * rays[:, 2] / norm
        return np.mod(u + width / 2.0, width), v + height / 2.0

    def project(
        self, points: np.ndarray, pose: np.ndarray, width: int, height: int
    ) -> tuple[np.ndarray, np.ndarray]:
        """Project undistorted sensor pixels into the panorama at a pose."""
        with _kernel("project"):
            rays = self.sphere_points(points) @ rodrigues(pose).T
            return self.project_rays(rays, width, height)

    def _panorama_rays(self, width: int, height: int) -> np.ndarray:
        """Unit rays of every panorama pixel, (H * W, 3), cached."""
        key = (width, height, self._px, self._py, self._upscale)
        if self._grid_key != key:
            v, u = np.mgrid[0:height, 0:width].astype(np.float32)
            azimuth = (u - width / 2.0) * np.pi / (self._upscale * self._px)
            z = np.clip((v - height / 2.0) / (self._upscale * self._py), -1.0, 1.0)
            horizontal = np.sqrt(1.0 - z * z)
            rays = np.stack(
                [horizontal * np.cos(azimuth), horizontal * np.sin(azimuth), z],
                axis=-1,
            )
            self._grid_rays = rays.reshape(-1, 3).astype(np.float32)
            self._grid_key = key
        return self._grid_rays

    def footprint(
        self, pose: np.ndarray, camera_width: int, camera_height: int,
        width: int, height: int,
    ) -> np.ndarray:
        """Return (H, W) bool mask of panorama pixels visible at a pose."""
        self._require_matrices("footprint")
        with _kernel("footprint"):
            # camera ray = R_SPHERE^T R^T X, written for row vectors
            to_camera = (rodrigues(pose) @ R_SPHERE).astype(np.float32)
            cam = self._panorama_rays(width, height) @ to_camera
            in_front = cam[:, 2] > 1e-6
            z = np.where(in_front, cam[:, 2], 1.0)
            pix_x = self._K[0, 0] * cam[:, 0] / z + self._K[0, 2]
            pix_y = self._K[1, 1] * cam[:, 1] / z + self._K[1, 2]
            visible = (
                in_front
                & (pix_x >= 0)
                & (pix_y >= 0)
                & (pix_x < camera_width)
                & (pix_y < camera_height)
            )
            return visible.reshape(height, width)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def sample_gradients(
        self, points: np.ndarray, panorama: PanoramaView, pose: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Sample the map value and its spatial gradient at each event.

        Args:
            points: (N, 2) undistorted sensor pixels
            panorama: Read-only panorama view
            pose: Rotation vector used to project the events

        Returns:
            Tuple of (gradients (N, 2) as d/du, d/dv; map values (N,))
        """
        self._require_matrices("sample_gradients")
        with _kernel("sample_gradients"):
            radiance = panorama.radiance
            height, width = radiance.shape
            u, v = self.project(points, pose, width, height)

            values = _bilinear(radiance, u, v)
            grad_u = 0.5 * (
                _bilinear(radiance, u + 1.0, v) - _bilinear(radiance, u - 1.0, v)
            )
            grad_v = 0.5 * (
                _bilinear(radiance, u, v + 1.0) - _bilinear(radiance, u, v - 1.0)
            )
            gradients = np.column_stack([grad_u, grad_v])
            if not (np.all(np.isfinite(gradients)) and np.all(np.isfinite(values))):
                raise ComputeError("sample_gradients", "non-finite map samples")
            return gradients, values

    def sample_map(
        self, points: np.ndarray, panorama: PanoramaView, pose: np.ndarray
    ) -> np.ndarray:
        """Sample only the map value at each event, (N,)."""
        self._require_matrices("sample_map")
        with _kernel("sample_map"):
            radiance = panorama.radiance
            height, width = radiance.shape
            u, v = self.project(points, pose, width, height)
            values = _bilinear(radiance, u, v)
            if not np.all(np.isfinite(values)):
                raise ComputeError("sample_map", "non-finite map samples")
            return values

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def update_map(
        self,
        panorama: MutablePanoramaView,
        points: np.ndarray,
        pose: np.ndarray,
        old_pose: np.ndarray,
        camera_width: int,
        camera_height: int,
    ) -> int:
        """Accumulate a motion-compensated event batch into the panorama.

        Event i of N is projected with the pose interpolated linearly from
        ``old_pose`` (first event) to ``pose`` (last event). Each event adds
        one occurrence at its panorama pixel; every pixel inside the sensor
        footprint at ``pose`` gains one unit of normalization. The radiance
        of touched pixels becomes occurrences / normalization.

        Returns:
            Number of events that landed inside the panorama
        """
        self._require_matrices("update_map")
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        occurrences = panorama.occurrences
        height, width = occurrences.shape

        with _kernel("update_map"):
            visible = self.footprint(pose, camera_width, camera_height, width, height)
            touched = visible.copy()

            hits = 0
            if len(points):
                pose = np.asarray(pose, dtype=np.float64)
                old_pose = np.asarray(old_pose, dtype=np.float64)
                if len(points) > 1:
                    s = np.linspace(0.0, 1.0, len(points))
                else:
                    s = np.ones(1)
                rotvecs = old_pose[None, :] + s[:, None] * (pose - old_pose)[None, :]
                rays = np.einsum(
                    "nij,nj->ni", rodrigues_batch(rotvecs), self.sphere_points(points)
                )
                u, v = self.project_rays(rays, width, height)
                ui = np.mod(np.round(u).astype(np.int64), width)
                vi = np.round(v).astype(np.int64)
                inside = (vi >= 0) & (vi < height)
                ui, vi = ui[inside], vi[inside]
                np.add.at(occurrences, (vi, ui), 1.0)
                touched[vi, ui] = True
                hits = int(inside.sum())

            panorama.normalization[visible] += 1.0
            np.divide(
                occurrences,
                panorama.normalization,
                out=panorama.radiance,
                where=touched,
            )
            return hits

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def render_preview(
        self,
        panorama: PanoramaView,
        points: np.ndarray | None,
        pose: np.ndarray,
        camera_width: int,
        camera_height: int,
        quality: float = -1.0,
    ) -> np.ndarray:
        """Render a BGR preview of the panorama.

        Args:
            panorama: Read-only panorama view
            points: Events of the current batch to overlay (red), or None
            pose: Current pose
            camera_width: Sensor width
            camera_height: Sensor height
            quality: Tracking quality coloring the sensor outline
                (green good, red bad); negative hides the outline

        Returns:
            (H, W, 3) uint8 BGR image
        """
        self._require_matrices("render_preview")
        with _kernel("render_preview"):
            radiance = panorama.radiance
            height, width = radiance.shape
            peak = float(radiance.max())
            scaled = radiance / peak if peak > 0 else np.zeros_like(radiance)
            gray = np.clip(scaled * 255.0, 0, 255).astype(np.uint8)
            image = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)

            if points is not None and len(points):
                u, v = self.project(points, pose, width, height)
                ui = np.mod(np.round(u).astype(np.int64), width)
                vi = np.round(v).astype(np.int64)
                inside = (vi >= 0) & (vi < height)
                image[vi[inside], ui[inside]] = (0, 0, 255)

            if quality >= 0:
                q = float(np.clip(quality, 0.0, 1.0))
                color = (0, int(255 * q), int(255 * (1.0 - q)))
                outline = _sensor_outline(camera_width, camera_height)
                u, v = self.project(outline, pose, width, height)
                ui = np.mod(np.round(u).astype(np.int64), width)
                vi = np.round(v).astype(np.int64)
                inside = (vi >= 0) & (vi < height)
                image[vi[inside], ui[inside]] = color

            return image


def _sensor_outline(width: int, height: int) -> np.ndarray:
    """Pixels along the sensor border as (N, 2)."""
    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)
    return np.concatenate(
        [
            np.column_stack([xs, np.zeros_like(xs)]),
            np.column_stack([xs, np.full_like(xs, height - 1)]),
            np.column_stack([np.zeros_like(ys), ys]),
            np.column_stack([np.full_like(ys, width - 1), ys]),
        ]
    )


def _bilinear(radiance: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Bilinear lookup, wrapping horizontally and clamping vertically."""
    height = radiance.shape[0]
    return map_coordinates(
        radiance,
        [np.clip(v, 0.0, height - 1.0), u],
        order=1,
        mode="grid-wrap",
        output=np.float64,
    )
