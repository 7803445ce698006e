"""Rotation estimation by aligning event batches with the panorama.

Each batch is aligned with a fixed number of accelerated Gauss-Newton
iterations. Per iteration the events are lifted onto the unit sphere,
rotated by the current estimate, projected into the panorama and compared
with the map. The Jacobian of the map value with respect to the rotation
vector is assembled with the chain rule

    dM/dv = dM/d(u,v) * d(u,v)/dX * dX/dG * dG/dv

where G are the nine entries of the rotation matrix. The residual of an
event is 1 - M: an aligned batch lands on the bright, saturated parts of
the map. The update is a proximal Gauss-Newton step anchored at the batch's
initial pose, followed by a momentum extrapolation. A step that lowers the
mean map value at the events is halved a few times and dropped if it still
does not help.

There is no convergence test: the iteration count bounds the per-batch cost.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from .rotation import rodrigues, skew

if TYPE_CHECKING:
    from .kernels import PanoramaKernels
    from .panorama import PanoramaView

logger = logging.getLogger(__name__)


@dataclass
class PoseEstimate:
    """Result of aligning one event batch.

    Attributes:
        pose: Estimated rotation vector after the final iteration
        old_pose: Rotation vector before the estimate
        tracking_quality: Mean map value at the events under the final pose,
            scaled by the upscale factor and clamped to [0, 1]
        success: False if the estimate could not be computed
        iterations: Number of iterations run
        elapsed_ms: Wall time of the estimate
    """

    pose: np.ndarray
    old_pose: np.ndarray
    tracking_quality: float
    success: bool
    iterations: int = 0
    elapsed_ms: float = 0.0


def projection_jacobian(
    rays: np.ndarray, px: float, py: float, upscale: float
) -> np.ndarray:
    """Derivative of the panorama projection with respect to the ray.

    Args:
        rays: (N, 3) rotated rays
        px: Horizontal angular scale
        py: Vertical angular scale
        upscale: Panorama zoom factor

    Returns:
        (N, 2, 3) array of d(u, v)/dX
    """
    x0, x1, x2 = rays[:, 0], rays[:, 1], rays[:, 2]
    horizontal_sq = np.maximum(x0 * x0 + x1 * x1, 1e-12)
    norm_cubed = (horizontal_sq + x2 * x2) ** 1.5

    d_pi = np.zeros((len(rays), 2, 3), dtype=np.float64)
    d_pi[:, 0, 0] = -px * x1 / horizontal_sq / np.pi
    d_pi[:, 0, 1] = px * x0 / horizontal_sq / np.pi
    d_pi[:, 1, 0] = -py * x0 * x2 / norm_cubed
    d_pi[:, 1, 1] = -py * x1 * x2 / norm_cubed
    d_pi[:, 1, 2] = py * horizontal_sq / norm_cubed
    return d_pi * upscale


def rotation_jacobian(R: np.ndarray) -> np.ndarray:
    """dG/dv evaluated at the rows of R, as a (9, 3) matrix."""
    return np.vstack([skew(-R[0]), skew(-R[1]), skew(-R[2])])


class PoseEstimator:
    """Accelerated proximal Gauss-Newton rotation solver."""

    def __init__(
        self,
        kernels: PanoramaKernels,
        iterations: int = 10,
        acceleration: float = 0.4,
        damping: float = 1.0,
        max_step_halvings: int = 3,
    ) -> None:
        """Initialize the estimator.

        Args:
            kernels: Compute primitives (must have camera matrices set)
            iterations: Gauss-Newton iterations per batch
            acceleration: Momentum coefficient applied after each step
            damping: Weight of the diagonal damping and of the proximal term
            max_step_halvings: How often a step that lowers the mean map value
                is halved before it is dropped
        """
        if iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {iterations}")
        self._kernels = kernels
        self.iterations = iterations
        self.acceleration = acceleration
        self.damping = damping
        self.max_step_halvings = max_step_halvings

    def estimate(
        self,
        points: np.ndarray,
        panorama: PanoramaView,
        pose: np.ndarray,
    ) -> PoseEstimate:
        """Align a batch of undistorted events with the panorama.

        Args:
            points: (N, 2) undistorted event positions in sensor pixels
            panorama: Read-only view of the current map
            pose: Current rotation vector, used as seed and proximal anchor

        Returns:
            PoseEstimate for the batch
        """
        start_time = time.perf_counter()
        init_pose = np.asarray(pose, dtype=np.float64).reshape(3).copy()
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)

        if len(points) == 0:
            logger.debug("Empty batch, keeping pose %s", init_pose)
            return PoseEstimate(
                pose=init_pose.copy(),
                old_pose=init_pose.copy(),
                tracking_quality=0.0,
                success=False,
            )

        kernels = self._kernels
        sphere = kernels.sphere_points(points)
        alpha = self.damping

        current = init_pose.copy()
        accel_pose = init_pose.copy()

        for _ in range(self.iterations):
            R = rodrigues(accel_pose)
            rays = sphere @ R.T
            gradients, values = kernels.sample_gradients(points, panorama, accel_pose)
            # Events of an aligned batch land on saturated map pixels
            residuals = 1.0 - values

            d_pi = projection_jacobian(rays, kernels.px, kernels.py, kernels.upscale)
            # dX/dG = [X0*I, X1*I, X2*I] contracted with dG/dv (9x3)
            d_g = rotation_jacobian(R).reshape(3, 3, 3)
            d_ray = np.einsum("ni,ijk->njk", rays, d_g)
            # J is dM/dv, so the residual Jacobian is -J
            J = np.einsum("ni,nij,njk->nk", gradients, d_pi, d_ray)

            JtJ = J.T @ J
            Jtr = J.T @ -residuals

            # Gauss-Newton with prox toward the batch's initial pose
            lhs = JtJ + alpha * np.diag(np.diag(JtJ))
            rhs = Jtr + alpha * (accel_pose - init_pose)
            # Least squares so a map without signal yields a zero step
            step = np.linalg.lstsq(lhs, rhs, rcond=None)[0]

            previous = current
            current = self._limit_step(
                points, panorama, accel_pose, step, float(np.mean(values))
            )
            accel_pose = current + self.acceleration * (current - previous)

        elapsed_ms = (time.perf_counter() - start_time) * 1000

        if not np.all(np.isfinite(current)):
            logger.warning("Pose estimate diverged, keeping %s", init_pose)
            return PoseEstimate(
                pose=init_pose.copy(),
                old_pose=init_pose.copy(),
                tracking_quality=0.0,
                success=False,
                iterations=self.iterations,
                elapsed_ms=elapsed_ms,
            )

        values = kernels.sample_map(points, panorama, current)
        quality = float(np.mean(values) * kernels.upscale)
        quality = float(np.clip(quality, 0.0, 1.0)) if np.isfinite(quality) else 0.0

        return PoseEstimate(
            pose=current,
            old_pose=init_pose,
            tracking_quality=quality,
            success=True,
            iterations=self.iterations,
            elapsed_ms=elapsed_ms,
        )

    def _limit_step(
        self,
        points: np.ndarray,
        panorama: PanoramaView,
        pose: np.ndarray,
        step: np.ndarray,
        baseline: float,
    ) -> np.ndarray:
        """Halve the step until the mean map value does not fall below baseline.

        Returns ``pose`` unchanged when no halving helps.
        """
        for _ in range(self.max_step_halvings + 1):
            candidate = pose - step
            if np.all(np.isfinite(candidate)):
                values = self._kernels.sample_map(points, panorama, candidate)
                if np.mean(values) >= baseline:
                    return candidate
            step = 0.5 * step
        logger.debug("No ascent from %s, step dropped", pose)
        return pose.copy()
