"""SO(3) helpers for the rotation-only tracker."""

from __future__ import annotations

import numpy as np
from scipy.spatial.transform import Rotation

# Maps normalized sensor rays (x right, y down, z forward) into the
# panorama's sphere frame: x forward, y right, z down.
R_SPHERE = np.array(
    [
        [0.0, 0.0, 1.0],
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
    ],
    dtype=np.float64,
)


def skew(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix from vector.

    Args:
        v: 3D vector

    Returns:
        3x3 skew-symmetric matrix [v]x
    """
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ],
        dtype=np.float64,
    )


def rodrigues(rotvec: np.ndarray) -> np.ndarray:
    """Exponential map from a rotation vector to a rotation matrix.

    R = I*cos(theta) + [w]x*sin(theta) + w*w^T*(1 - cos(theta)),
    with theta = |v| and w = v / theta. Angles below 1e-8 give the identity.

    Args:
        rotvec: Axis-angle rotation vector (3,)

    Returns:
        3x3 rotation matrix
    """
    rotvec = np.asarray(rotvec, dtype=np.float64).reshape(3)
    theta = float(np.linalg.norm(rotvec))
    if theta < 1e-8:
        return np.eye(3)

    omega = rotvec / theta
    c = np.cos(theta)
    s = np.sin(theta)
    return np.eye(3) * c + skew(omega) * s + np.outer(omega, omega) * (1.0 - c)


def rodrigues_batch(rotvecs: np.ndarray) -> np.ndarray:
    """Vectorized exponential map for (N, 3) rotation vectors -> (N, 3, 3)."""
    rotvecs = np.asarray(rotvecs, dtype=np.float64).reshape(-1, 3)
    return Rotation.from_rotvec(rotvecs).as_matrix()


def rotvec_to_quaternion(rotvec: np.ndarray) -> np.ndarray:
    """Convert a tracker pose to a unit quaternion (x, y, z, w).

    The tracker's sphere frame is reordered to camera axes
    ``(p[1], p[2], p[0])`` before conversion, which is the convention of
    the pose log.

    Args:
        rotvec: Tracker pose (3,)

    Returns:
        Quaternion (qx, qy, qz, qw)
    """
    p = np.asarray(rotvec, dtype=np.float64).reshape(3)
    return Rotation.from_rotvec([p[1], p[2], p[0]]).as_quat()
