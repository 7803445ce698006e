"""Tests for SO(3) helpers."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from panotrack.rotation import (
    R_SPHERE,
    rodrigues,
    rodrigues_batch,
    rotvec_to_quaternion,
    skew,
)


class TestRotation:
    """Test suite for rotation helpers."""

    def test_skew_is_cross_product(self):
        """Test that skew(a) @ b equals a x b."""
        a = np.array([0.3, -1.2, 2.0])
        b = np.array([-0.7, 0.5, 1.1])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))
        np.testing.assert_allclose(skew(a), -skew(a).T)

    def test_rodrigues_small_angle_is_identity(self):
        """Test that angles below the threshold give exactly the identity."""
        np.testing.assert_array_equal(rodrigues(np.array([1e-9, 0.0, 0.0])), np.eye(3))
        np.testing.assert_array_equal(rodrigues(np.zeros(3)), np.eye(3))

    @pytest.mark.parametrize(
        "rotvec",
        [
            [0.1, 0.0, 0.0],
            [0.0, -0.5, 0.2],
            [1.0, 2.0, -0.5],
            [0.0, 0.0, np.pi - 1e-3],
        ],
    )
    def test_rodrigues_matches_scipy(self, rotvec):
        """Test the closed form against scipy and check orthonormality."""
        R = rodrigues(np.array(rotvec))

        np.testing.assert_allclose(R, Rotation.from_rotvec(rotvec).as_matrix(), atol=1e-12)
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(R) == pytest.approx(1.0)

    def test_rodrigues_batch_matches_single(self):
        """Test that the batched map agrees with the single one."""
        rotvecs = np.array([[0.0, 0.0, 0.0], [0.2, -0.1, 0.4], [-1.0, 0.5, 0.0]])
        batch = rodrigues_batch(rotvecs)

        assert batch.shape == (3, 3, 3)
        for i in range(3):
            np.testing.assert_allclose(batch[i], rodrigues(rotvecs[i]), atol=1e-12)

    def test_sphere_frame(self):
        """Test that the optical axis maps to sphere x and image x to sphere y."""
        np.testing.assert_array_equal(R_SPHERE @ [0.0, 0.0, 1.0], [1.0, 0.0, 0.0])
        np.testing.assert_array_equal(R_SPHERE @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        np.testing.assert_array_equal(R_SPHERE @ [0.0, 1.0, 0.0], [0.0, 0.0, 1.0])

    def test_quaternion_of_zero_pose(self):
        """Test that the zero pose is the identity quaternion."""
        np.testing.assert_allclose(rotvec_to_quaternion(np.zeros(3)), [0.0, 0.0, 0.0, 1.0])

    def test_quaternion_axis_reordering(self):
        """Test that a rotation about sphere z becomes a rotation about camera y."""
        q = rotvec_to_quaternion(np.array([0.0, 0.0, 0.5]))

        assert q[0] == pytest.approx(0.0)
        assert q[1] == pytest.approx(np.sin(0.25))
        assert q[2] == pytest.approx(0.0)
        assert q[3] == pytest.approx(np.cos(0.25))
        assert np.linalg.norm(q) == pytest.approx(1.0)
