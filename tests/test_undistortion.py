"""Tests for UndistortionMap."""

import numpy as np
import pytest

from panotrack import (
    CameraIntrinsics,
    CameraParameters,
    DistortionCoeffs,
    Event,
    UndistortionMap,
)
from panotrack.undistortion import INVALID, distort_normalized


class TestDistortionModel:
    """Test suite for the radial-tangential model."""

    def test_zero_coefficients_identity(self):
        """Test that zero coefficients leave coordinates unchanged."""
        x = np.array([-0.5, 0.0, 0.3])
        y = np.array([0.2, 0.0, -0.4])
        x_d, y_d = distort_normalized(x, y, DistortionCoeffs())
        np.testing.assert_allclose(x_d, x)
        np.testing.assert_allclose(y_d, y)

    def test_barrel_distortion_moves_inward(self):
        """Test that negative k1 pulls points towards the center."""
        x, y = np.array([0.5]), np.array([0.5])
        x_d, y_d = distort_normalized(x, y, DistortionCoeffs(k1=-0.2))
        assert abs(x_d[0]) < 0.5
        assert abs(y_d[0]) < 0.5

    def test_tangential_terms(self):
        """Test the tangential terms against the closed form."""
        d = DistortionCoeffs(p1=0.01, p2=0.02)
        x, y = np.array([0.3]), np.array([-0.2])
        x_d, y_d = distort_normalized(x, y, d)
        r2 = 0.3**2 + 0.2**2
        assert x_d[0] == pytest.approx(0.3 + 2 * 0.01 * 0.3 * -0.2 + 0.02 * (r2 + 2 * 0.09))
        assert y_d[0] == pytest.approx(-0.2 + 0.01 * (r2 + 2 * 0.04) + 2 * 0.02 * 0.3 * -0.2)


class TestUndistortionMap:
    """Test suite for UndistortionMap class."""

    def test_table_shape_and_immutability(self, distorted_camera: CameraParameters):
        """Test that the table covers the sensor and cannot be modified."""
        umap = UndistortionMap.from_parameters(distorted_camera)

        assert umap.table.shape == (64 * 48,)
        assert not umap.table.flags.writeable
        with pytest.raises(ValueError):
            umap.table[0] = 5

    def test_round_trip_within_quantization(self, distorted_camera: CameraParameters):
        """Test that distort -> lookup recovers the undistorted pixel."""
        umap = UndistortionMap.from_parameters(distorted_camera)
        intr = distorted_camera.intrinsics

        checked = 0
        for v in range(0, 48, 3):
            for u in range(0, 64, 3):
                x = np.array([(u - intr.cx) / intr.fx])
                y = np.array([(v - intr.cy) / intr.fy])
                x_d, y_d = distort_normalized(x, y, distorted_camera.distortion)
                u_d = intr.fx * x_d[0] + intr.cx
                v_d = intr.fy * y_d[0] + intr.cy
                if not (0 <= u_d < 63.5 and 0 <= v_d < 47.5):
                    continue

                result = umap.lookup(int(np.floor(u_d + 0.5)), int(np.floor(v_d + 0.5)))
                assert result is not None
                assert abs(result[0] - u) <= 2
                assert abs(result[1] - v) <= 2
                checked += 1

        assert checked > 100

    def test_invalid_regions_with_strong_barrel(self):
        """Test that distorted pixels nothing maps to are invalid."""
        umap = UndistortionMap.build(
            CameraIntrinsics(fx=50.0, fy=50.0, cx=32.0, cy=24.0),
            DistortionCoeffs(k1=-0.3),
            64,
            48,
        )
        assert umap.lookup(0, 0) is None
        assert umap.table[0] == INVALID
        assert umap.lookup(32, 24) is not None
        assert 0 < umap.num_valid < 64 * 48

    def test_lookup_out_of_bounds(self, camera: CameraParameters):
        """Test that pixels outside the sensor are invalid."""
        umap = UndistortionMap.from_parameters(camera)
        assert umap.lookup(-1, 0) is None
        assert umap.lookup(64, 0) is None
        assert umap.lookup(0, 48) is None

    def test_lookup_array_matches_scalar(self, distorted_camera: CameraParameters):
        """Test that the vectorized lookup agrees with the scalar one."""
        umap = UndistortionMap.from_parameters(distorted_camera)
        xs = np.array([0, 10, 32, 63, 70])
        ys = np.array([0, 5, 24, 47, 3])

        xu, yu, valid = umap.lookup_array(xs, ys)
        for i in range(len(xs)):
            scalar = umap.lookup(int(xs[i]), int(ys[i]))
            if scalar is None:
                assert not valid[i]
            else:
                assert valid[i]
                assert (xu[i], yu[i]) == scalar

    def test_undistort_events_drops_invalid(self):
        """Test that events on invalid pixels are dropped, others annotated."""
        umap = UndistortionMap.build(
            CameraIntrinsics(fx=50.0, fy=50.0, cx=32.0, cy=24.0),
            DistortionCoeffs(k1=-0.3),
            64,
            48,
        )
        events = [
            Event(t=0.0, x=0, y=0, polarity=1),
            Event(t=1.0, x=32, y=24, polarity=-1),
            Event(t=2.0, x=100, y=100, polarity=1),
        ]

        result = umap.undistort_events(events)

        assert len(result) == 1
        assert result[0].t == 1.0
        assert result[0].is_undistorted
        assert (result[0].x_undist, result[0].y_undist) == umap.lookup(32, 24)

    def test_scale_changes_grid(self, distorted_camera: CameraParameters):
        """Test that a finer grid yields different output for the same raw pixels."""
        base = UndistortionMap.from_parameters(distorted_camera)
        fine = UndistortionMap.from_parameters(distorted_camera.with_upscale(2.0))

        assert fine.grid_width == 128
        assert fine.grid_height == 96
        assert not np.array_equal(base.table, fine.table)

        coarse = base.lookup(32, 24)
        detailed = fine.lookup(32, 24)
        assert coarse is not None and detailed is not None
        assert coarse != detailed
        # Both refer to roughly the same sensor position
        np.testing.assert_allclose(
            fine.to_sensor(np.array(detailed, dtype=float)),
            base.to_sensor(np.array(coarse, dtype=float)),
            atol=1.5,
        )

    @pytest.mark.parametrize("scale", [1.0, 2.0, 3.0, 4.0])
    def test_finer_grid_keeps_pixel_positions(self, camera: CameraParameters, scale):
        """Test that without distortion every pixel maps back onto itself."""
        umap = UndistortionMap.from_parameters(camera.with_upscale(scale))
        ys, xs = np.mgrid[0:48, 0:64]

        xu, yu, valid = umap.lookup_array(xs.ravel(), ys.ravel())
        sensor = umap.to_sensor(np.column_stack([xu, yu]))

        assert valid.all()
        np.testing.assert_allclose(sensor[:, 0], xs.ravel())
        np.testing.assert_allclose(sensor[:, 1], ys.ravel())

    def test_invalid_scale(self, camera: CameraParameters):
        with pytest.raises(ValueError, match="Scale must be positive"):
            UndistortionMap.build(camera.intrinsics, camera.distortion, 64, 48, scale=0)
