"""Tests for PanoramaKernels."""

import numpy as np
import pytest

from panotrack import CameraParameters, ComputeError, PanoramaKernels, PanoramaMap


class TestPanoramaKernels:
    """Test suite for PanoramaKernels class."""

    def test_unconfigured_kernels_raise(self):
        """Test that kernels refuse to run without camera matrices."""
        kernels = PanoramaKernels()
        panorama = PanoramaMap(16, 8)

        assert not kernels.is_configured
        with pytest.raises(ComputeError) as exc_info:
            kernels.sample_gradients(np.zeros((1, 2)), panorama.read_view(), np.zeros(3))
        assert exc_info.value.operation == "sample_gradients"

    def test_invalid_matrices(self):
        kernels = PanoramaKernels()
        with pytest.raises(ValueError, match="3x3"):
            kernels.set_camera_matrices(np.eye(2), np.eye(2), 1.0, 1.0, 1.0)

    def test_center_pixel_projects_to_center(self, kernels: PanoramaKernels):
        """Test that the optical axis lands in the middle of the panorama."""
        u, v = kernels.project(np.array([[32.0, 24.0]]), np.zeros(3), 256, 128)

        assert u[0] == pytest.approx(128.0)
        assert v[0] == pytest.approx(64.0)

    def test_sphere_points_are_unit(self, kernels: PanoramaKernels):
        points = np.array([[0.0, 0.0], [63.0, 47.0], [10.0, 30.0]])
        rays = kernels.sphere_points(points)
        np.testing.assert_allclose(np.linalg.norm(rays, axis=1), 1.0)

    def test_yaw_shifts_horizontally(self, kernels: PanoramaKernels):
        """Test that a rotation about sphere z moves the projection along u."""
        center = np.array([[32.0, 24.0]])
        u, v = kernels.project(center, np.array([0.0, 0.0, 0.25]), 256, 128)

        # px / pi * 0.25 = 128 / pi * 0.25
        assert u[0] == pytest.approx(128.0 + 128.0 / np.pi * 0.25)
        assert v[0] == pytest.approx(64.0)

    def test_horizontal_wrap(self, kernels: PanoramaKernels):
        """Test that u stays inside [0, W) for rays behind the camera."""
        center = np.array([[32.0, 24.0]])
        u, _ = kernels.project(center, np.array([0.0, 0.0, np.pi - 0.01]), 256, 128)
        assert 0.0 <= u[0] < 256.0

    def test_footprint_contains_center(self, kernels: PanoramaKernels):
        """Test that the footprint at zero pose is around the panorama center."""
        visible = kernels.footprint(np.zeros(3), 64, 48, 256, 128)

        assert visible.shape == (128, 256)
        assert visible[64, 128]
        assert not visible[64, 0]
        assert 0 < visible.sum() < visible.size

    def test_update_map_accumulates(self, kernels: PanoramaKernels):
        """Test occurrence, normalization and radiance after one update."""
        panorama = PanoramaMap(256, 128)
        points = np.array([[32.0, 24.0], [32.0, 24.0], [10.0, 10.0]])

        hits = kernels.update_map(
            panorama.write_view(), points, np.zeros(3), np.zeros(3), 64, 48
        )
        radiance, occurrences, normalization = panorama.snapshot()

        assert hits == 3
        assert occurrences.sum() == pytest.approx(3.0)
        assert occurrences[64, 128] == pytest.approx(2.0)
        assert normalization[64, 128] == pytest.approx(2.0)
        assert radiance[64, 128] == pytest.approx(1.0)
        # Pixels outside the footprint are untouched
        assert normalization[64, 0] == pytest.approx(1.0)
        assert radiance[64, 0] == 0.0

    def test_update_map_without_events_widens_normalization(self, kernels):
        """Test that an empty batch still counts the footprint as observed."""
        panorama = PanoramaMap(256, 128)
        kernels.update_map(
            panorama.write_view(), np.empty((0, 2)), np.zeros(3), np.zeros(3), 64, 48
        )
        radiance, occurrences, normalization = panorama.snapshot()

        assert normalization[64, 128] == pytest.approx(2.0)
        assert occurrences.sum() == 0.0
        assert radiance.sum() == 0.0

    def test_zero_map_has_zero_gradients(self, kernels: PanoramaKernels):
        panorama = PanoramaMap(256, 128)
        points = np.array([[5.0, 5.0], [32.0, 24.0], [60.0, 40.0]])

        gradients, values = kernels.sample_gradients(
            points, panorama.read_view(), np.zeros(3)
        )

        assert gradients.shape == (3, 2)
        assert np.all(gradients == 0.0)
        assert np.all(values == 0.0)

    def test_gradient_points_uphill(self, kernels: PanoramaKernels):
        """Test the central differences on a horizontal ramp."""
        panorama = PanoramaMap(256, 128)
        ramp = np.tile(np.arange(256, dtype=np.float32) * 0.01, (128, 1))
        panorama.write_view().radiance[:] = ramp

        gradients, values = kernels.sample_gradients(
            np.array([[32.0, 24.0]]), panorama.read_view(), np.zeros(3)
        )

        assert values[0] == pytest.approx(1.28, abs=1e-4)
        assert gradients[0, 0] == pytest.approx(0.01, abs=1e-5)
        assert gradients[0, 1] == pytest.approx(0.0, abs=1e-6)

    def test_sample_map_matches_gradient_values(self, kernels: PanoramaKernels):
        panorama = PanoramaMap(256, 128)
        rng = np.random.default_rng(4)
        panorama.write_view().radiance[:] = rng.uniform(0, 1, (128, 256))
        points = np.column_stack([rng.uniform(0, 63, 50), rng.uniform(0, 47, 50)])
        pose = np.array([0.02, -0.01, 0.05])

        values = kernels.sample_map(points, panorama.read_view(), pose)
        _, expected = kernels.sample_gradients(points, panorama.read_view(), pose)

        assert values.shape == (50,)
        np.testing.assert_array_equal(values, expected)

    def test_non_finite_map_raises(self, kernels: PanoramaKernels):
        """Test that a corrupted map is reported as a compute failure."""
        panorama = PanoramaMap(256, 128)
        panorama.write_view().radiance[:] = np.nan

        with pytest.raises(ComputeError, match="sample_gradients"):
            kernels.sample_gradients(
                np.array([[32.0, 24.0]]), panorama.read_view(), np.zeros(3)
            )

    def test_render_preview(self, kernels: PanoramaKernels):
        """Test preview format and the event overlay color."""
        panorama = PanoramaMap(256, 128)
        image = kernels.render_preview(
            panorama.read_view(), np.array([[32.0, 24.0]]), np.zeros(3), 64, 48
        )

        assert image.shape == (128, 256, 3)
        assert image.dtype == np.uint8
        assert tuple(image[64, 128]) == (0, 0, 255)

    def test_render_preview_outline(self, kernels: PanoramaKernels):
        """Test that the sensor outline is drawn green at full quality."""
        panorama = PanoramaMap(256, 128)
        image = kernels.render_preview(
            panorama.read_view(), None, np.zeros(3), 64, 48, quality=1.0
        )

        green = np.all(image == (0, 255, 0), axis=-1)
        assert green.any()
        assert not green[64, 128]

    def test_set_camera_matrices_changes_upscale(self, camera: CameraParameters):
        kernels = PanoramaKernels.from_parameters(camera)
        zoomed = camera.with_upscale(2.0)
        kernels.set_camera_matrices(
            zoomed.K, zoomed.K_inv, zoomed.px, zoomed.py, zoomed.upscale
        )

        u, _ = kernels.project(np.array([[42.0, 24.0]]), np.zeros(3), 256, 128)
        u_base, _ = PanoramaKernels.from_parameters(camera).project(
            np.array([[42.0, 24.0]]), np.zeros(3), 256, 128
        )
        assert kernels.upscale == 2.0
        assert u[0] - 128.0 == pytest.approx(2.0 * (u_base[0] - 128.0))
