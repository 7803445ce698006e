"""Shared fixtures: a small synthetic camera and random events."""

from pathlib import Path

import numpy as np
import pytest

from panotrack import (
    CameraIntrinsics,
    CameraParameters,
    DistortionCoeffs,
    Event,
    PanoramaKernels,
)


def make_events(
    n: int,
    width: int = 64,
    height: int = 48,
    t0: float = 0.0,
    dt: float = 1e-5,
    seed: int = 0,
) -> list[Event]:
    """Create n events at random sensor pixels with increasing timestamps."""
    rng = np.random.default_rng(seed)
    xs = rng.integers(0, width, size=n)
    ys = rng.integers(0, height, size=n)
    polarities = rng.choice([-1, 1], size=n)
    return [
        Event(t=t0 + i * dt, x=int(xs[i]), y=int(ys[i]), polarity=int(polarities[i]))
        for i in range(n)
    ]


@pytest.fixture
def camera(tmp_path: Path) -> CameraParameters:
    """64x48 sensor without distortion mapping into a 256x128 panorama."""
    return CameraParameters(
        width=64,
        height=48,
        intrinsics=CameraIntrinsics(fx=50.0, fy=50.0, cx=32.0, cy=24.0),
        distortion=DistortionCoeffs(),
        output_width=256,
        output_height=128,
        pose_output_dir=tmp_path,
    )


@pytest.fixture
def distorted_camera(tmp_path: Path) -> CameraParameters:
    """Same sensor with mild barrel distortion."""
    return CameraParameters(
        width=64,
        height=48,
        intrinsics=CameraIntrinsics(fx=50.0, fy=50.0, cx=32.0, cy=24.0),
        distortion=DistortionCoeffs(k1=-0.05, k2=0.0, p1=0.0, p2=0.0),
        output_width=256,
        output_height=128,
        pose_output_dir=tmp_path,
    )


@pytest.fixture
def kernels(camera: CameraParameters) -> PanoramaKernels:
    return PanoramaKernels.from_parameters(camera)
