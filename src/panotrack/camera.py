"""Event camera calibration and panorama projection parameters."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

import numpy as np
import yaml

DEFAULT_OUTPUT_SIZE = (2048, 1024)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass(frozen=True)
class DistortionCoeffs:
    """Radial-tangential distortion coefficients."""

    k1: float = 0.0  # Radial distortion coefficient 1
    k2: float = 0.0  # Radial distortion coefficient 2
    p1: float = 0.0  # Tangential distortion coefficient 1
    p2: float = 0.0  # Tangential distortion coefficient 2

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (4,) array for OpenCV."""
        return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)


@dataclass(frozen=True)
class CameraParameters:
    """Full parameter set of the event camera and the panorama it maps into.

    Attributes:
        width: Sensor width in pixels
        height: Sensor height in pixels
        intrinsics: Pinhole intrinsics of the sensor
        distortion: Lens distortion of the sensor
        output_width: Panorama width in pixels
        output_height: Panorama height in pixels
        px: Horizontal angular scale (panorama pixels per pi radians)
        py: Vertical angular scale (panorama pixels per unit elevation)
        upscale: Panorama zoom factor applied on top of px/py
        pose_output_dir: Directory receiving the pose log
    """

    width: int
    height: int
    intrinsics: CameraIntrinsics
    distortion: DistortionCoeffs = field(default_factory=DistortionCoeffs)
    output_width: int = DEFAULT_OUTPUT_SIZE[0]
    output_height: int = DEFAULT_OUTPUT_SIZE[1]
    px: float | None = None
    py: float | None = None
    upscale: float = 1.0
    pose_output_dir: Path = Path(".")

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Sensor size must be positive, got {self.width}x{self.height}"
            )
        if self.output_width <= 0 or self.output_height <= 0:
            raise ValueError(
                f"Output size must be positive, "
                f"got {self.output_width}x{self.output_height}"
            )
        if self.upscale <= 0:
            raise ValueError(f"Upscale must be positive, got {self.upscale}")

        # Frozen dataclass: fill derived defaults through object.__setattr__
        if self.px is None:
            object.__setattr__(self, "px", self.output_width / 2.0)
        if self.py is None:
            object.__setattr__(self, "py", self.output_height / 2.0)
        object.__setattr__(self, "pose_output_dir", Path(self.pose_output_dir))

    @property
    def K(self) -> np.ndarray:
        """3x3 sensor intrinsic matrix."""
        return self.intrinsics.to_matrix()

    @property
    def K_inv(self) -> np.ndarray:
        """Inverse of the sensor intrinsic matrix."""
        return np.linalg.inv(self.K)

    @property
    def sensor_size(self) -> tuple[int, int]:
        """Return sensor size as (width, height)."""
        return (self.width, self.height)

    @property
    def output_size(self) -> tuple[int, int]:
        """Return panorama size as (width, height)."""
        return (self.output_width, self.output_height)

    def with_upscale(self, upscale: float) -> CameraParameters:
        """Return a copy with a new panorama zoom factor."""
        return replace(self, upscale=float(upscale))

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraParameters:
        """Load camera parameters from a calibration YAML file.

        Expected keys::

            resolution: [width, height]
            intrinsics: [fx, fy, cx, cy]
            distortion_coefficients: [k1, k2, p1, p2]   # optional
            output_size: [width, height]                # optional
            angular_scale: [px, py]                     # optional
            upscale: 1.0                                # optional
            pose_output_dir: path                       # optional

        Args:
            yaml_path: Path to calibration file

        Returns:
            CameraParameters

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid calibration file {yaml_path}")

        return cls.from_dict(data, source=str(yaml_path))

    @classmethod
    def from_dict(cls, data: dict, source: str = "<dict>") -> CameraParameters:
        """Build camera parameters from a parsed calibration mapping."""
        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {source}")

        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {source}")

        intrinsics = CameraIntrinsics(*(float(v) for v in intrinsics_list))

        distortion_list = data.get("distortion_coefficients", [0.0] * 4)
        if len(distortion_list) != 4:
            raise ValueError(f"Invalid distortion coefficients in {source}")
        distortion = DistortionCoeffs(*(float(v) for v in distortion_list))

        output_size = data.get("output_size", list(DEFAULT_OUTPUT_SIZE))
        if len(output_size) != 2:
            raise ValueError(f"Invalid output_size in {source}")

        px = py = None
        if "angular_scale" in data:
            scale = data["angular_scale"]
            if len(scale) != 2:
                raise ValueError(f"Invalid angular_scale in {source}")
            px, py = float(scale[0]), float(scale[1])

        return cls(
            width=int(resolution[0]),
            height=int(resolution[1]),
            intrinsics=intrinsics,
            distortion=distortion,
            output_width=int(output_size[0]),
            output_height=int(output_size[1]),
            px=px,
            py=py,
            upscale=float(data.get("upscale", 1.0)),
            pose_output_dir=Path(data.get("pose_output_dir", ".")),
        )
