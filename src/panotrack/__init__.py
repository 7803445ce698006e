"""panotrack - real-time rotation tracking and panoramic mapping for event cameras."""

import os

# OpenCV only writes .exr panoramas when this is set before the codec is used
os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import CameraIntrinsics, CameraParameters, DistortionCoeffs
from .events import Event, EventBatch, events_from_arrays
from .event_queue import EventQueue
from .undistortion import UndistortionMap
from .rotation import rodrigues, rotvec_to_quaternion, skew
from .panorama import MutablePanoramaView, PanoramaMap, PanoramaView
from .kernels import ComputeError, PanoramaKernels
from .pose_estimator import PoseEstimate, PoseEstimator
from .map_updater import MapUpdater
from .tracking import (
    TrackerConfig,
    TrackingFrame,
    TrackingLoop,
    TrackingState,
    TrackingTiming,
)
from .io import PoseLog, load_events, save_events, save_state
from .visualization import RerunVisualizer

__all__ = [
    "__version__",
    # Camera
    "CameraParameters",
    "CameraIntrinsics",
    "DistortionCoeffs",
    # Events
    "Event",
    "EventBatch",
    "EventQueue",
    "events_from_arrays",
    # Undistortion
    "UndistortionMap",
    # Rotation
    "rodrigues",
    "rotvec_to_quaternion",
    "skew",
    # Panorama
    "PanoramaMap",
    "PanoramaView",
    "MutablePanoramaView",
    "PanoramaKernels",
    "ComputeError",
    # Tracking
    "PoseEstimator",
    "PoseEstimate",
    "MapUpdater",
    "TrackingLoop",
    "TrackerConfig",
    "TrackingState",
    "TrackingFrame",
    "TrackingTiming",
    # I/O
    "PoseLog",
    "load_events",
    "save_events",
    "save_state",
    # Visualization
    "RerunVisualizer",
]
