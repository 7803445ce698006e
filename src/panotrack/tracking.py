"""Tracking-and-mapping loop for a rotating event camera.

TrackingLoop ties together:
- EventQueue: events pushed by a producer thread
- UndistortionMap: lens undistortion of raw event coordinates
- PoseEstimator: rotation of each batch against the panorama
- MapUpdater: gated accumulation of the batch into the panorama

Usage:
    tracker = TrackingLoop(CameraParameters.from_yaml("camera.yaml"))
    tracker.set_preview_callback(on_preview)
    tracker.start()
    tracker.add_events(events)   # from any thread
    ...
    tracker.stop()
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from .camera import CameraParameters
from .event_queue import EventQueue
from .events import Event, EventBatch
from .io.event_io import save_events
from .io.map_io import save_color, save_state
from .io.pose_log import PoseLog
from .kernels import ComputeError, PanoramaKernels
from .map_updater import MapUpdater
from .panorama import PanoramaMap
from .pose_estimator import PoseEstimator
from .undistortion import UndistortionMap

logger = logging.getLogger(__name__)


@dataclass
class TrackerConfig:
    """Configuration of the tracking loop."""

    events_per_image: int = 1500  # Events per batch
    iterations: int = 10  # Gauss-Newton iterations per batch
    image_skip: int = 5  # Emit a preview every N batches (0 disables)
    acceleration: float = 0.4  # Momentum coefficient of the solver
    damping: float = 1.0  # Diagonal damping / proximal weight
    quality_threshold: float = 0.25  # Minimum quality to update the map
    bootstrap_batches: int = 10  # Batches mapped before tracking starts
    reset_pose: bool = True  # Reset map and pose on start/stop
    poll_interval: float = 0.001  # Seconds to wait when the queue is short
    log_poses: bool = True  # Write the pose log
    show_events: bool = True  # Overlay events on the preview
    show_camera_pose: bool = True  # Draw the sensor outline on the preview

    def __post_init__(self) -> None:
        if self.events_per_image < 1:
            raise ValueError(
                f"events_per_image must be >= 1, got {self.events_per_image}"
            )
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {self.iterations}")
        if self.image_skip < 0:
            raise ValueError(f"image_skip must be >= 0, got {self.image_skip}")

    @classmethod
    def from_dict(cls, data: dict) -> TrackerConfig:
        """Build a config from a mapping, e.g. the ``tracker`` YAML section.

        Raises:
            ValueError: On unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown tracker settings: {sorted(unknown)}")
        return cls(**data)


@dataclass
class TrackingState:
    """Mutable state of the loop, changed at batch boundaries only."""

    running: bool = False
    tracking_quality: float = 1.0
    image_id: int = 0


@dataclass
class TrackingTiming:
    """Timing breakdown for one batch."""

    undistort_ms: float = 0.0
    track_ms: float = 0.0
    map_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class TrackingFrame:
    """Output of the tracker for one batch.

    Attributes:
        image_id: Batch counter value for this batch (before increment)
        timestamp: Batch midpoint time in seconds
        pose: Rotation vector after the batch
        tracking_quality: Quality of the pose estimate in [0, 1]
        success: False if the pose estimate failed
        tracked: True if a pose estimate ran (after bootstrap)
        map_updated: True if the batch was accumulated into the panorama
        num_events: Events in the batch
        num_valid_events: Events surviving undistortion
        timing: Processing time breakdown
    """

    image_id: int
    timestamp: float
    pose: np.ndarray
    tracking_quality: float
    success: bool
    tracked: bool
    map_updated: bool
    num_events: int
    num_valid_events: int
    timing: TrackingTiming = field(default_factory=TrackingTiming)


class TrackingLoop:
    """Consumer loop estimating rotation and building the panorama.

    The queue is the only state shared with the producer. Pose, panorama
    and tracking state belong to the consumer; ``stop`` only takes effect
    between batches.
    """

    def __init__(
        self,
        camera: CameraParameters,
        config: TrackerConfig | None = None,
        kernels: PanoramaKernels | None = None,
        pose_log: PoseLog | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            camera: Camera and panorama parameters
            config: Loop configuration (default: TrackerConfig())
            kernels: Compute primitives (default: new PanoramaKernels)
            pose_log: Pose log (default: inside camera.pose_output_dir)
        """
        self._camera = camera
        self._config = config or TrackerConfig()

        self._kernels = kernels or PanoramaKernels()
        self._kernels.set_camera_matrices(
            camera.K, camera.K_inv, camera.px, camera.py, camera.upscale
        )

        self._queue = EventQueue()
        self._panorama = PanoramaMap(camera.output_width, camera.output_height)
        self._undistortion = UndistortionMap.from_parameters(camera)
        self._estimator = PoseEstimator(
            self._kernels,
            iterations=self._config.iterations,
            acceleration=self._config.acceleration,
            damping=self._config.damping,
        )
        self._updater = MapUpdater(
            self._kernels,
            camera.width,
            camera.height,
            bootstrap_batches=self._config.bootstrap_batches,
            quality_threshold=self._config.quality_threshold,
        )
        self._pose_log = pose_log or PoseLog.in_directory(camera.pose_output_dir)

        self._pose = np.zeros(3)
        self._old_pose = np.zeros(3)
        self._state = TrackingState()
        self._preview: np.ndarray | None = None

        self._preview_callback: Callable[[np.ndarray], None] | None = None
        self._info_callback: Callable[[str], None] | None = None
        self._frame_callback: Callable[[TrackingFrame], None] | None = None

        # Serializes batch processing with parameter changes
        self._track_lock = threading.RLock()
        # Guards the drain-to-track handoff seen by wait_until_drained
        self._batch_done = threading.Condition()
        self._in_flight = False
        self._idle = threading.Event()
        self._idle.set()
        self._loop_ident: int | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def add_events(self, events: Sequence[Event]) -> None:
        """Append events to the queue (callable from any thread)."""
        self._queue.push_batch(events)

    def clear_events(self) -> None:
        self._queue.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Reset according to ``reset_pose`` and process batches until stopped.

        Blocks the calling thread. Compute errors are fatal: they are logged,
        the loop is marked stopped and the error propagates.
        """
        self._begin()
        self._loop()

    def start(self) -> threading.Thread:
        """Run the loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Tracking loop already running")

        self._begin()
        self._idle.clear()
        self._thread = threading.Thread(
            target=self._loop, name="tracking-loop", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Stop the loop after the in-flight batch and reset.

        Clears the queue, then waits for the loop to go idle (unless called
        from the loop thread itself) and performs the same reset as start.
        """
        self._state.running = False
        self._queue.clear()
        if threading.get_ident() != self._loop_ident:
            self._idle.wait()
        self._reset()
        self._pose_log.close()
        logger.info("Tracking stopped")

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def close(self) -> None:
        """Stop if running and release the pose log."""
        if self._state.running:
            self.stop()
        self.join()
        self._pose_log.close()

    def __enter__(self) -> TrackingLoop:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _begin(self) -> None:
        self._reset()
        self._state.running = True
        logger.info(
            "Tracking started: %d events/batch, %d iterations, upscale %.2f",
            self._config.events_per_image,
            self._config.iterations,
            self._camera.upscale,
        )

    def _reset(self) -> None:
        if self._config.reset_pose:
            self._panorama.reset()
            self._pose = np.zeros(3)
            self._old_pose = np.zeros(3)
        self._queue.clear_history()
        self._state.tracking_quality = 1.0
        self._state.image_id = 0

    def _loop(self) -> None:
        self._idle.clear()
        self._loop_ident = threading.get_ident()
        try:
            while self._state.running:
                n = self._config.events_per_image
                with self._batch_done:
                    events = self._queue.try_drain(n)
                    self._in_flight = bool(events)
                if not events:
                    self._queue.wait_for(n, timeout=self._config.poll_interval)
                    continue
                try:
                    self.track(events)
                finally:
                    with self._batch_done:
                        self._in_flight = False
                        self._batch_done.notify_all()
        except ComputeError:
            logger.exception("Fatal compute error, tracking aborted")
            self._state.running = False
            raise
        finally:
            self._loop_ident = None
            self._idle.set()
            with self._batch_done:
                self._batch_done.notify_all()

    def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Block until less than one batch is queued and no batch is in flight.

        Also returns once the loop is no longer running.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            False if the timeout expired first
        """

        def drained() -> bool:
            if not self._state.running:
                return True
            return (
                not self._in_flight
                and len(self._queue) < self._config.events_per_image
            )

        with self._batch_done:
            return self._batch_done.wait_for(drained, timeout)

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    def track(self, events: Sequence[Event]) -> TrackingFrame:
        """Process one batch: undistort, estimate pose, update map, preview.

        Args:
            events: Batch of raw events in time order

        Returns:
            TrackingFrame describing the batch
        """
        with self._track_lock:
            return self._track(EventBatch(events))

    def _track(self, batch: EventBatch) -> TrackingFrame:
        start_time = time.perf_counter()
        timing = TrackingTiming()
        image_id = self._state.image_id
        timestamp = batch.timestamp if len(batch) else 0.0

        undistorted = EventBatch(self._undistortion.undistort_events(batch))
        points = self._undistortion.to_sensor(undistorted.points())
        timing.undistort_ms = (time.perf_counter() - start_time) * 1000

        success = True
        tracked = image_id > self._config.bootstrap_batches
        if tracked:
            estimate = self._estimator.estimate(
                points, self._panorama.read_view(), self._pose
            )
            self._old_pose = estimate.old_pose
            self._pose = estimate.pose
            self._state.tracking_quality = estimate.tracking_quality
            success = estimate.success
            timing.track_ms = estimate.elapsed_ms

            if self._config.log_poses:
                self._pose_log.write(timestamp, self._pose)

        map_updated = False
        if len(points) and self._updater.should_update(
            image_id, success, self._state.tracking_quality
        ):
            timing.map_ms = self._updater.update(
                self._panorama.write_view(), self._pose, self._old_pose, points
            )
            map_updated = True

        self._state.image_id += 1
        timing.total_ms = (time.perf_counter() - start_time) * 1000

        if self._config.image_skip > 0 and (
            self._state.image_id % self._config.image_skip == 0
        ):
            self._emit_preview(points, timing)

        logger.debug(
            "Batch %d: %d/%d events, quality %.3f, map %s, %.2f ms",
            image_id,
            len(points),
            len(batch),
            self._state.tracking_quality,
            "updated" if map_updated else "kept",
            timing.total_ms,
        )

        frame = TrackingFrame(
            image_id=image_id,
            timestamp=timestamp,
            pose=self._pose.copy(),
            tracking_quality=self._state.tracking_quality,
            success=success,
            tracked=tracked,
            map_updated=map_updated,
            num_events=len(batch),
            num_valid_events=len(points),
            timing=timing,
        )
        if self._frame_callback is not None:
            self._frame_callback(frame)
        return frame

    def _emit_preview(self, points: np.ndarray, timing: TrackingTiming) -> None:
        config = self._config
        self._preview = self._kernels.render_preview(
            self._panorama.read_view(),
            points if config.show_events else None,
            self._pose,
            self._camera.width,
            self._camera.height,
            self._state.tracking_quality if config.show_camera_pose else -1.0,
        )
        if self._info_callback is not None:
            self._info_callback(
                f"Track: {timing.track_ms:.2f}ms Map: {timing.map_ms:.2f}ms. "
                f"Quality: {self._state.tracking_quality:.3f}"
            )
        if self._preview_callback is not None:
            self._preview_callback(self._preview)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def update_scale(self, value: float) -> None:
        """Change the panorama zoom factor.

        Recomputes the camera matrices used by the kernels and rebuilds the
        undistortion table at the new resolution.
        """
        if value <= 0:
            raise ValueError(f"Upscale must be positive, got {value}")

        with self._track_lock:
            self._camera = self._camera.with_upscale(value)
            self._kernels.set_camera_matrices(
                self._camera.K,
                self._camera.K_inv,
                self._camera.px,
                self._camera.py,
                self._camera.upscale,
            )
            self._undistortion = UndistortionMap.from_parameters(self._camera)
        logger.info("Upscale set to %.2f", value)

    @property
    def events_per_image(self) -> int:
        return self._config.events_per_image

    @events_per_image.setter
    def events_per_image(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"events_per_image must be >= 1, got {value}")
        self._config.events_per_image = int(value)

    @property
    def iterations(self) -> int:
        return self._config.iterations

    @iterations.setter
    def iterations(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"iterations must be >= 1, got {value}")
        self._config.iterations = int(value)
        self._estimator.iterations = int(value)

    @property
    def image_skip(self) -> int:
        return self._config.image_skip

    @image_skip.setter
    def image_skip(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"image_skip must be >= 0, got {value}")
        self._config.image_skip = int(value)

    @property
    def reset_pose(self) -> bool:
        return self._config.reset_pose

    @reset_pose.setter
    def reset_pose(self, value: bool) -> None:
        self._config.reset_pose = bool(value)

    def set_preview_callback(self, callback: Callable[[np.ndarray], None]) -> None:
        """Set callback receiving every rendered BGR preview."""
        self._preview_callback = callback

    def set_info_callback(self, callback: Callable[[str], None]) -> None:
        """Set callback receiving the status text of every preview."""
        self._info_callback = callback

    def set_frame_callback(self, callback: Callable[[TrackingFrame], None]) -> None:
        """Set callback receiving the TrackingFrame of every batch."""
        self._frame_callback = callback

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def save_events(self, path: str | Path) -> int:
        """Write the most recently pushed events to a text file."""
        return save_events(path, self._queue.history())

    def save_current_state(self, filename: str | Path) -> Path:
        """Save the color preview as ``<filename>.png``, rendering it if needed.

        Waits for an in-flight batch so the preview matches a finished update.
        """
        with self._track_lock:
            if self._preview is None:
                self._preview = self._kernels.render_preview(
                    self._panorama.read_view(),
                    None,
                    self._pose,
                    self._camera.width,
                    self._camera.height,
                    -1.0,
                )
            preview = self._preview
        return save_color(filename, preview)

    def save_map(
        self,
        filename: str | Path,
        as_png: bool = True,
        as_npy: bool = False,
        as_exr: bool = False,
    ) -> list[Path]:
        """Export the panorama radiance buffer.

        The buffer is copied under the batch lock, so a concurrent map update
        never leaks into the file.
        """
        with self._track_lock:
            radiance = self._panorama.read_view().radiance.copy()
        return save_state(
            filename,
            radiance,
            as_png=as_png,
            as_npy=as_npy,
            as_exr=as_exr,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def pose(self) -> np.ndarray:
        """Current rotation vector."""
        return self._pose.copy()

    @property
    def old_pose(self) -> np.ndarray:
        """Rotation vector before the most recent estimate."""
        return self._old_pose.copy()

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def panorama(self) -> PanoramaMap:
        return self._panorama

    @property
    def undistortion_map(self) -> UndistortionMap:
        return self._undistortion

    @property
    def camera(self) -> CameraParameters:
        return self._camera

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def queue(self) -> EventQueue:
        return self._queue

    @property
    def preview(self) -> np.ndarray | None:
        """Most recent color preview, if any."""
        return self._preview

    @property
    def is_running(self) -> bool:
        return self._state.running
