"""Rerun-based visualization for panoramic event tracking."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np
import rerun as rr
import rerun.blueprint as rrb

from ..rotation import rodrigues

if TYPE_CHECKING:
    from ..tracking import TrackingFrame


class RerunVisualizer:
    """Rerun-based visualization for the tracking loop.

    Provides real-time visualization of:
    - Color preview of the panorama (events and sensor outline overlaid)
    - Tracking quality over time
    - Camera orientation
    - Status text

    Entity hierarchy:
        panorama/
            preview     - Rendered panorama preview
        tracking/
            quality     - Tracking quality scalar
            status      - Status text log
        world/
            camera      - Camera orientation (rotation only)
    """

    def __init__(self, app_name: str = "panotrack", spawn: bool = True) -> None:
        """Initialize Rerun visualization.

        Args:
            app_name: Name for the Rerun application window
            spawn: If True, automatically spawn the Rerun viewer
        """
        rr.init(app_name, spawn=spawn)
        self._setup_coordinate_system()
        self._setup_layout()

    def _setup_coordinate_system(self) -> None:
        """Camera convention: X-right, Y-down, Z-forward."""
        rr.log("world", rr.ViewCoordinates.RDF, static=True)

    def _setup_layout(self) -> None:
        """Configure the viewer layout"""
        blueprint = rrb.Blueprint(
            rrb.Vertical(
                contents=[
                    rrb.Spatial2DView(name="Panorama", origin="panorama/preview"),
                    rrb.Horizontal(
                        contents=[
                            rrb.TimeSeriesView(
                                name="Tracking quality", origin="tracking/quality"
                            ),
                            rrb.Spatial3DView(name="Orientation", origin="world"),
                            rrb.TextLogView(name="Status", origin="tracking/status"),
                        ]
                    ),
                ]
            )
        )
        rr.send_blueprint(blueprint)

    def log_preview(self, image: np.ndarray) -> None:
        """Log a BGR panorama preview."""
        rr.log("panorama/preview", rr.Image(cv2.cvtColor(image, cv2.COLOR_BGR2RGB)))

    def log_status(self, text: str) -> None:
        rr.log("tracking/status", rr.TextLog(text))

    def log_frame(self, frame: TrackingFrame) -> None:
        """Log the tracking result of one batch.

        Args:
            frame: TrackingFrame returned by the tracking loop
        """
        rr.set_time("timestamp", duration=frame.timestamp)
        rr.log("tracking/quality", rr.Scalars(frame.tracking_quality))
        self.log_camera_orientation(frame.pose)

    def log_camera_orientation(
        self,
        pose: np.ndarray,
        entity_path: str = "world/camera",
    ) -> None:
        """Log the camera orientation as a 3D transform.

        Args:
            pose: Rotation vector of the tracker
            entity_path: Rerun entity path for the camera
        """
        rr.log(
            entity_path,
            rr.Transform3D(mat3x3=rodrigues(pose)),
        )
        rr.log(
            f"{entity_path}/axes",
            rr.Arrows3D(
                vectors=np.eye(3),
                colors=[[255, 0, 0], [0, 255, 0], [0, 0, 255]],
            ),
        )
