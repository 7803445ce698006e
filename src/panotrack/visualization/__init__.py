"""Visualization of the tracker output."""

from .rerun_visualizer import RerunVisualizer

__all__ = ["RerunVisualizer"]
