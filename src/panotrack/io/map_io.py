"""Export of panorama buffers and preview images."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np


def save_state(
    filename: str | Path,
    image: np.ndarray,
    as_png: bool = True,
    as_npy: bool = False,
    as_exr: bool = False,
) -> list[Path]:
    """Save a single-channel float buffer in the requested formats.

    The extension is appended to ``filename`` for every selected format.
    The PNG is normalized to the full 8-bit range.

    Args:
        filename: Output path without extension
        image: (H, W) float buffer
        as_png: Write ``<filename>.png``
        as_npy: Write ``<filename>.npy`` (raw float32 array)
        as_exr: Write ``<filename>.exr`` (high dynamic range)

    Returns:
        Paths written
    """
    image = np.asarray(image, dtype=np.float32)
    if image.ndim != 2:
        raise ValueError(f"Expected a single-channel buffer, got shape {image.shape}")

    base = str(filename)
    written: list[Path] = []

    if as_npy:
        path = Path(base + ".npy")
        np.save(path, image)
        written.append(path)

    if as_png:
        path = Path(base + ".png")
        normalized = cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)
        _imwrite(path, normalized.astype(np.uint8))
        written.append(path)

    if as_exr:
        path = Path(base + ".exr")
        _imwrite(path, image)
        written.append(path)

    return written


def save_color(filename: str | Path, image: np.ndarray) -> Path:
    """Save a BGR preview as ``<filename>.png``."""
    path = Path(str(filename) + ".png")
    _imwrite(path, np.asarray(image, dtype=np.uint8))
    return path


def _imwrite(path: Path, image: np.ndarray) -> None:
    if not cv2.imwrite(str(path), image):
        raise ValueError(f"Failed to write image: {path}")
