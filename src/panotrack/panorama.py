"""Panorama buffers accumulated by the tracker.

The panorama consists of three co-registered float buffers:

- ``radiance``: map value sampled by tracking (event probability)
- ``occurrences``: number of events that landed on each pixel
- ``normalization``: blend weight, number of times a pixel was in view + 1

Access goes through two capability views: the pose estimator receives a
``PanoramaView`` whose arrays are read-only, the map updater receives a
``MutablePanoramaView``.
"""

from __future__ import annotations

import numpy as np


def _readonly(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.setflags(write=False)
    return view


class PanoramaView:
    """Read-only access to the panorama buffers."""

    def __init__(self, panorama: PanoramaMap) -> None:
        self._panorama = panorama

    @property
    def radiance(self) -> np.ndarray:
        return _readonly(self._panorama._radiance)

    @property
    def occurrences(self) -> np.ndarray:
        return _readonly(self._panorama._occurrences)

    @property
    def normalization(self) -> np.ndarray:
        return _readonly(self._panorama._normalization)

    @property
    def shape(self) -> tuple[int, int]:
        return self._panorama.shape

    @property
    def width(self) -> int:
        return self._panorama.width

    @property
    def height(self) -> int:
        return self._panorama.height


class MutablePanoramaView(PanoramaView):
    """Read-write access to the panorama buffers, handed to the map updater."""

    @property
    def radiance(self) -> np.ndarray:
        return self._panorama._radiance

    @property
    def occurrences(self) -> np.ndarray:
        return self._panorama._occurrences

    @property
    def normalization(self) -> np.ndarray:
        return self._panorama._normalization


class PanoramaMap:
    """Owner of the three panorama buffers.

    All buffers share the same (height, width) shape for their whole
    lifetime; ``reset`` refills them in place.
    """

    def __init__(self, width: int, height: int) -> None:
        """Allocate the panorama.

        Args:
            width: Panorama width in pixels
            height: Panorama height in pixels
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Panorama size must be positive, got {width}x{height}")

        self._radiance = np.zeros((height, width), dtype=np.float32)
        self._occurrences = np.zeros((height, width), dtype=np.float32)
        self._normalization = np.ones((height, width), dtype=np.float32)

    def reset(self) -> None:
        """Reset buffers to (radiance=0, occurrences=0, normalization=1)."""
        self._radiance.fill(0.0)
        self._occurrences.fill(0.0)
        self._normalization.fill(1.0)

    def read_view(self) -> PanoramaView:
        return PanoramaView(self)

    def write_view(self) -> MutablePanoramaView:
        return MutablePanoramaView(self)

    def snapshot(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return copies of (radiance, occurrences, normalization)."""
        return (
            self._radiance.copy(),
            self._occurrences.copy(),
            self._normalization.copy(),
        )

    @property
    def shape(self) -> tuple[int, int]:
        """Return buffer shape as (height, width)."""
        return self._radiance.shape

    @property
    def width(self) -> int:
        return self._radiance.shape[1]

    @property
    def height(self) -> int:
        return self._radiance.shape[0]

    def __repr__(self) -> str:
        return (
            f"PanoramaMap({self.width}x{self.height}, "
            f"events={float(self._occurrences.sum()):.0f})"
        )
