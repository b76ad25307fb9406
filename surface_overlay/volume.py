"""Multi-frame volume used as the reference signal for correlation mode."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

import nibabel as nib
import numpy as np
from nibabel.affines import apply_affine
from PyQt5.QtCore import QObject, pyqtSignal

LOGGER = logging.getLogger(__name__)


class CorrelationSourceVolume(QObject):
    """Wrap a (possibly 4-D) image and track a cursor position in RAS space.

    The image data is kept behind nibabel's array proxy so only the voxels
    that are actually queried get read from disk.
    """

    slice_position_changed = pyqtSignal()
    closed = pyqtSignal()

    def __init__(self, image, name: str = "") -> None:
        super().__init__()
        shape = tuple(int(s) for s in image.shape)
        if len(shape) not in (3, 4):
            raise ValueError(f"Correlation source must be 3-D or 4-D, got shape {shape}")
        self._image = image
        self._shape = shape
        self._affine = np.asarray(image.affine, dtype=np.float64)
        self._inverse = np.linalg.inv(self._affine)
        self._name = name
        self._closed = False

        centre = (np.asarray(shape[:3], dtype=np.float64) - 1.0) / 2.0
        self._slice_position = apply_affine(self._affine, centre)

    @classmethod
    def from_file(cls, path: Path | str) -> "CorrelationSourceVolume":
        path = Path(path)
        image = nib.load(str(path))
        LOGGER.info("Loaded correlation source %s with shape %s", path, image.shape)
        return cls(image, name=path.name)

    @classmethod
    def from_array(
        cls, data: np.ndarray, affine: Optional[np.ndarray] = None, name: str = ""
    ) -> "CorrelationSourceVolume":
        arr = np.asarray(data, dtype=np.float32)
        image = nib.Nifti1Image(arr, np.eye(4) if affine is None else affine)
        return cls(image, name=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def n_frames(self) -> int:
        return self._shape[3] if len(self._shape) == 4 else 1

    @property
    def slice_position(self) -> np.ndarray:
        """Current cursor position in RAS millimetres."""

        return self._slice_position.copy()

    def set_slice_position(self, ras: Sequence[float]) -> None:
        pos = np.asarray(ras, dtype=np.float64).reshape(3)
        if np.array_equal(pos, self._slice_position):
            return
        self._slice_position = pos
        self.slice_position_changed.emit()

    def ras_to_original_index(self, ras: Sequence[float]) -> tuple[int, int, int]:
        """Map a RAS coordinate to the nearest voxel index of the image."""

        ijk = apply_affine(self._inverse, np.asarray(ras, dtype=np.float64))
        i, j, k = (int(v) for v in np.rint(ijk))
        return i, j, k

    def contains_index(self, i: int, j: int, k: int) -> bool:
        return all(0 <= v < n for v, n in zip((i, j, k), self._shape[:3]))

    def voxel_values_all_frames(self, i: int, j: int, k: int) -> np.ndarray:
        """Return the time course of voxel ``(i, j, k)`` as a float array."""

        if not self.contains_index(i, j, k):
            raise IndexError(f"Voxel ({i}, {j}, {k}) lies outside {self._shape[:3]}")
        values = np.asarray(self._image.dataobj[i, j, k], dtype=np.float64)
        return values.reshape(-1)

    def close(self) -> None:
        """Drop the image and notify every overlay that follows this volume."""

        if self._closed:
            return
        self._closed = True
        self.closed.emit()
        self._image = None


__all__ = ["CorrelationSourceVolume"]
