"""Readers for per-vertex overlay files.

Supported inputs:

* volume formats nibabel understands (``.mgh``, ``.mgz``, ``.nii``,
  ``.nii.gz``) laid out as ``N x 1 x 1 [x F]``;
* GIFTI functional/shape files (``.gii``), one data array per frame;
* FreeSurfer morphometry files (``lh.curv``, ``rh.thickness``, ...).

All readers return the values frame-major, ready for
:meth:`surface_overlay.overlay.SurfaceOverlay.load_data`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

import nibabel as nib
import numpy as np
from nibabel.freesurfer import read_morph_data

from .correlation import OverlayDataError

LOGGER = logging.getLogger(__name__)

_VOLUME_SUFFIXES = (".mgh", ".mgz", ".nii", ".nii.gz")
_GIFTI_SUFFIXES = (".gii", ".gii.gz")


@dataclass
class OverlayFile:
    """Frame-major overlay values read from disk."""

    path: Path
    data: np.ndarray
    n_vertices: int
    n_frames: int

    def frame(self, index: int) -> np.ndarray:
        start = index * self.n_vertices
        return self.data[start:start + self.n_vertices]


def _frame_major(values: np.ndarray) -> np.ndarray:
    """Flatten an ``(N, F)`` array so that each frame is contiguous."""

    return np.ascontiguousarray(values.T, dtype=np.float32).reshape(-1)


def _read_volume(path: Path) -> np.ndarray:
    image = nib.load(str(path))
    data = np.asarray(image.dataobj, dtype=np.float32)
    if data.ndim > 4:
        raise OverlayDataError(f"{path} has unsupported shape {data.shape}")
    n_frames = data.shape[3] if data.ndim == 4 else 1
    # Vertices run along the spatial axes in column-major order.
    return data.reshape((-1, n_frames), order="F")


def _read_gifti(path: Path) -> np.ndarray:
    image = nib.load(str(path))
    arrays = [np.asarray(darray.data, dtype=np.float32) for darray in image.darrays]
    if not arrays:
        raise OverlayDataError(f"{path} does not contain any data arrays")
    if len(arrays) == 1:
        values = arrays[0]
        return values.reshape(values.shape[0], -1)
    lengths = {arr.size for arr in arrays}
    if len(lengths) != 1:
        raise OverlayDataError(f"{path} has data arrays of different lengths")
    return np.stack([arr.reshape(-1) for arr in arrays], axis=1)


def read_overlay_file(path: Path | str) -> OverlayFile:
    """Read *path* and return its values as an :class:`OverlayFile`.

    Raises :class:`~surface_overlay.correlation.OverlayDataError` when the
    file cannot be read.
    """

    path = Path(path)
    lower = path.name.lower()
    try:
        if lower.endswith(_VOLUME_SUFFIXES):
            values = _read_volume(path)
        elif lower.endswith(_GIFTI_SUFFIXES):
            values = _read_gifti(path)
        else:
            values = np.asarray(read_morph_data(str(path)), dtype=np.float32).reshape(-1, 1)
    except OverlayDataError:
        raise
    except Exception as exc:
        raise OverlayDataError(f"unable to read from {path}: {exc}") from exc

    n_vertices, n_frames = int(values.shape[0]), int(values.shape[1])
    LOGGER.info("Read overlay %s: %d vertices x %d frames", path, n_vertices, n_frames)
    return OverlayFile(path=path, data=_frame_major(values), n_vertices=n_vertices, n_frames=n_frames)


__all__ = ["OverlayFile", "read_overlay_file"]
