"""Correlation helpers: Pearson coefficients and correlation-matrix volumes.

A correlation matrix for a pair of hemispheres is stored as an ordinary
nibabel-readable volume.  For a surface with ``N`` vertices the volume is
``2N`` voxels wide; the matrix rows run either along the second axis
(``height == 2N``) or along the frame axis (``n_frames == 2N``).  Column
``c`` therefore holds the correlation of vertex ``c`` (offset by ``N`` for
the right hemisphere) with every vertex of both hemispheres.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Callable, Optional, Sequence

import nibabel as nib
import numpy as np
from scipy.stats import pearsonr

from .config import CORRELATION_READ_CHUNKS

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class OverlayDataError(RuntimeError):
    """Raised when overlay or correlation data cannot be used with a surface."""


# -----------------------------------------------------------------------------
# Pearson correlation
# -----------------------------------------------------------------------------

def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Return the Pearson correlation coefficient of two equal-length signals.

    The coefficient comes from :func:`scipy.stats.pearsonr` and is rounded
    to single precision, the precision of the overlay buffers it ends up
    in.  Fewer than two samples or a constant signal have no defined
    correlation; ``0.0`` is returned in those cases.
    """

    a = np.asarray(x, dtype=np.float64).reshape(-1)
    b = np.asarray(y, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Signals differ in length: {a.shape[0]} != {b.shape[0]}")
    # pearsonr warns and returns nan for these; a flat vertex shows as 0.
    if a.size < 2 or np.ptp(a) == 0 or np.ptp(b) == 0:
        return 0.0
    r, _p = pearsonr(a, b)
    return float(np.float32(r))


def correlate_columns(reference: np.ndarray, signals: np.ndarray) -> np.ndarray:
    """Correlate *reference* (``F``) with every column of *signals* (``F x N``).

    Gives the coefficient of :func:`pearson_correlation` for every column in
    one pass.  Columns without variance, or a flat reference, yield ``0.0``.
    """

    ref = np.asarray(reference, dtype=np.float64).reshape(-1)
    mat = np.asarray(signals, dtype=np.float64)
    if mat.ndim != 2 or mat.shape[0] != ref.shape[0]:
        raise ValueError(
            f"Signals of shape {mat.shape} do not match a reference of {ref.shape[0]} frames"
        )
    dref = ref - ref.mean()
    dmat = mat - mat.mean(axis=0, keepdims=True)
    numer = dref @ dmat
    denom = np.sqrt(np.dot(dref, dref) * np.einsum("ij,ij->j", dmat, dmat))
    out = np.zeros(mat.shape[1], dtype=np.float64)
    np.divide(numer, denom, out=out, where=denom > 0)
    return np.clip(out, -1.0, 1.0).astype(np.float32)


# -----------------------------------------------------------------------------
# Correlation matrix volumes
# -----------------------------------------------------------------------------

def _as_four_dims(shape: Sequence[int]) -> tuple[int, int, int, int]:
    dims = [int(s) for s in shape]
    if len(dims) > 4:
        raise OverlayDataError(f"Unsupported volume shape {tuple(dims)}")
    dims.extend([1] * (4 - len(dims)))
    return dims[0], dims[1], dims[2], dims[3]


def read_correlation_header(path: Path | str) -> tuple[int, int, int, int]:
    """Return ``(width, height, depth, frames)`` without reading voxel data."""

    try:
        image = nib.load(str(path))
    except Exception as exc:
        raise OverlayDataError(f"unable to read from {path}: {exc}") from exc
    return _as_four_dims(image.shape)


def check_correlation_dimensions(
    dims: Sequence[int], n_vertices: int
) -> None:
    """Raise :class:`OverlayDataError` unless *dims* fit an ``n_vertices`` mesh."""

    width, height, _depth, frames = _as_four_dims(dims)
    expected = 2 * n_vertices
    if (
        width != expected
        or height not in (1, expected)
        or frames not in (1, expected)
    ):
        raise OverlayDataError(
            f"Correlation data {width}x{height}x{frames} does not match a surface "
            f"with {n_vertices} vertices (expected width {expected})"
        )


@dataclass
class CorrelationMatrix:
    """Fully loaded correlation volume with the matrix layout resolved."""

    data: np.ndarray
    source: str = ""

    @property
    def width(self) -> int:
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def n_frames(self) -> int:
        return int(self.data.shape[3])

    def column(self, index: int, row_offset: int, count: int) -> np.ndarray:
        """Return ``count`` matrix entries of column *index* from *row_offset*."""

        if not 0 <= index < self.width:
            raise IndexError(f"Column {index} outside correlation width {self.width}")
        stop = row_offset + count
        if self.height > 1:
            values = self.data[index, row_offset:stop, 0, 0]
        else:
            values = self.data[index, 0, 0, row_offset:stop]
        if values.shape[0] != count:
            raise IndexError(
                f"Rows {row_offset}..{stop} exceed the correlation matrix"
            )
        return np.asarray(values, dtype=np.float32)


def load_correlation_matrix(
    path: Path | str,
    n_vertices: int,
    progress: Optional[ProgressCallback] = None,
    chunks: int = CORRELATION_READ_CHUNKS,
) -> CorrelationMatrix:
    """Read a correlation volume after validating its header.

    The header is checked first so an incompatible file is rejected before
    the (potentially very large) voxel data is touched.  The voxel data is
    then read in slabs along the first axis and *progress* receives the
    completed percentage after each slab.
    """

    dims = read_correlation_header(path)
    check_correlation_dimensions(dims, n_vertices)

    try:
        image = nib.load(str(path))
        data = np.empty(dims, dtype=np.float32)
        width = dims[0]
        # A full-resolution 2N x 2N matrix runs to many gigabytes; reading
        # it in slabs lets the caller report progress.
        step = max(1, -(-width // max(1, int(chunks))))
        if progress is not None:
            progress(0)
        for start in range(0, width, step):
            stop = min(width, start + step)
            slab = np.asarray(image.dataobj[start:stop], dtype=np.float32)
            data[start:stop] = slab.reshape((stop - start,) + dims[1:])
            if progress is not None:
                progress(int(100 * stop / width))
    except MemoryError:
        raise
    except Exception as exc:
        raise OverlayDataError(f"unable to read from {path}: {exc}") from exc

    LOGGER.info("Loaded correlation data %s with dimensions %s", path, dims)
    return CorrelationMatrix(data=data, source=str(path))


__all__ = [
    "CorrelationMatrix",
    "OverlayDataError",
    "ProgressCallback",
    "check_correlation_dimensions",
    "correlate_columns",
    "load_correlation_matrix",
    "pearson_correlation",
    "read_correlation_header",
]
