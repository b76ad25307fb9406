"""Surface mesh adapter consumed by :class:`~surface_overlay.overlay.SurfaceOverlay`.

The overlay layer only needs a handful of things from the mesh: the vertex
count, which hemisphere it belongs to, the scalar field stored on the mesh
itself, a mesh-aware smoothing operator and a way to tell the renderer that
the overlay colours are stale.  :class:`OverlaySurface` bundles exactly that
on top of a FreeSurfer geometry read through :mod:`nibabel`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np
from PyQt5.QtCore import QObject, pyqtSignal
from scipy import sparse

from .config import LEFT_HEMISPHERE, RIGHT_HEMISPHERE

LOGGER = logging.getLogger(__name__)


def guess_hemisphere(path: Path | str) -> int:
    """Return the hemisphere code encoded in a FreeSurfer file name.

    FreeSurfer prefixes surfaces with ``lh.`` or ``rh.``.  Anything else is
    treated as the left hemisphere.
    """

    name = Path(path).name.lower()
    if name.startswith("rh.") or name.startswith("rh_"):
        return RIGHT_HEMISPHERE
    return LEFT_HEMISPHERE


class OverlaySurface(QObject):
    """Triangle mesh with an optional per-vertex scalar field."""

    overlay_updated = pyqtSignal(bool)

    def __init__(
        self,
        vertices: np.ndarray,
        faces: np.ndarray,
        hemisphere: int = LEFT_HEMISPHERE,
        values: Optional[np.ndarray] = None,
        name: str = "",
    ) -> None:
        super().__init__()
        verts = np.asarray(vertices, dtype=np.float32)
        faces_arr = np.asarray(faces, dtype=np.int64)
        if verts.ndim != 2 or verts.shape[1] != 3:
            raise ValueError("Surface vertices must be an (N, 3) array")
        if faces_arr.ndim != 2 or faces_arr.shape[1] != 3:
            raise ValueError("Surface faces must be an (M, 3) array")
        if faces_arr.size and int(faces_arr.max(initial=-1)) >= verts.shape[0]:
            raise ValueError("Face indices exceed available vertices")
        if hemisphere not in (LEFT_HEMISPHERE, RIGHT_HEMISPHERE):
            raise ValueError(f"Unknown hemisphere code: {hemisphere}")

        self._vertices = verts
        self._faces = faces_arr
        self._hemisphere = int(hemisphere)
        self._name = name
        self._adjacency: Optional[sparse.csr_matrix] = None
        self._degree: Optional[np.ndarray] = None

        if values is None:
            self._values = np.zeros(verts.shape[0], dtype=np.float32)
        else:
            self.set_vertex_values(values)

    @classmethod
    def from_freesurfer(
        cls, path: Path | str, hemisphere: Optional[int] = None
    ) -> "OverlaySurface":
        """Read a FreeSurfer ``*.white``/``*.pial`` style geometry file."""

        from nibabel.freesurfer import read_geometry

        path = Path(path)
        vertices, faces = read_geometry(str(path))
        hemi = guess_hemisphere(path) if hemisphere is None else hemisphere
        LOGGER.info(
            "Loaded surface %s (%d vertices, %d faces)", path, vertices.shape[0], faces.shape[0]
        )
        return cls(vertices, faces, hemisphere=hemi, name=path.name)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self._name

    @property
    def vertices(self) -> np.ndarray:
        return self._vertices

    @property
    def faces(self) -> np.ndarray:
        return self._faces

    @property
    def n_vertices(self) -> int:
        return int(self._vertices.shape[0])

    @property
    def hemisphere(self) -> int:
        return self._hemisphere

    @property
    def vertex_values(self) -> np.ndarray:
        """Scalar field stored on the mesh itself (one value per vertex)."""

        return self._values

    def set_vertex_values(self, values: np.ndarray) -> None:
        arr = np.asarray(values, dtype=np.float32).reshape(-1)
        if arr.shape[0] != self.n_vertices:
            raise ValueError(
                f"Expected {self.n_vertices} vertex values, got {arr.shape[0]}"
            )
        self._values = arr.copy()

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------
    def _neighbourhood(self) -> tuple[sparse.csr_matrix, np.ndarray]:
        if self._adjacency is None or self._degree is None:
            n = self.n_vertices
            faces = self._faces
            # Each triangle contributes its three undirected edges.
            rows = np.concatenate([faces[:, 0], faces[:, 1], faces[:, 2]])
            cols = np.concatenate([faces[:, 1], faces[:, 2], faces[:, 0]])
            edges = sparse.coo_matrix(
                (np.ones(rows.shape[0], dtype=np.float32), (rows, cols)), shape=(n, n)
            )
            adjacency = ((edges + edges.T) > 0).astype(np.float32)
            adjacency = (adjacency + sparse.identity(n, dtype=np.float32, format="csr")).tocsr()
            self._adjacency = adjacency
            self._degree = np.asarray(adjacency.sum(axis=1), dtype=np.float64).reshape(-1)
        return self._adjacency, self._degree

    def smooth(self, values: np.ndarray, steps: int) -> np.ndarray:
        """Return *values* after ``steps`` nearest-neighbour averaging passes.

        Every pass replaces a vertex value with the mean of itself and its
        direct neighbours.  The input array is never modified.
        """

        data = np.asarray(values, dtype=np.float64).reshape(-1)
        if data.shape[0] != self.n_vertices:
            raise ValueError(
                f"Expected {self.n_vertices} values to smooth, got {data.shape[0]}"
            )
        adjacency, degree = self._neighbourhood()
        out = data.copy()
        for _ in range(max(0, int(steps))):
            out = adjacency.dot(out) / degree
        return out.astype(np.float32)

    # ------------------------------------------------------------------
    # Rendering hook
    # ------------------------------------------------------------------
    def update_overlay(self, redraw: bool = True) -> None:
        """Tell the renderer that the active overlay colours changed."""

        self.overlay_updated.emit(bool(redraw))


__all__ = ["OverlaySurface", "guess_hemisphere"]
