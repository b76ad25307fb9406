from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest

from surface_overlay.surface import OverlaySurface

TETRA_VERTICES = np.array(
    [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]],
    dtype=np.float32,
)
TETRA_FACES = np.array([[0, 1, 2], [0, 1, 3], [0, 2, 3], [1, 2, 3]], dtype=np.int32)

OCTA_VERTICES = np.array(
    [
        [1.0, 0.0, 0.0],
        [-1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, -1.0, 0.0],
        [0.0, 0.0, 1.0],
        [0.0, 0.0, -1.0],
    ],
    dtype=np.float32,
)
OCTA_FACES = np.array(
    [
        [0, 2, 4],
        [2, 1, 4],
        [1, 3, 4],
        [3, 0, 4],
        [2, 0, 5],
        [1, 2, 5],
        [3, 1, 5],
        [0, 3, 5],
    ],
    dtype=np.int32,
)


class SignalCounter:
    """Count emissions of a Qt signal through a direct connection."""

    def __init__(self, signal) -> None:
        self.calls: list[tuple] = []
        signal.connect(self)

    def __call__(self, *args) -> None:
        self.calls.append(args)

    @property
    def count(self) -> int:
        return len(self.calls)


SurfaceFactory = Callable[..., OverlaySurface]


@pytest.fixture
def make_tetra() -> SurfaceFactory:
    def _make(values: Optional[list[float]] = None, hemisphere: int = 0) -> OverlaySurface:
        return OverlaySurface(TETRA_VERTICES, TETRA_FACES, hemisphere=hemisphere, values=values)

    return _make


@pytest.fixture
def make_octa() -> SurfaceFactory:
    def _make(values: Optional[list[float]] = None, hemisphere: int = 0) -> OverlaySurface:
        return OverlaySurface(OCTA_VERTICES, OCTA_FACES, hemisphere=hemisphere, values=values)

    return _make
