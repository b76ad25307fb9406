"""Per-vertex overlay layer for FreeSurfer surface viewers."""

from importlib import metadata

from .correlation import (
    CorrelationMatrix,
    OverlayDataError,
    correlate_columns,
    load_correlation_matrix,
    pearson_correlation,
)
from .overlay import SurfaceOverlay
from .overlay_io import OverlayFile, read_overlay_file
from .overlay_property import OverlayProperty
from .surface import OverlaySurface
from .volume import CorrelationSourceVolume

__all__ = [
    "__version__",
    "CorrelationMatrix",
    "CorrelationSourceVolume",
    "OverlayDataError",
    "OverlayFile",
    "OverlayProperty",
    "OverlaySurface",
    "SurfaceOverlay",
    "correlate_columns",
    "load_correlation_matrix",
    "pearson_correlation",
    "read_overlay_file",
]

try:  # pragma: no cover - version resolution
    __version__ = metadata.version("surface-overlay")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
