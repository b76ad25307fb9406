"""Default settings shared by the overlay layer and the command line tool."""

from __future__ import annotations

# -----------------------------------------------------------------------------
# Smoothing
# -----------------------------------------------------------------------------
# Number of nearest-neighbour averaging passes applied when smoothing is
# switched on without an explicit step count.
DEFAULT_SMOOTH_STEPS = 5

# -----------------------------------------------------------------------------
# Colour mapping
# -----------------------------------------------------------------------------
# ``"heat"`` is the two-sided overlay map built in ``overlay_property``; any
# matplotlib colormap name is accepted as well.
DEFAULT_COLORMAP = "heat"
DEFAULT_OPACITY = 1.0

# Fraction of the absolute data range used as the lower display threshold
# after a property reset.
DEFAULT_THRESHOLD_FRACTION = 0.1

# -----------------------------------------------------------------------------
# Correlation data
# -----------------------------------------------------------------------------
# The full read of a correlation matrix is split into this many slabs so the
# progress callback receives regular updates.
CORRELATION_READ_CHUNKS = 100

# Hemisphere codes used by the surface adapter.
LEFT_HEMISPHERE = 0
RIGHT_HEMISPHERE = 1

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

__all__ = (
    "DEFAULT_SMOOTH_STEPS",
    "DEFAULT_COLORMAP",
    "DEFAULT_OPACITY",
    "DEFAULT_THRESHOLD_FRACTION",
    "CORRELATION_READ_CHUNKS",
    "LEFT_HEMISPHERE",
    "RIGHT_HEMISPHERE",
    "LOG_FORMAT",
)
