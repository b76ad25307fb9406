"""Colour-map and smoothing configuration shared by one or two overlays.

Paired hemisphere overlays display the same statistic, so they share a
single :class:`OverlayProperty`.  The object is reference counted through
:meth:`OverlayProperty.acquire` / :meth:`OverlayProperty.release`: the last
holder to release it tears down its signal connections.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence
import weakref

import matplotlib.pyplot as plt
import numpy as np
from matplotlib import colors as mcolors
from PyQt5.QtCore import QObject, pyqtSignal

from .config import (
    DEFAULT_COLORMAP,
    DEFAULT_OPACITY,
    DEFAULT_SMOOTH_STEPS,
    DEFAULT_THRESHOLD_FRACTION,
)

LOGGER = logging.getLogger(__name__)

HEAT_COLORMAP = "heat"

# The heat scale is two-sided: positive values run red -> yellow and
# negative values blue -> cyan as their magnitude grows.
_HEAT_POSITIVE = mcolors.LinearSegmentedColormap.from_list("heat_pos", ["#ff0000", "#ffff00"])
_HEAT_NEGATIVE = mcolors.LinearSegmentedColormap.from_list("heat_neg", ["#0000ff", "#00ffff"])


class OverlayProperty(QObject):
    """Display settings for an overlay: colour map, thresholds and smoothing."""

    color_map_changed = pyqtSignal()
    smooth_changed = pyqtSignal()

    def __init__(self, holder: Optional[object] = None) -> None:
        super().__init__()
        self._colormap = DEFAULT_COLORMAP
        self._opacity = float(DEFAULT_OPACITY)
        self._threshold_min = 0.0
        self._threshold_max = 1.0
        self._value_range = (0.0, 1.0)
        self._smooth = False
        self._smooth_steps = int(DEFAULT_SMOOTH_STEPS)
        self._colormap_cache: dict[str, mcolors.Colormap] = {}
        # Holders are tracked weakly; an overlay that is garbage collected
        # without calling release() stops counting as a holder.
        self._holders: weakref.WeakSet = weakref.WeakSet()
        self._released = False
        if holder is not None:
            self.acquire(holder)

    # ------------------------------------------------------------------
    # Shared ownership
    # ------------------------------------------------------------------
    def acquire(self, holder: object) -> None:
        if self._released:
            raise RuntimeError("Cannot acquire an overlay property that was released")
        self._holders.add(holder)

    def release(self, holder: object) -> bool:
        """Drop *holder*'s reference; return ``True`` if it was the last one."""

        self._holders.discard(holder)
        if self._holders or self._released:
            return False
        self._released = True
        for signal in (self.color_map_changed, self.smooth_changed):
            try:
                signal.disconnect()
            except TypeError:
                # Nothing connected.
                pass
        LOGGER.debug("Overlay property released by its last holder")
        return True

    @property
    def holder_count(self) -> int:
        return len(self._holders)

    @property
    def released(self) -> bool:
        return self._released

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------
    @property
    def smooth(self) -> bool:
        return self._smooth

    def set_smooth(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._smooth:
            return
        self._smooth = enabled
        self.smooth_changed.emit()

    @property
    def smooth_steps(self) -> int:
        return self._smooth_steps

    def set_smooth_steps(self, steps: int) -> None:
        steps = max(1, int(steps))
        if steps == self._smooth_steps:
            return
        self._smooth_steps = steps
        if self._smooth:
            self.smooth_changed.emit()

    # ------------------------------------------------------------------
    # Colour mapping
    # ------------------------------------------------------------------
    @property
    def colormap(self) -> str:
        return self._colormap

    def set_colormap(self, name: str) -> None:
        if name != HEAT_COLORMAP:
            # Raises ValueError for unknown names.
            self._get_colormap(name)
        if name == self._colormap:
            return
        self._colormap = name
        self.color_map_changed.emit()

    @property
    def opacity(self) -> float:
        return self._opacity

    def set_opacity(self, opacity: float) -> None:
        self._opacity = float(np.clip(opacity, 0.0, 1.0))
        self.color_map_changed.emit()

    @property
    def threshold(self) -> tuple[float, float]:
        return self._threshold_min, self._threshold_max

    def set_threshold(self, low: float, high: float) -> None:
        low = float(low)
        high = float(high)
        if high < low:
            raise ValueError(f"Threshold maximum {high} is below minimum {low}")
        self._threshold_min = low
        self._threshold_max = high
        self.color_map_changed.emit()

    @property
    def value_range(self) -> tuple[float, float]:
        return self._value_range

    def reset(self, value_range: Sequence[float]) -> None:
        """Derive thresholds from a fresh data range and notify listeners."""

        lo, hi = (float(v) for v in value_range)
        self._value_range = (lo, hi)
        extent = max(abs(lo), abs(hi))
        if extent <= 0 or not math.isfinite(extent):
            self._threshold_min, self._threshold_max = 0.0, 1.0
        else:
            self._threshold_min = extent * DEFAULT_THRESHOLD_FRACTION
            self._threshold_max = extent
        self.color_map_changed.emit()

    def _get_colormap(self, name: str) -> mcolors.Colormap:
        cached = self._colormap_cache.get(name)
        if cached is not None:
            return cached
        cmap = plt.get_cmap(name)
        self._colormap_cache[name] = cmap
        return cmap

    def map_overlay_color(self, values: np.ndarray, colordata: np.ndarray) -> None:
        """Blend colour-mapped *values* into the ``(N, 4) uint8`` *colordata*.

        Vertices whose absolute value stays below the lower threshold keep
        the colour already present in *colordata*.
        """

        data = np.asarray(values, dtype=np.float64).reshape(-1)
        if colordata.shape != (data.shape[0], 4):
            raise ValueError(
                f"Colour buffer of shape {colordata.shape} does not match {data.shape[0]} vertices"
            )
        low, high = self._threshold_min, self._threshold_max
        mask = np.abs(data) >= low
        if not mask.any():
            return
        span = high - low if high > low else 1.0

        if self._colormap == HEAT_COLORMAP:
            picked = data[mask]
            scaled = np.clip((np.abs(picked) - low) / span, 0.0, 1.0)
            rgba = np.where(
                (picked >= 0)[:, None], _HEAT_POSITIVE(scaled), _HEAT_NEGATIVE(scaled)
            )
        else:
            vmin, vmax = self._value_range
            width = vmax - vmin if vmax > vmin else 1.0
            scaled = np.clip((data[mask] - vmin) / width, 0.0, 1.0)
            rgba = self._get_colormap(self._colormap)(scaled)

        overlay = np.asarray(rgba, dtype=np.float64) * 255.0
        base = colordata[mask].astype(np.float64)
        alpha = self._opacity
        blended = overlay * alpha + base * (1.0 - alpha)
        blended[:, 3] = 255.0
        colordata[mask] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)


__all__ = ["HEAT_COLORMAP", "OverlayProperty"]
