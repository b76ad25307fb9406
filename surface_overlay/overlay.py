"""Per-vertex scalar overlay bound to a single surface.

:class:`SurfaceOverlay` keeps three float buffers indexed by vertex id:

``raw``
    the data as loaded, frame-major (frame ``k`` lives at
    ``raw[k * N:(k + 1) * N]``);
``working``
    the values currently displayed;
``unsmoothed``
    a snapshot of ``working`` taken before smoothing so that switching
    smoothing off restores the exact values.

On top of that the overlay can show one column of a paired-hemisphere
correlation matrix, or compute the Pearson correlation of every vertex time
course against a reference voxel picked in a volume.  Two overlays (left and
right hemisphere) can be paired so they share colour settings and the
correlation matrix.

Public operations never raise for bad input data: failures are logged and
reported through a ``False`` return with the previous state left in place.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
import weakref

import numpy as np
from PyQt5.QtCore import QObject, pyqtSignal

from .config import LEFT_HEMISPHERE, RIGHT_HEMISPHERE
from .correlation import (
    CorrelationMatrix,
    OverlayDataError,
    ProgressCallback,
    correlate_columns,
    load_correlation_matrix,
)
from .overlay_io import read_overlay_file
from .overlay_property import OverlayProperty
from .surface import OverlaySurface
from .volume import CorrelationSourceVolume

LOGGER = logging.getLogger(__name__)


def _disconnect(signal, slot) -> None:
    try:
        signal.disconnect(slot)
    except TypeError:
        # Slot was not connected.
        pass


class SurfaceOverlay(QObject):
    """Scalar data layer displayed on top of an :class:`OverlaySurface`."""

    data_updated = pyqtSignal()

    def __init__(self, surface: OverlaySurface, name: str = "") -> None:
        super().__init__()
        self._surface = surface
        self._name = name
        self._n_vertices = surface.n_vertices
        self._n_frames = 1
        self._active_frame = 0
        self._raw = np.zeros(0, dtype=np.float32)
        self._data = np.zeros(self._n_vertices, dtype=np.float32)
        self._unsmoothed = np.zeros(self._n_vertices, dtype=np.float32)
        self._min_value = 0.0
        self._max_value = 0.0

        self._correlation: Optional[CorrelationMatrix] = None
        self._has_correlation_data = False
        self._correlation_ready = False
        self._paired: Optional[weakref.ReferenceType] = None

        self._compute_correlation = False
        self._source_volume: Optional[CorrelationSourceVolume] = None
        self._source_signal = np.zeros(1, dtype=np.float32)
        self._closed = False

        # Smoothing is off on a fresh property, so the initial load below
        # copies the surface field without smoothing it.
        self._property = OverlayProperty(self)
        self._smooth_linked = False
        self._adopt(surface.vertex_values, self._n_vertices, 1)

        self._connect_property(listen_smooth=True)
        self._property.reset(self.range())

    # ------------------------------------------------------------------
    # Simple accessors
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._name = str(value)

    @property
    def surface(self) -> OverlaySurface:
        return self._surface

    @property
    def overlay_property(self) -> OverlayProperty:
        return self._property

    @property
    def n_vertices(self) -> int:
        return self._n_vertices

    @property
    def n_frames(self) -> int:
        return self._n_frames

    @property
    def active_frame(self) -> int:
        return self._active_frame

    @property
    def raw_data(self) -> np.ndarray:
        return self._raw.copy()

    @property
    def working_data(self) -> np.ndarray:
        return self._data.copy()

    @property
    def unsmoothed_data(self) -> np.ndarray:
        return self._unsmoothed.copy()

    def data_at_vertex(self, vertex: int) -> float:
        if not 0 <= vertex < self._n_vertices:
            raise IndexError(f"Vertex {vertex} outside 0..{self._n_vertices - 1}")
        return float(self._data[vertex])

    def range(self) -> tuple[float, float]:
        """Return the display range of the overlay.

        Correlation coefficients are always shown on a fixed ``[-1, 1]``
        scale; otherwise the cached minimum and maximum of the working
        buffer are reported.
        """

        if self._compute_correlation:
            return -1.0, 1.0
        return self._min_value, self._max_value

    # ------------------------------------------------------------------
    # Loading and frame selection
    # ------------------------------------------------------------------
    def _adopt(self, buffer: np.ndarray, n_vertices: int, n_frames: int) -> bool:
        try:
            raw = np.array(buffer, dtype=np.float32).reshape(-1)
            data = np.empty(n_vertices, dtype=np.float32)
            unsmoothed = np.empty(n_vertices, dtype=np.float32)
            source_signal = np.zeros(n_frames, dtype=np.float32)
        except MemoryError:
            LOGGER.error(
                "Can not allocate overlay buffers for %d vertices x %d frames",
                n_vertices,
                n_frames,
            )
            return False
        self._raw = raw
        self._data = data
        self._unsmoothed = unsmoothed
        self._source_signal = source_signal
        self._n_vertices = n_vertices
        self._n_frames = n_frames
        self._select_frame(0)
        return True

    def load_from_surface(self) -> bool:
        """Reload the overlay from the scalar field stored on the surface."""

        if not self._adopt(self._surface.vertex_values, self._surface.n_vertices, 1):
            return False
        self._notify()
        return True

    def load_data(self, buffer: np.ndarray, n_vertices: int, n_frames: int = 1) -> bool:
        """Adopt an external frame-major buffer of ``n_vertices * n_frames`` values."""

        values = np.asarray(buffer).reshape(-1)
        if n_vertices != self._surface.n_vertices:
            LOGGER.error(
                "Overlay %s has %d vertices but surface %s has %d",
                self._name,
                n_vertices,
                self._surface.name,
                self._surface.n_vertices,
            )
            return False
        if n_frames < 1 or values.shape[0] != n_vertices * n_frames:
            LOGGER.error(
                "Overlay %s: buffer of %d values does not hold %d vertices x %d frames",
                self._name,
                values.shape[0],
                n_vertices,
                n_frames,
            )
            return False
        if not self._adopt(values, n_vertices, n_frames):
            return False
        self.overlay_property.reset(self.range())
        self._notify()
        return True

    def load_file(self, filename: Path | str) -> bool:
        """Read an overlay file from disk and load all of its frames."""

        try:
            overlay_file = read_overlay_file(filename)
        except OverlayDataError as exc:
            LOGGER.error("Failed to load overlay %s: %s", filename, exc)
            return False
        if not self.load_data(overlay_file.data, overlay_file.n_vertices, overlay_file.n_frames):
            return False
        if not self._name:
            self._name = overlay_file.path.name
        return True

    def _select_frame(self, frame: int) -> None:
        if frame < 0 or frame >= self._n_frames:
            # A frame control can outlive a reload with fewer frames; show
            # the first frame instead of refusing the request.
            frame = 0
        self._active_frame = frame
        start = frame * self._n_vertices
        self._data[:] = self._raw[start:start + self._n_vertices]
        self._unsmoothed[:] = self._data
        self._update_min_max()
        if self._property.smooth:
            self.smooth_data()

    def set_active_frame(self, frame: int) -> None:
        """Display frame *frame*; indices outside ``0..n_frames-1`` select frame 0."""

        self._select_frame(int(frame))
        self._notify()

    def _update_min_max(self) -> None:
        if self._data.size == 0:
            self._min_value = self._max_value = 0.0
            return
        self._min_value = float(np.min(self._data))
        self._max_value = float(np.max(self._data))

    def _notify(self, notify: bool = True) -> None:
        self._surface.update_overlay(True)
        if notify:
            self.data_updated.emit()

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------
    def smooth_data(self, steps: int = 0, out: Optional[np.ndarray] = None) -> bool:
        """Smooth the unsmoothed snapshot into *out* (or the working buffer).

        ``steps`` below one falls back to the property's smoothing steps.
        """

        n_steps = steps if steps >= 1 else self.overlay_property.smooth_steps
        try:
            smoothed = self._surface.smooth(self._unsmoothed, n_steps)
        except MemoryError:
            LOGGER.error("Can not allocate memory to smooth overlay %s", self._name)
            return False
        target = self._data if out is None else out
        target[:] = smoothed
        return True

    def update_smooth(self, trigger_paired: bool = True) -> None:
        if self.overlay_property.smooth:
            self.smooth_data()
        else:
            self._data[:] = self._unsmoothed
        self._notify()

        partner = self.paired_overlay
        if trigger_paired and partner is not None:
            partner.update_smooth(False)

    # ------------------------------------------------------------------
    # Correlation matrix
    # ------------------------------------------------------------------
    @property
    def has_correlation_data(self) -> bool:
        return self._has_correlation_data

    @property
    def correlation_ready(self) -> bool:
        return self._correlation_ready

    @property
    def correlation_matrix(self) -> Optional[CorrelationMatrix]:
        return self._correlation

    def load_correlation_data(
        self, filename: Path | str, progress: Optional[ProgressCallback] = None
    ) -> bool:
        """Load a paired-hemisphere correlation matrix for this surface.

        The file must be ``2N`` voxels wide with a height and frame count of
        either one or ``2N``.  On failure nothing changes.
        """

        try:
            matrix = load_correlation_matrix(filename, self._n_vertices, progress=progress)
        except OverlayDataError as exc:
            LOGGER.error("Failed to load correlation data %s: %s", filename, exc)
            return False
        except MemoryError:
            LOGGER.error("Can not allocate memory for correlation data %s", filename)
            return False
        self._correlation = matrix
        self._has_correlation_data = True
        self._correlation_ready = False
        return True

    def update_correlation_at_vertex(
        self, vertex: int, hemisphere: Optional[int] = None, notify: bool = True
    ) -> bool:
        """Show the correlation of seed *vertex* with every vertex of this surface.

        *hemisphere* names the hemisphere the seed belongs to and defaults
        to this surface's.  When the seed lies on this surface and the
        overlay is paired, the partner is updated once with ``notify=False``
        so it redraws without emitting its own ``data_updated``.
        """

        if self._correlation is None:
            LOGGER.warning("Overlay %s has no correlation data loaded", self._name)
            return False
        own = self._surface.hemisphere
        # ``-1`` is accepted as "this surface's hemisphere" for callers that
        # pass hemisphere codes straight from the viewer's picking code.
        if hemisphere is None or hemisphere == -1:
            hemisphere = own
        n = self._n_vertices
        # The matrix is 2N wide, so an unchecked seed would silently read a
        # column that belongs to the other hemisphere.
        if not 0 <= vertex < n or hemisphere not in (LEFT_HEMISPHERE, RIGHT_HEMISPHERE):
            LOGGER.warning(
                "Overlay %s: seed vertex %s on hemisphere %s is outside 0..%d",
                self._name,
                vertex,
                hemisphere,
                n - 1,
            )
            return False
        try:
            values = self._correlation.column(vertex + hemisphere * n, own * n, n)
        except IndexError as exc:
            LOGGER.error("Overlay %s: cannot read correlation at vertex %s: %s", self._name, vertex, exc)
            return False

        old_range = self._max_value - self._min_value
        self._data[:] = values
        self._raw[:n] = values
        self._unsmoothed[:] = values
        self._update_min_max()
        if self.overlay_property.smooth:
            self.smooth_data()
        self._correlation_ready = True
        # Thresholds picked from an empty range (fresh load, all zeros)
        # would hide every coefficient, so pick them again from real data.
        if old_range <= 0:
            self.overlay_property.reset(self.range())

        # The partner is refreshed with ``notify=False``: the view already
        # hears about this seed from our own ``data_updated``, and a call
        # made without notification never propagates back, so the update
        # crosses the pair exactly once.
        partner = self.paired_overlay
        if notify and partner is not None and hemisphere == own:
            partner.update_correlation_at_vertex(vertex, hemisphere, notify=False)

        self._notify(notify)
        return True

    # ------------------------------------------------------------------
    # Correlation against a reference volume
    # ------------------------------------------------------------------
    @property
    def compute_correlation(self) -> bool:
        return self._compute_correlation

    @property
    def correlation_source_volume(self) -> Optional[CorrelationSourceVolume]:
        return self._source_volume

    @property
    def correlation_source_signal(self) -> np.ndarray:
        """Reference time course sampled at the last cursor position."""

        return self._source_signal.copy()

    def set_compute_correlation(self, enabled: bool) -> None:
        self._compute_correlation = bool(enabled)
        if self._compute_correlation:
            self.update_correlation_coefficient()
        else:
            self.set_active_frame(self._active_frame)

    def set_correlation_source_volume(self, volume: Optional[CorrelationSourceVolume]) -> None:
        """Follow *volume*'s cursor as the correlation reference."""

        self._detach_source_volume()
        self._source_volume = volume
        if volume is not None:
            volume.slice_position_changed.connect(self.update_correlation_coefficient)
            volume.closed.connect(self._on_correlation_source_closed)
            self.update_correlation_coefficient()

    def _detach_source_volume(self) -> None:
        volume = self._source_volume
        if volume is None:
            return
        _disconnect(volume.slice_position_changed, self.update_correlation_coefficient)
        _disconnect(volume.closed, self._on_correlation_source_closed)
        self._source_volume = None

    def _on_correlation_source_closed(self) -> None:
        self._detach_source_volume()

    def update_correlation_coefficient(self) -> bool:
        """Recompute every vertex as its correlation with the cursor voxel."""

        volume = self._source_volume
        if not self._compute_correlation or volume is None:
            return False
        if volume.n_frames != self._n_frames:
            LOGGER.warning(
                "Correlation source %s has %d frames, overlay %s has %d",
                volume.name,
                volume.n_frames,
                self._name,
                self._n_frames,
            )
            return False
        i, j, k = volume.ras_to_original_index(volume.slice_position)
        if not volume.contains_index(i, j, k):
            LOGGER.debug("Cursor voxel (%d, %d, %d) lies outside %s", i, j, k, volume.name)
            return False

        self._source_signal[:] = volume.voxel_values_all_frames(i, j, k)
        signals = self._raw.reshape(self._n_frames, self._n_vertices)
        self._data[:] = correlate_columns(self._source_signal, signals)
        self._unsmoothed[:] = self._data
        if self.overlay_property.smooth:
            self.smooth_data()
        self._notify()
        return True

    # ------------------------------------------------------------------
    # Colour mapping
    # ------------------------------------------------------------------
    def map_overlay(self, colordata: np.ndarray) -> bool:
        """Paint the working buffer into an ``(N, 4) uint8`` colour array.

        Nothing is painted while correlation data is loaded but no seed has
        been selected yet.
        """

        if self._has_correlation_data and not self._correlation_ready:
            return False
        self.overlay_property.map_overlay_color(self._data, colordata)
        return True

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------
    @property
    def paired_overlay(self) -> Optional["SurfaceOverlay"]:
        if self._paired is None:
            return None
        return self._paired()

    def _connect_property(self, listen_smooth: bool) -> None:
        prop = self.overlay_property
        prop.color_map_changed.connect(self._surface.update_overlay)
        if listen_smooth:
            prop.smooth_changed.connect(self.update_smooth)
        self._smooth_linked = listen_smooth

    def _disconnect_property(self) -> None:
        prop = self.overlay_property
        _disconnect(prop.color_map_changed, self._surface.update_overlay)
        if self._smooth_linked:
            _disconnect(prop.smooth_changed, self.update_smooth)
            self._smooth_linked = False

    def copy_correlation_data(self, source: "SurfaceOverlay") -> bool:
        """Share *source*'s property and correlation matrix and pair with it.

        Smoothing changes keep flowing through *source*, which forwards them
        to this overlay once.
        """

        if source is self or not source.has_correlation_data:
            return False
        # Pairing is one-to-one: drop any earlier partner on either side so
        # no third overlay keeps a back-reference to one of us.
        self._unpair()
        source._unpair()

        self._disconnect_property()
        self.overlay_property.release(self)

        self._property = source.overlay_property
        self._property.acquire(self)
        self._connect_property(listen_smooth=False)

        self._correlation = source.correlation_matrix
        self._has_correlation_data = True
        self._correlation_ready = False
        self._paired = weakref.ref(source)
        source._paired = weakref.ref(self)
        return True

    def _unpair(self) -> None:
        partner = self.paired_overlay
        self._paired = None
        if partner is not None:
            partner._on_partner_closed(self)

    def _on_partner_closed(self, partner: "SurfaceOverlay") -> None:
        if self.paired_overlay is not partner:
            # Already re-paired with someone else.
            return
        self._paired = None
        # Smoothing changes used to reach us through the partner; listen to
        # the property directly from now on.
        if not self._smooth_linked:
            self.overlay_property.smooth_changed.connect(self.update_smooth)
            self._smooth_linked = True

    def close(self) -> None:
        """Release buffers and links; the partner keeps the shared state."""

        if self._closed:
            return
        self._closed = True
        self._detach_source_volume()
        self._unpair()

        self._disconnect_property()
        self.overlay_property.release(self)
        self._correlation = None


__all__ = ["SurfaceOverlay"]
