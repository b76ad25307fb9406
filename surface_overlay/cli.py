"""Command line front-end for inspecting and exporting surface overlays.

Example::

    surface-overlay lh.white lh.thickness --smooth-steps 5 --tsv-out thick.tsv
    surface-overlay lh.white lh.sig.mgh --correlation corr.mgh --seed-vertex 120
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .config import LEFT_HEMISPHERE, LOG_FORMAT, RIGHT_HEMISPHERE
from .overlay import SurfaceOverlay
from .surface import OverlaySurface
from .volume import CorrelationSourceVolume

LOGGER = logging.getLogger(__name__)

_HEMISPHERES = {"lh": LEFT_HEMISPHERE, "rh": RIGHT_HEMISPHERE}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Load a per-vertex overlay onto a FreeSurfer surface and export it"
    )
    parser.add_argument("surface", help="FreeSurfer surface geometry (e.g. lh.white)")
    parser.add_argument(
        "overlay",
        nargs="?",
        help="Overlay file (.mgh/.mgz/.nii/.gii or morphometry such as lh.thickness)",
    )
    parser.add_argument("--hemi", choices=sorted(_HEMISPHERES), help="Override the hemisphere guessed from the file name")
    parser.add_argument("--frame", type=int, default=0, help="Frame to display (out of range selects frame 0)")
    parser.add_argument("--smooth-steps", type=int, default=0, help="Enable smoothing with this many steps")
    parser.add_argument("--colormap", help="Colour map name ('heat' or any matplotlib map)")
    parser.add_argument("--correlation", help="Paired-hemisphere correlation matrix volume")
    parser.add_argument("--seed-vertex", type=int, help="Seed vertex for the correlation matrix")
    parser.add_argument("--seed-hemi", choices=sorted(_HEMISPHERES), help="Hemisphere of the seed vertex")
    parser.add_argument("--source-volume", help="4-D volume used as correlation reference")
    parser.add_argument(
        "--cursor",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        help="RAS position of the reference voxel in --source-volume",
    )
    parser.add_argument("--colors-out", help="Write RGBA vertex colours to this .npy file")
    parser.add_argument("--tsv-out", help="Write per-vertex values to this TSV file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def _log_progress(percent: int) -> None:
    LOGGER.debug("Reading correlation data: %d%%", percent)


def run(args: argparse.Namespace) -> int:
    hemi = _HEMISPHERES[args.hemi] if args.hemi else None
    try:
        surface = OverlaySurface.from_freesurfer(args.surface, hemisphere=hemi)
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to read surface %s: %s", args.surface, exc)
        return 1

    overlay = SurfaceOverlay(surface)
    if args.overlay and not overlay.load_file(args.overlay):
        return 1

    prop = overlay.overlay_property
    if args.colormap:
        try:
            prop.set_colormap(args.colormap)
        except ValueError as exc:
            LOGGER.error("%s", exc)
            return 1
    if args.smooth_steps > 0:
        prop.set_smooth_steps(args.smooth_steps)
        prop.set_smooth(True)
    overlay.set_active_frame(args.frame)

    if args.correlation:
        if not overlay.load_correlation_data(args.correlation, progress=_log_progress):
            return 1
        if args.seed_vertex is not None:
            seed_hemi = _HEMISPHERES[args.seed_hemi] if args.seed_hemi else None
            if not overlay.update_correlation_at_vertex(args.seed_vertex, seed_hemi):
                return 1

    if args.source_volume:
        try:
            volume = CorrelationSourceVolume.from_file(args.source_volume)
        except Exception as exc:
            LOGGER.error("Failed to read correlation source %s: %s", args.source_volume, exc)
            return 1
        if args.cursor:
            volume.set_slice_position(args.cursor)
        overlay.set_compute_correlation(True)
        overlay.set_correlation_source_volume(volume)

    low, high = overlay.range()
    print(
        f"{overlay.name or surface.name}: {overlay.n_vertices:,} vertices, "
        f"{overlay.n_frames} frame(s), active frame {overlay.active_frame}, "
        f"range {low:.4g} – {high:.4g}"
    )

    if args.colors_out:
        colours = np.full((overlay.n_vertices, 4), 160, dtype=np.uint8)
        colours[:, 3] = 255
        if not overlay.map_overlay(colours):
            LOGGER.warning("Correlation data is not ready; exporting the base colour only")
        np.save(args.colors_out, colours)
        print("Colours written →", Path(args.colors_out).resolve())

    if args.tsv_out:
        df = pd.DataFrame(
            {
                "vertex": np.arange(overlay.n_vertices),
                "value": overlay.working_data,
                "unsmoothed": overlay.unsmoothed_data,
            }
        )
        df.to_csv(args.tsv_out, sep="\t", index=False)
        print("Values written →", Path(args.tsv_out).resolve())

    overlay.close()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
