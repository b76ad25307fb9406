from __future__ import annotations

from pathlib import Path

import nibabel as nib
import numpy as np
import pytest
from scipy.stats import pearsonr

from surface_overlay.correlation import (
    OverlayDataError,
    check_correlation_dimensions,
    correlate_columns,
    load_correlation_matrix,
    pearson_correlation,
    read_correlation_header,
)
from surface_overlay.overlay import SurfaceOverlay


def _matrix(n_vertices: int) -> np.ndarray:
    size = 2 * n_vertices
    return (np.arange(size * size, dtype=np.float32).reshape(size, size) - 20.0) / 10.0


def _write_mgh(path: Path, data: np.ndarray) -> Path:
    nib.save(nib.MGHImage(data.astype(np.float32), np.eye(4)), str(path))
    return path


def test_pearson_of_scaled_signal_is_exactly_one() -> None:
    assert pearson_correlation([1, 2, 3], [2, 4, 6]) == 1.0


def test_pearson_edge_cases() -> None:
    assert pearson_correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)
    assert pearson_correlation([1, 2, 3], [5, 5, 5]) == 0.0
    assert pearson_correlation([], []) == 0.0
    assert pearson_correlation([4.0], [2.0]) == 0.0
    with pytest.raises(ValueError):
        pearson_correlation([1, 2], [1, 2, 3])


def test_correlate_columns_matches_pairwise() -> None:
    rng = np.random.default_rng(0)
    reference = rng.normal(size=7)
    signals = rng.normal(size=(7, 5))

    result = correlate_columns(reference, signals)

    expected = [pearsonr(reference, signals[:, i])[0] for i in range(5)]
    np.testing.assert_allclose(result, expected, rtol=1e-5, atol=1e-6)


def test_pearson_agrees_with_scipy_at_single_precision() -> None:
    rng = np.random.default_rng(3)
    x = rng.normal(size=12)
    y = 0.5 * x + rng.normal(size=12)

    assert pearson_correlation(x, y) == pytest.approx(pearsonr(x, y)[0], rel=1e-6)
    assert pearson_correlation(x, y) == float(np.float32(pearsonr(x, y)[0]))


@pytest.mark.parametrize(
    "dims",
    [(8, 8, 1, 1), (8, 1, 1, 8), (8, 1, 1, 1), (8, 8, 1, 8)],
)
def test_dimension_check_accepts_paired_layouts(dims) -> None:
    check_correlation_dimensions(dims, 4)


@pytest.mark.parametrize("dims", [(6, 8, 1, 1), (8, 3, 1, 1), (8, 1, 1, 5)])
def test_dimension_check_rejects_mismatch(dims) -> None:
    with pytest.raises(OverlayDataError):
        check_correlation_dimensions(dims, 4)


def test_header_and_progress(tmp_path: Path) -> None:
    path = _write_mgh(tmp_path / "corr.mgh", _matrix(4)[:, :, None])
    assert read_correlation_header(path) == (8, 8, 1, 1)

    seen: list[int] = []
    matrix = load_correlation_matrix(path, 4, progress=seen.append, chunks=3)

    assert seen[0] == 0
    assert seen[-1] == 100
    assert seen == sorted(seen)
    np.testing.assert_array_equal(matrix.data[:, :, 0, 0], _matrix(4))


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(OverlayDataError):
        load_correlation_matrix(tmp_path / "missing.mgh", 4)


def test_overlay_loads_correlation_and_extracts_seed(make_tetra, tmp_path: Path) -> None:
    data = _matrix(4)
    path = _write_mgh(tmp_path / "corr.mgh", data[:, :, None])
    overlay = SurfaceOverlay(make_tetra([0.0, 1.0, 2.0, 3.0]))

    assert overlay.load_correlation_data(path)
    assert overlay.has_correlation_data
    assert not overlay.correlation_ready

    assert overlay.update_correlation_at_vertex(2)

    expected = data[2, 0:4]
    np.testing.assert_array_equal(overlay.working_data, expected)
    np.testing.assert_array_equal(overlay.unsmoothed_data, expected)
    assert overlay.range() == (float(expected.min()), float(expected.max()))
    assert overlay.correlation_ready


def test_right_hemisphere_reads_its_own_rows(make_tetra, tmp_path: Path) -> None:
    data = _matrix(4)
    path = _write_mgh(tmp_path / "corr.mgh", data[:, :, None])
    overlay = SurfaceOverlay(make_tetra(hemisphere=1))
    overlay.load_correlation_data(path)

    overlay.update_correlation_at_vertex(1)
    np.testing.assert_array_equal(overlay.working_data, data[5, 4:8])

    overlay.update_correlation_at_vertex(1, hemisphere=0)
    np.testing.assert_array_equal(overlay.working_data, data[1, 4:8])


def test_frame_layout_matrix(make_tetra, tmp_path: Path) -> None:
    data = _matrix(4)
    path = _write_mgh(tmp_path / "corr_frames.mgh", data[:, None, None, :])
    overlay = SurfaceOverlay(make_tetra())

    assert overlay.load_correlation_data(path)
    overlay.update_correlation_at_vertex(3)

    np.testing.assert_array_equal(overlay.working_data, data[3, 0:4])


def test_width_mismatch_keeps_previous_correlation(make_tetra, tmp_path: Path) -> None:
    good = _write_mgh(tmp_path / "good.mgh", _matrix(4)[:, :, None])
    bad = _write_mgh(tmp_path / "bad.mgh", np.zeros((6, 6, 1), dtype=np.float32))
    overlay = SurfaceOverlay(make_tetra())
    assert overlay.load_correlation_data(good)
    overlay.update_correlation_at_vertex(0)
    matrix = overlay.correlation_matrix
    working = overlay.working_data

    assert not overlay.load_correlation_data(bad)
    assert not overlay.load_correlation_data(tmp_path / "missing.mgh")

    assert overlay.correlation_matrix is matrix
    assert overlay.correlation_ready
    np.testing.assert_array_equal(overlay.working_data, working)


def test_failed_first_load_leaves_overlay_inactive(make_tetra, tmp_path: Path) -> None:
    bad = _write_mgh(tmp_path / "bad.mgh", np.zeros((6, 1, 1), dtype=np.float32))
    overlay = SurfaceOverlay(make_tetra())

    assert not overlay.load_correlation_data(bad)
    assert not overlay.has_correlation_data
    assert overlay.correlation_matrix is None
    assert not overlay.update_correlation_at_vertex(0)


def test_seed_outside_matrix_is_rejected(make_tetra, tmp_path: Path) -> None:
    path = _write_mgh(tmp_path / "corr.mgh", _matrix(4)[:, :, None])
    overlay = SurfaceOverlay(make_tetra([1.0, 2.0, 3.0, 4.0]))
    overlay.load_correlation_data(path)

    assert not overlay.update_correlation_at_vertex(4, hemisphere=1)
    assert overlay.working_data.tolist() == [1.0, 2.0, 3.0, 4.0]


@pytest.mark.parametrize(
    "vertex, hemisphere",
    [(4, 0), (-1, 1), (-4, None), (1, 2), (0, -2)],
)
def test_seed_must_lie_on_a_hemisphere(make_tetra, tmp_path: Path, vertex, hemisphere) -> None:
    # Each of these would land on a valid column of the 8-wide matrix if the
    # seed were not checked against one hemisphere's vertex count.
    path = _write_mgh(tmp_path / "corr.mgh", _matrix(4)[:, :, None])
    overlay = SurfaceOverlay(make_tetra([1.0, 2.0, 3.0, 4.0]))
    overlay.load_correlation_data(path)

    assert not overlay.update_correlation_at_vertex(vertex, hemisphere=hemisphere)
    assert overlay.working_data.tolist() == [1.0, 2.0, 3.0, 4.0]
    assert overlay.raw_data.tolist() == [1.0, 2.0, 3.0, 4.0]
    assert not overlay.correlation_ready


def test_minus_one_hemisphere_means_own(make_tetra, tmp_path: Path) -> None:
    data = _matrix(4)
    path = _write_mgh(tmp_path / "corr.mgh", data[:, :, None])
    overlay = SurfaceOverlay(make_tetra(hemisphere=1))
    overlay.load_correlation_data(path)

    assert overlay.update_correlation_at_vertex(1, hemisphere=-1)
    np.testing.assert_array_equal(overlay.working_data, data[5, 4:8])


def test_map_overlay_waits_for_seed(make_tetra, tmp_path: Path) -> None:
    path = _write_mgh(tmp_path / "corr.mgh", _matrix(4)[:, :, None])
    overlay = SurfaceOverlay(make_tetra([1.0, 2.0, 3.0, 4.0]))
    overlay.load_correlation_data(path)
    colours = np.full((4, 4), 7, dtype=np.uint8)

    assert not overlay.map_overlay(colours)
    assert (colours == 7).all()

    overlay.update_correlation_at_vertex(2, hemisphere=1)
    assert overlay.map_overlay(colours)
    assert not (colours == 7).all()


def test_degenerate_range_resets_property(make_tetra, tmp_path: Path) -> None:
    data = _matrix(4)
    path = _write_mgh(tmp_path / "corr.mgh", data[:, :, None])
    overlay = SurfaceOverlay(make_tetra())
    assert overlay.range() == (0.0, 0.0)
    overlay.load_correlation_data(path)

    overlay.update_correlation_at_vertex(2)

    assert overlay.overlay_property.value_range == overlay.range()
