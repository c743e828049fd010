"""
Tests for residual scans
"""

from typing import Dict, get_type_hints

import numpy as np
import pytest

from tpcexb import ExactCorrector, UniformField, Grid
from tpcexb.diagnostics import (
    COLUMNS,
    ResidualScan,
    lattice,
    residual_columns,
    scan_residuals,
)


@pytest.fixture(scope="module")
def scan():
    corrector = ExactCorrector(UniformField(bx=0.5, by=-0.2, bz=5.0), 2.65,
                               grid=Grid(nx=11, ny=11, nz=6))
    return scan_residuals(corrector, spacing=125.0)


class TestResidualColumns:
    """Test per-point residual quantities."""

    def test_single_point(self):
        points = np.array([[100.0, 0.0, 10.0]])
        table = np.array([[99.0, 1.0, 10.5]])
        exact = np.array([[99.5, 0.5, 10.0]])

        columns = residual_columns(points, table, exact)

        assert columns['dx'][0] == pytest.approx(1.0)
        assert columns['dy'][0] == pytest.approx(-1.0)
        assert columns['dz'][0] == pytest.approx(-0.5)
        assert columns['dnlx'][0] == pytest.approx(0.5)
        assert columns['dnlz'][0] == pytest.approx(0.0)
        assert columns['r'][0] == pytest.approx(100.0)
        assert columns['phi'][0] == pytest.approx(np.pi / 2)
        assert columns['dr'][0] == pytest.approx(100.0 - np.hypot(99.0, 1.0))
        assert columns['drphi'][0] == pytest.approx(100.0 * np.arctan2(1.0, 99.0))

    def test_azimuthal_shift_folded(self):
        """Shifts across the -pi/pi seam (negative y axis) stay small."""
        points = np.array([[1e-3, -100.0, 0.0]])
        table = np.array([[-1e-3, -100.0, 0.0]])

        columns = residual_columns(points, table, points)

        assert columns['drphi'][0] == pytest.approx(2e-3, rel=1e-6)

    def test_azimuth_from_y_axis(self):
        """phi is measured from the y axis towards x."""
        points = np.array([[0.0, 100.0, 0.0], [100.0, 0.0, 0.0], [0.0, -100.0, 0.0]])

        columns = residual_columns(points, points, points)

        np.testing.assert_allclose(columns['phi'], [0.0, np.pi / 2, np.pi])

    def test_lattice(self):
        points = lattice(spacing=125.0, extent=250.0)

        assert points.shape == (125, 3)
        np.testing.assert_array_equal(points[0], [-250.0, -250.0, -250.0])
        np.testing.assert_array_equal(points[1], [-250.0, -250.0, -125.0])
        np.testing.assert_array_equal(points[-1], [250.0, 250.0, 250.0])


class TestResidualScan:
    """Test scans of a corrector."""

    def test_scan_size(self, scan):
        assert len(scan) == 125
        assert set(scan.columns) == set(COLUMNS)
        assert np.sum(scan.inside()) == 60

    def test_outside_points_have_no_residual(self, scan):
        outside = ~scan.inside()

        np.testing.assert_array_equal(scan['dx'][outside], 0.0)
        np.testing.assert_array_equal(scan['dz'][outside], 0.0)

    def test_table_agrees_with_integration(self, scan):
        """The table reproduces the integration, including on the cathode plane."""
        mask = scan.inside()

        assert np.max(scan.table_error()[mask]) < 2e-4

    def test_csv_round_trip(self, scan, tmp_path):
        path = tmp_path / "residuals.csv"

        scan.save_csv(path)
        loaded = ResidualScan.load_csv(path)

        assert path.read_text().splitlines()[0] == ",".join(COLUMNS)
        assert len(loaded) == len(scan)
        for name in COLUMNS:
            np.testing.assert_allclose(loaded[name], scan[name])

    def test_summary(self, scan, capsys):
        scan.summary()

        out = capsys.readouterr().out
        assert "RESIDUAL SUMMARY" in out
        assert "125 (60 inside)" in out

    def test_plot(self, scan, tmp_path):
        matplotlib = pytest.importorskip("matplotlib")
        matplotlib.use("Agg")
        path = tmp_path / "residuals.png"

        fig = scan.plot(show=False, save_filename=path)

        assert path.exists()
        assert len(fig.axes) >= 3

    def test_public_api_annotations(self):
        assert get_type_hints(residual_columns)['return'] == Dict[str, np.ndarray]
        assert get_type_hints(scan_residuals)['return'] is ResidualScan
        assert get_type_hints(ResidualScan.save_csv)['filename'] is str

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            ResidualScan({'x0': [0.0]})
