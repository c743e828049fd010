"""
Diagnostic utilities for distortion corrections.

Compares the table-based correction with a direct trajectory integration
on a coarse cubic lattice and records per-point residuals:

- dx, dy, dz: position minus table correction
- dnlx, dnly, dnlz: position minus integrated correction
- dr, drphi: radial and azimuthal shift of the table correction

Results can be exported to CSV, summarised and plotted for offline
validation. Not used on the correction path.
"""

import csv
from typing import Dict, Mapping, Optional

import numpy as np

from .constants import DRIFT_LENGTH, R_INNER, R_OUTER


COLUMNS = (
    'x0', 'x1', 'x2',
    'dx', 'dy', 'dz',
    'dnlx', 'dnly', 'dnlz',
    'r', 'phi', 'dr', 'drphi',
)


def residual_columns(
    points: np.ndarray,
    table_corrected: np.ndarray,
    exact_corrected: np.ndarray,
) -> Dict[str, np.ndarray]:
    """
    Residual columns for a set of points.

    Args:
        points: Original positions (n, 3) [cm]
        table_corrected: Table corrections (n, 3) [cm]
        exact_corrected: Integrated corrections (n, 3) [cm]

    Returns:
        Dictionary of column name -> array (n,)

    Note:
        phi is atan2(x, y), the azimuth measured from the y axis.
    """
    x, d, dnl = points, table_corrected, exact_corrected

    r = np.hypot(x[:, 0], x[:, 1])
    rd = np.hypot(d[:, 0], d[:, 1])
    phi = np.arctan2(x[:, 0], x[:, 1])
    phid = np.arctan2(d[:, 0], d[:, 1])

    # Azimuthal shift folded into [0, pi]
    dphi = np.mod(phi - phid, 2.0 * np.pi)
    dphi = np.where(dphi > np.pi, 2.0 * np.pi - dphi, dphi)

    return {
        'x0': x[:, 0],
        'x1': x[:, 1],
        'x2': x[:, 2],
        'dx': x[:, 0] - d[:, 0],
        'dy': x[:, 1] - d[:, 1],
        'dz': x[:, 2] - d[:, 2],
        'dnlx': x[:, 0] - dnl[:, 0],
        'dnly': x[:, 1] - dnl[:, 1],
        'dnlz': x[:, 2] - dnl[:, 2],
        'r': r,
        'phi': phi,
        'dr': r - rd,
        'drphi': r * dphi,
    }


def lattice(spacing: float = 10.0, extent: float = DRIFT_LENGTH) -> np.ndarray:
    """
    Cubic lattice of points in [-extent, extent]^3 [cm].

    Returns:
        points: Array (n, 3), z varying fastest
    """
    axis = np.arange(-extent, extent + 0.5 * spacing, spacing)
    xs, ys, zs = np.meshgrid(axis, axis, axis, indexing='ij')
    return np.column_stack([xs.ravel(), ys.ravel(), zs.ravel()])


def scan_residuals(corrector, spacing: float = 10.0,
                   extent: float = DRIFT_LENGTH) -> "ResidualScan":
    """
    Residuals of a corrector on a cubic lattice.

    Args:
        corrector: DistortionCorrector
        spacing: Lattice spacing [cm]
        extent: Half width of the scanned cube [cm]

    Returns:
        ResidualScan
    """
    points = lattice(spacing, extent)
    table_corrected = corrector.correct_many(points)
    exact_corrected = corrector.integrator.correction_many(points)
    return ResidualScan(residual_columns(points, table_corrected, exact_corrected))


class ResidualScan:
    """
    Columnar residual data of one scan.

    Usage:
        scan = scan_residuals(corrector, spacing=10.0)
        scan.save_csv('residuals.csv')
        scan.summary()
        scan.plot()
    """

    def __init__(self, columns: Mapping[str, np.ndarray]):
        missing = [name for name in COLUMNS if name not in columns]
        if missing:
            raise ValueError(f"Missing residual columns: {missing}")
        self.columns = {name: np.asarray(columns[name], dtype=np.float64) for name in COLUMNS}

    def __len__(self) -> int:
        return len(self.columns['x0'])

    def __getitem__(self, name: str) -> np.ndarray:
        return self.columns[name]

    def inside(self, r_min: float = R_INNER, r_max: float = R_OUTER,
               z_max: float = DRIFT_LENGTH) -> np.ndarray:
        """Boolean mask of the points inside the sensitive volume."""
        r = self.columns['r']
        return (r >= r_min) & (r <= r_max) & (np.abs(self.columns['x2']) <= z_max)

    def table_error(self) -> np.ndarray:
        """Distance between table and integrated correction per point [cm]."""
        return np.sqrt((self['dx'] - self['dnlx'])**2
                       + (self['dy'] - self['dnly'])**2
                       + (self['dz'] - self['dnlz'])**2)

    def save_csv(self, filename: str):
        """
        Save residuals to a CSV file, one row per scanned point.

        Args:
            filename: Output CSV filename
        """
        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(COLUMNS)
            for row in zip(*(self.columns[name] for name in COLUMNS)):
                writer.writerow(row)

    @classmethod
    def load_csv(cls, filename: str) -> "ResidualScan":
        """Read a scan written by save_csv()."""
        data = np.genfromtxt(filename, delimiter=',', names=True)
        return cls({name: np.atleast_1d(data[name]) for name in COLUMNS})

    def summary(self):
        """
        Print summary statistics of the points inside the sensitive volume.
        """
        mask = self.inside()
        n_inside = int(np.sum(mask))

        print("\n" + "="*70)
        print("RESIDUAL SUMMARY")
        print("="*70)
        print(f"\nScanned points: {len(self):,} ({n_inside:,} inside)")
        if n_inside == 0:
            print("="*70 + "\n")
            return

        print(f"\nTable correction (inside):")
        print(f"  max |dr|:    {np.max(np.abs(self['dr'][mask])):.4f} cm")
        print(f"  max r*dphi:  {np.max(self['drphi'][mask]):.4f} cm")
        print(f"  max |dz|:    {np.max(np.abs(self['dz'][mask])):.4f} cm")

        error = self.table_error()[mask]
        print(f"\nTable vs integration (inside):")
        print(f"  mean: {np.mean(error):.2e} cm")
        print(f"  max:  {np.max(error):.2e} cm")
        print("="*70 + "\n")

    def plot(self, show: bool = True, save_filename: Optional[str] = None):
        """
        Residual maps of the points inside the sensitive volume.

        Args:
            show: Display plots interactively
            save_filename: Save figure to file (optional)
        """
        import matplotlib.pyplot as plt

        mask = self.inside()
        r = self['r'][mask]
        z = self['x2'][mask]

        fig, axes = plt.subplots(1, 3, figsize=(16, 5))
        panels = [
            (self['dr'][mask], 'dr (cm)', 'Radial Shift'),
            (self['drphi'][mask], 'r dphi (cm)', 'Azimuthal Shift'),
            (self.table_error()[mask], '|table - integration| (cm)', 'Table Error'),
        ]
        for ax, (values, label, title) in zip(axes, panels):
            sc = ax.scatter(z, r, c=values, s=6, cmap='viridis')
            ax.set_xlabel('z (cm)', fontsize=12)
            ax.set_ylabel('r (cm)', fontsize=12)
            ax.set_title(title, fontsize=14, fontweight='bold')
            fig.colorbar(sc, ax=ax, label=label)

        plt.tight_layout()

        if save_filename:
            plt.savefig(save_filename, dpi=300, bbox_inches='tight')

        if show:
            plt.show()

        return fig
