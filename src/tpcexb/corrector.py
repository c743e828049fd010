"""
ExB Distortion Correction

DistortionCorrector owns one lookup table, built once at construction by
a table-building strategy, and corrects hit positions by trilinear
interpolation of that table:

    corrected = sum over the 8 surrounding nodes of w_x * w_y * w_z * T[node]

Points outside the sensitive volume (|z| > 250 cm, r < 90 cm or
r > 250 cm) are returned unchanged.

Usage:
    field = UniformField(bx=0.1, bz=5.0)       # kG
    corrector = ExactCorrector(field, drift_velocity=2.65, n_steps=100)
    x, y, z = corrector.correct([120.0, 30.0, 80.0])
"""

import numpy as np
from numba import njit, prange

from .builders import ExactTableBuilder, FirstOrderTableBuilder, TableBuilder
from .constants import DEFAULT_MEAN_SAMPLES, DEFAULT_STEPS, DRIFT_LENGTH, R_INNER, R_OUTER
from .errors import ConfigurationError
from .field import FieldAccessor
from .grid import Grid, flat_index_numba
from .integrator import TrajectoryIntegrator
from .motion import check_drift_velocity


# ==================== NUMBA-COMPILED INTERPOLATION ====================

@njit
def in_acceptance(x, y, z):
    """
    True inside the corrected volume (non-finite input is outside).
    """
    r = np.sqrt(x * x + y * y)
    return abs(z) <= DRIFT_LENGTH and R_INNER <= r <= R_OUTER


@njit
def _lower_node(f, n):
    """Lower node index for fractional coordinate f, clamped to [0, n-2]."""
    i = int(f)
    if i > n - 2:
        i = n - 2
    if i < 0:
        i = 0
    return i


@njit
def interpolate_table(table, x, y, z, x_min, x_max, y_min, y_max, z_max, nx, ny, nz):
    """
    Trilinear interpolation of the table at (x, y, z) [cm].

    Lower node indices are clamped so the 8 nodes always exist; beyond the
    outermost nodes the weights extrapolate linearly. Hits on the cathode
    plane (z = 0) read the positive drift side, as in the integrator.

    Returns:
        (x, y, z) interpolated table value [cm]
    """
    fx = (x - x_min) / (x_max - x_min) * (nx - 1)
    i = _lower_node(fx, nx)
    dx = fx - i
    dx1 = (i + 1) - fx

    fy = (y - y_min) / (y_max - y_min) * (ny - 1)
    j = _lower_node(fy, ny)
    dy = fy - j
    dy1 = (j + 1) - fy

    fz = z / z_max * (nz - 1)
    if fz >= 0.0:
        side = 1
    else:
        fz = -fz
        side = 0
    k = _lower_node(fz, nz)
    dz = fz - k
    dz1 = (k + 1) - fz

    c0 = 0.0
    c1 = 0.0
    c2 = 0.0
    for di in range(2):
        wx = dx if di == 1 else dx1
        for dj in range(2):
            wy = dy if dj == 1 else dy1
            for dk in range(2):
                w = wx * wy * (dz if dk == 1 else dz1)
                base = flat_index_numba(i + di, j + dj, k + dk, side, ny, nz)
                c0 += w * table[base]
                c1 += w * table[base + 1]
                c2 += w * table[base + 2]
    return c0, c1, c2


@njit
def correct_point(table, x, y, z, x_min, x_max, y_min, y_max, z_max, nx, ny, nz):
    """
    Corrected position of one hit [cm]; the hit itself outside the volume.
    """
    if not in_acceptance(x, y, z):
        return x, y, z
    return interpolate_table(table, x, y, z, x_min, x_max, y_min, y_max, z_max, nx, ny, nz)


@njit(parallel=True)
def correct_points(table, points, x_min, x_max, y_min, y_max, z_max, nx, ny, nz):
    """
    Corrected positions for an (n, 3) array of hits [cm].
    """
    n = points.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for p in prange(n):
        cx, cy, cz = correct_point(table, points[p, 0], points[p, 1], points[p, 2],
                                   x_min, x_max, y_min, y_max, z_max, nx, ny, nz)
        out[p, 0] = cx
        out[p, 1] = cy
        out[p, 2] = cz
    return out


# ==================== CORRECTORS ====================

class DistortionCorrector:
    """
    Table-based ExB correction for one field and drift velocity.

    The table is built once, here, and never modified afterwards;
    correct() only reads it and is safe to call from several threads.

    Args:
        field: FieldSource (AnalyticField or FieldMap) or FieldAccessor
        drift_velocity: Drift velocity without magnetic field [cm/us]
        grid: Grid of the table. Default: aligned with the map for a
              FieldMap, the nominal +-250 cm grid otherwise
        builder: TableBuilder strategy (default: ExactTableBuilder())
        nodes: (nx, ny, nz) for the nominal bounds, instead of grid

    Raises:
        ConfigurationError: Missing field, bad drift velocity, bad grid
    """

    def __init__(self, field, drift_velocity, grid=None, builder=None, nodes=None):
        self.accessor = FieldAccessor.wrap(field)
        self.drift_velocity = check_drift_velocity(drift_velocity)

        if builder is None:
            builder = ExactTableBuilder()
        if not isinstance(builder, TableBuilder):
            raise ConfigurationError(f"{builder!r} is not a TableBuilder")
        self.builder = builder

        self.grid = self._resolve_grid(grid, nodes)
        self.table = builder.build(self.accessor, self.drift_velocity, self.grid)
        self._kernel_grid = (*self.grid.bounds(), self.grid.nx, self.grid.ny, self.grid.nz)
        self._integrator = None

    def _resolve_grid(self, grid, nodes):
        if grid is not None and nodes is not None:
            raise ConfigurationError("Pass either grid or nodes, not both")
        if nodes is not None:
            if len(nodes) != 3:
                raise ConfigurationError(f"nodes must be (nx, ny, nz), got {nodes!r}")
            return Grid(nx=nodes[0], ny=nodes[1], nz=nodes[2])
        if grid is None:
            if self.accessor.is_map:
                return Grid.from_field_map(self.accessor.source)
            return Grid()
        if not isinstance(grid, Grid):
            raise ConfigurationError(f"{grid!r} is not a Grid")
        return grid

    @property
    def field(self):
        return self.accessor.source

    @property
    def integrator(self):
        """TrajectoryIntegrator with this corrector's field and drift velocity."""
        if self._integrator is None:
            n_steps = getattr(self.builder, "n_steps", DEFAULT_STEPS)
            self._integrator = TrajectoryIntegrator(self.accessor, self.drift_velocity, n_steps)
        return self._integrator

    def correct(self, position):
        """
        Corrected position of a hit.

        Args:
            position: (x, y, z) [cm]

        Returns:
            Corrected (x, y, z) as an array of shape (3,) [cm]; equal to the
            input outside the sensitive volume
        """
        x, y, z = position
        return np.array(correct_point(self.table.values, float(x), float(y), float(z),
                                      *self._kernel_grid))

    def correct_many(self, positions):
        """
        Corrected positions for an (n, 3) array of hits [cm].
        """
        positions = np.ascontiguousarray(np.atleast_2d(positions), dtype=np.float64)
        if positions.ndim != 2 or positions.shape[1] != 3:
            raise ValueError(f"Expected positions of shape (n, 3), got {positions.shape}")
        return correct_points(self.table.values, positions, *self._kernel_grid)

    def exact_correction(self, position):
        """
        Correction from a direct trajectory integration, without the table.
        """
        x, y, z = position
        return np.array(self.integrator.correction(x, y, z))

    def __repr__(self):
        return (f"{type(self).__name__}({self.field!r}, "
                f"drift_velocity={self.drift_velocity} cm/us, {self.grid!r}, "
                f"{self.builder!r})")


class ExactCorrector(DistortionCorrector):
    """
    Correction from integrated drift trajectories.

    Args:
        field: FieldSource or FieldAccessor
        drift_velocity: Drift velocity [cm/us]
        n_steps: Euler steps over the full half drift length
        grid, nodes: See DistortionCorrector
        max_workers: Threads for Python field models
    """

    def __init__(self, field, drift_velocity, n_steps=DEFAULT_STEPS, grid=None,
                 nodes=None, max_workers=None):
        super().__init__(field, drift_velocity, grid=grid, nodes=nodes,
                         builder=ExactTableBuilder(n_steps, max_workers))


class FirstOrderCorrector(DistortionCorrector):
    """
    Correction from the first-order mean-field approximation.

    Args:
        field: FieldSource or FieldAccessor
        drift_velocity: Drift velocity [cm/us]
        n_samples: Field samples along each drift path
        grid, nodes: See DistortionCorrector
        max_workers: Threads for Python field models
    """

    def __init__(self, field, drift_velocity, n_samples=DEFAULT_MEAN_SAMPLES, grid=None,
                 nodes=None, max_workers=None):
        super().__init__(field, drift_velocity, grid=grid, nodes=nodes,
                         builder=FirstOrderTableBuilder(n_samples, max_workers))
