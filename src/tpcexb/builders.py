"""
Lookup Table Builders

Strategies that fill a LookupTable with one correction per grid node and
drift side:

- ExactTableBuilder: Euler integration of every drift trajectory
- FirstOrderTableBuilder: first-order mean-field approximation

Nodes on the cathode plane are evaluated at z = +-1e-4 cm. Every node is
independent, so the work is split by flat node range: compiled field
sources run in a numba prange kernel, Python field models in a thread
pool over contiguous chunks. Each worker writes only its own slice.
"""

import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numba import njit, prange

from .constants import (
    CATHODE_OFFSET,
    CM,
    CM_PER_US,
    DEFAULT_MEAN_SAMPLES,
    DEFAULT_STEPS,
    DRIFT_LENGTH,
    LARGE_TABLE_NODES,
    R_INNER,
    R_OUTER,
    mobility,
)
from .errors import ConfigurationError
from .field import field_si
from .grid import LookupTable, flat_index_numba, node_from_flat
from .integrator import TrajectoryIntegrator, check_steps, euler_correction
from . import logging


# ==================== NODE GEOMETRY ====================

@njit
def node_position(i, j, k, x_min, x_max, y_min, y_max, z_max, nx, ny, nz):
    """
    Position of node (i, j, k) on the positive drift side [cm].
    """
    x = x_min + (x_max - x_min) / (nx - 1) * i
    y = y_min + (y_max - y_min) / (ny - 1) * j
    z = z_max / (nz - 1) * k
    if z < CATHODE_OFFSET:
        z = CATHODE_OFFSET
    return x, y, z


@njit
def _store(table, base, cx, cy, cz):
    table[base] = cx
    table[base + 1] = cy
    table[base + 2] = cz


# ==================== FIRST-ORDER MODEL ====================

@njit
def first_order_displacement(bx_mean, by_mean, mu, wt, length):
    """
    Transverse displacement of a straight drift in a weak transverse field.

    dx/dz = mu (wt Bx - By) / (1 + wt^2)
    dy/dz = mu (wt By + Bx) / (1 + wt^2)

    Args:
        bx_mean, by_mean: Mean transverse field along the path [T]
        mu: Mobility [m^2/(V*s)]
        wt: omega*tau of the mean axial field
        length: Signed drift length, readout z minus start z [cm]

    Returns:
        (dx, dy) [cm]
    """
    norm = mu / (1.0 + wt * wt) * length
    return (wt * bx_mean - by_mean) * norm, (wt * by_mean + bx_mean) * norm


@njit
def first_order_correction(x0, y0, z0, mu, wt, n_samples, kind, params, mesh,
                           position_scale, field_scale):
    """
    First-order correction of one starting point [cm] (compiled sources).
    """
    if abs(z0) >= DRIFT_LENGTH:
        return x0, y0, z0
    z_end = DRIFT_LENGTH if z0 >= 0.0 else -DRIFT_LENGTH
    length = z_end - z0

    # Midpoint rule along the straight path
    bx_sum = 0.0
    by_sum = 0.0
    for s in range(n_samples):
        z = z0 + (s + 0.5) / n_samples * length
        bx, by, _ = field_si(kind, params, mesh, position_scale, field_scale,
                             x0 * CM, y0 * CM, z * CM)
        bx_sum += bx
        by_sum += by
    dx, dy = first_order_displacement(bx_sum / n_samples, by_sum / n_samples,
                                      mu, wt, length)
    return x0 - dx, y0 - dy, z0


# ==================== PARALLEL KERNELS ====================

@njit(parallel=True)
def fill_exact_table(table, x_min, x_max, y_min, y_max, z_max, nx, ny, nz,
                     v_drift, n_steps, kind, params, mesh, position_scale, field_scale):
    """
    Fill a flat table with integrated corrections (compiled field sources).

    Args:
        table: Flat output array of size nx*ny*nz*2*3 (modified in-place)
        x_min ... nz: Grid description
        v_drift: Drift velocity [m/s]
        n_steps: Euler steps over a full half drift length
        kind, params, mesh, position_scale, field_scale: See FieldAccessor
    """
    for node in prange(nx * ny * nz):
        i, j, k = node_from_flat(node, ny, nz)
        x, y, z = node_position(i, j, k, x_min, x_max, y_min, y_max, z_max, nx, ny, nz)
        for side in range(2):
            zs = z if side == 1 else -z
            cx, cy, cz = euler_correction(x, y, zs, v_drift, n_steps, kind, params, mesh,
                                          position_scale, field_scale)
            _store(table, flat_index_numba(i, j, k, side, ny, nz), cx, cy, cz)


@njit(parallel=True)
def fill_first_order_table(table, x_min, x_max, y_min, y_max, z_max, nx, ny, nz,
                           mu, wt, n_samples, kind, params, mesh, position_scale,
                           field_scale):
    """
    Fill a flat table with first-order corrections (compiled field sources).
    """
    for node in prange(nx * ny * nz):
        i, j, k = node_from_flat(node, ny, nz)
        x, y, z = node_position(i, j, k, x_min, x_max, y_min, y_max, z_max, nx, ny, nz)
        for side in range(2):
            zs = z if side == 1 else -z
            cx, cy, cz = first_order_correction(x, y, zs, mu, wt, n_samples, kind, params,
                                                mesh, position_scale, field_scale)
            _store(table, flat_index_numba(i, j, k, side, ny, nz), cx, cy, cz)


# ==================== PYTHON FIELD MODELS ====================

def fill_python_table(table, node_correction, max_workers=None, n_chunks=None):
    """
    Fill a LookupTable by calling node_correction for every node and side.

    Nodes are split into contiguous flat-index ranges, one task per range.

    Args:
        table: Writable LookupTable
        node_correction: Callable (x, y, z) -> corrected (x, y, z) [cm]
        max_workers: Worker threads (None: ThreadPoolExecutor default)
        n_chunks: Number of ranges (default: 4 per worker)
    """
    grid = table.grid
    n_nodes = grid.n_nodes
    if n_chunks is None:
        n_chunks = 4 * (max_workers or 8)
    n_chunks = max(1, min(n_chunks, n_nodes))
    edges = np.linspace(0, n_nodes, n_chunks + 1).astype(np.int64)

    def fill_range(start, stop):
        for node in range(start, stop):
            i, j, k = node_from_flat(node, grid.ny, grid.nz)
            x, y, z = node_position(i, j, k, *grid.bounds(), grid.nx, grid.ny, grid.nz)
            table.node(i, j, k, 1)[:] = node_correction(x, y, z)
            table.node(i, j, k, 0)[:] = node_correction(x, y, -z)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(fill_range, int(a), int(b))
                   for a, b in zip(edges[:-1], edges[1:]) if b > a]
        for future in futures:
            future.result()


def mean_axial_field(accessor, grid, n_per_axis=21):
    """
    Mean Bz over the sensitive volume covered by the grid.

    Samples a coarse lattice over the grid bounds on both drift sides and
    averages the points inside the radial acceptance and drift length.
    Falls back to all lattice points if none are inside.

    Returns:
        Mean axial field [T]
    """
    xs = np.linspace(grid.x_min, grid.x_max, min(grid.nx, n_per_axis))
    ys = np.linspace(grid.y_min, grid.y_max, min(grid.ny, n_per_axis))
    zs = np.linspace(CATHODE_OFFSET, min(grid.z_max, DRIFT_LENGTH), min(grid.nz, n_per_axis))

    inside = []
    everywhere = []
    for x in xs:
        for y in ys:
            r = np.hypot(x, y)
            for z in zs:
                for side_z in (z, -z):
                    bz = accessor.sample(x, y, side_z)[2]
                    everywhere.append(bz)
                    if R_INNER <= r <= R_OUTER:
                        inside.append(bz)
    return float(np.mean(inside if inside else everywhere))


# ==================== BUILDERS ====================

class TableBuilder(ABC):
    """
    Strategy filling a LookupTable for a field, drift velocity and grid.

    Args:
        max_workers: Thread count for Python field models
                     (None lets ThreadPoolExecutor decide)
    """

    name = "abstract"

    def __init__(self, max_workers=None):
        self.max_workers = max_workers

    def build(self, accessor, drift_velocity, grid):
        """
        Compute the table.

        Args:
            accessor: FieldAccessor
            drift_velocity: Drift velocity [cm/us]
            grid: Grid

        Returns:
            Frozen LookupTable
        """
        if grid.n_nodes > LARGE_TABLE_NODES:
            logging.log_warning(
                f"Building a {grid.nx}x{grid.ny}x{grid.nz} table "
                f"({grid.n_nodes:,} nodes); this may take a long time"
            )
        table = LookupTable(grid)

        start = time.time()
        if accessor.compiled:
            self._fill_compiled(table.values, accessor, drift_velocity, grid)
        else:
            node_correction = self._node_correction(accessor, drift_velocity, grid)
            fill_python_table(table, node_correction, self.max_workers)
        elapsed = time.time() - start

        logging.log_info(
            f"{self.name} table {grid.nx}x{grid.ny}x{grid.nz}x2 built in {elapsed:.2f} s"
        )
        return table.freeze()

    @abstractmethod
    def _fill_compiled(self, values, accessor, drift_velocity, grid):
        """Fill the flat array with the numba kernel of the strategy."""

    @abstractmethod
    def _node_correction(self, accessor, drift_velocity, grid):
        """Callable (x, y, z) -> correction, for Python field models."""


class ExactTableBuilder(TableBuilder):
    """
    Table from integrated drift trajectories.

    Args:
        n_steps: Euler steps over the full half drift length
        max_workers: Thread count for Python field models
    """

    name = "exact"

    def __init__(self, n_steps=DEFAULT_STEPS, max_workers=None):
        super().__init__(max_workers)
        self.n_steps = check_steps(n_steps)

    def integrator(self, accessor, drift_velocity):
        return TrajectoryIntegrator(accessor, drift_velocity, self.n_steps)

    def _fill_compiled(self, values, accessor, drift_velocity, grid):
        fill_exact_table(values, *grid.bounds(), grid.nx, grid.ny, grid.nz,
                         drift_velocity * CM_PER_US, self.n_steps,
                         *accessor.kernel_arguments())

    def _node_correction(self, accessor, drift_velocity, grid):
        return self.integrator(accessor, drift_velocity).correction

    def __repr__(self):
        return f"ExactTableBuilder(n_steps={self.n_steps})"


class FirstOrderTableBuilder(TableBuilder):
    """
    Table from the first-order mean-field approximation.

    The axial field is replaced by its mean over the sensitive volume, the
    transverse field by its mean along the straight path from the node to
    the readout plane. The axial coordinate is not corrected.

    Args:
        n_samples: Field samples along each drift path
        max_workers: Thread count for Python field models
    """

    name = "first-order"

    def __init__(self, n_samples=DEFAULT_MEAN_SAMPLES, max_workers=None):
        super().__init__(max_workers)
        try:
            valid = (not isinstance(n_samples, bool) and int(n_samples) == n_samples
                     and n_samples >= 1)
        except (TypeError, ValueError, OverflowError):
            valid = False
        if not valid:
            raise ConfigurationError(f"Sample count must be an integer >= 1, got {n_samples!r}")
        self.n_samples = int(n_samples)

    def _field_constants(self, accessor, drift_velocity, grid):
        mu = mobility(drift_velocity)
        wt = mu * mean_axial_field(accessor, grid)
        return mu, wt

    def _fill_compiled(self, values, accessor, drift_velocity, grid):
        mu, wt = self._field_constants(accessor, drift_velocity, grid)
        fill_first_order_table(values, *grid.bounds(), grid.nx, grid.ny, grid.nz,
                               mu, wt, self.n_samples, *accessor.kernel_arguments())

    def _node_correction(self, accessor, drift_velocity, grid):
        mu, wt = self._field_constants(accessor, drift_velocity, grid)
        fractions = (np.arange(self.n_samples) + 0.5) / self.n_samples

        def correction(x0, y0, z0):
            if abs(z0) >= DRIFT_LENGTH:
                return x0, y0, z0
            length = (DRIFT_LENGTH if z0 >= 0.0 else -DRIFT_LENGTH) - z0
            b = np.array([accessor.sample(x0, y0, z) for z in z0 + fractions * length])
            dx, dy = first_order_displacement(b[:, 0].mean(), b[:, 1].mean(), mu, wt, length)
            return x0 - dx, y0 - dy, z0

        return correction

    def __repr__(self):
        return f"FirstOrderTableBuilder(n_samples={self.n_samples})"
