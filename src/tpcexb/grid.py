"""
Correction Grid and Lookup Table

The correction volume is a regular 3D grid spanning x, y in
[min, max] and |z| in [0, z_max]. The z axis is split into the two drift
sides, so every node stores two corrections (side 0: z < 0, side 1: z >= 0).

Table layout (flat float64 array):

    index = (((i*ny + j)*nz + k)*2 + side)*3 + component

All addressing goes through LookupTable.flat_index() and the compiled
flat_index_numba(); nothing else computes offsets into the table.
"""

import math
from dataclasses import dataclass

import numpy as np
from numba import njit

from .constants import CM, DEFAULT_NODES, DRIFT_LENGTH
from .errors import ConfigurationError
from . import logging


# ==================== GRID ====================

@dataclass(frozen=True)
class Grid:
    """
    Discretisation of the correction volume.

    Attributes:
        x_min, x_max: First and last node in x [cm]
        y_min, y_max: First and last node in y [cm]
        z_max: Last node in |z| (first node is the cathode, z = 0) [cm]
        nx, ny, nz: Nodes per axis (>= 2)

    Raises:
        ConfigurationError: Fewer than 2 nodes on an axis or empty bounds
    """

    x_min: float = -DRIFT_LENGTH
    x_max: float = DRIFT_LENGTH
    y_min: float = -DRIFT_LENGTH
    y_max: float = DRIFT_LENGTH
    z_max: float = DRIFT_LENGTH
    nx: int = DEFAULT_NODES
    ny: int = DEFAULT_NODES
    nz: int = DEFAULT_NODES

    def __post_init__(self):
        for name in ("nx", "ny", "nz"):
            n = getattr(self, name)
            try:
                valid = not isinstance(n, bool) and int(n) == n and n >= 2
            except (TypeError, ValueError, OverflowError):
                valid = False
            if not valid:
                raise ConfigurationError(
                    f"Grid needs at least 2 nodes per axis, got {name}={n}"
                )
            object.__setattr__(self, name, int(n))
        for name in ("x_min", "x_max", "y_min", "y_max", "z_max"):
            try:
                value = float(getattr(self, name))
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Grid bound {name}={getattr(self, name)!r} is not a number"
                ) from None
            if not math.isfinite(value):
                raise ConfigurationError(f"Grid bound {name}={value} is not finite")
            object.__setattr__(self, name, value)
        if not self.x_max > self.x_min:
            raise ConfigurationError(f"Empty x range [{self.x_min}, {self.x_max}]")
        if not self.y_max > self.y_min:
            raise ConfigurationError(f"Empty y range [{self.y_min}, {self.y_max}]")
        if not self.z_max > 0.0:
            raise ConfigurationError(f"z_max must be positive, got {self.z_max}")

    @classmethod
    def from_field_map(cls, field_map):
        """
        Grid aligned with the mesh of a measured field map.

        Each bound is moved outward to the first map mesh point at or
        beyond the nominal +-250 cm envelope; node counts follow the map
        spacing.

        Args:
            field_map: FieldMap (any position unit)

        Raises:
            ConfigurationError: Derived bounds not finite or z_max not positive
        """
        to_cm = field_map.position_unit / CM
        dx, dy, dz = (d * to_cm for d in (field_map.dx, field_map.dy, field_map.dz))
        map_x = (field_map.x_min * to_cm, field_map.x_max * to_cm)
        map_y = (field_map.y_min * to_cm, field_map.y_max * to_cm)
        map_z = (field_map.z_min * to_cm, field_map.z_max * to_cm)

        x_min = map_x[0] - np.ceil((map_x[0] + DRIFT_LENGTH) / dx) * dx
        x_max = map_x[1] - np.floor((map_x[1] - DRIFT_LENGTH) / dx) * dx
        y_min = map_y[0] - np.ceil((map_y[0] + DRIFT_LENGTH) / dy) * dy
        y_max = map_y[1] - np.floor((map_y[1] - DRIFT_LENGTH) / dy) * dy
        z_max = map_z[1] - np.floor((map_z[1] - DRIFT_LENGTH) / dz) * dz
        bounds = (x_min, x_max, y_min, y_max, z_max)
        if not np.all(np.isfinite(bounds)) or not z_max > 0.0:
            raise ConfigurationError(
                f"Field map x=[{map_x[0]}, {map_x[1]}], y=[{map_y[0]}, {map_y[1]}], "
                f"z=[{map_z[0]}, {map_z[1]}] cm gives unusable grid bounds {bounds}"
            )

        nx = int((x_max - x_min) / dx + 1.1)
        ny = int((y_max - y_min) / dy + 1.1)
        nz = int(z_max / dz + 1.1)

        logging.log_debug(
            f"Grid from field map: x=[{x_min}, {x_max}] y=[{y_min}, {y_max}] "
            f"z_max={z_max}, nodes {nx}x{ny}x{nz}"
        )
        return cls(x_min, x_max, y_min, y_max, z_max, nx, ny, nz)

    @property
    def shape(self):
        return (self.nx, self.ny, self.nz)

    @property
    def n_nodes(self):
        """Number of (x, y, |z|) nodes, each holding two sides."""
        return self.nx * self.ny * self.nz

    @property
    def table_size(self):
        return self.n_nodes * 2 * 3

    def x_nodes(self):
        return np.linspace(self.x_min, self.x_max, self.nx)

    def y_nodes(self):
        return np.linspace(self.y_min, self.y_max, self.ny)

    def z_nodes(self):
        return np.linspace(0.0, self.z_max, self.nz)

    def bounds(self):
        """(x_min, x_max, y_min, y_max, z_max) as floats for the kernels."""
        return (self.x_min, self.x_max, self.y_min, self.y_max, self.z_max)

    def __repr__(self):
        return (f"Grid(x=[{self.x_min}, {self.x_max}], y=[{self.y_min}, {self.y_max}], "
                f"|z|=[0, {self.z_max}] cm, nodes={self.nx}x{self.ny}x{self.nz}x2)")


# ==================== LOOKUP TABLE ====================

@njit
def flat_index_numba(i, j, k, side, ny, nz):
    """
    Offset of component 0 of node (i, j, k, side) in the flat table.
    """
    return (((i * ny + j) * nz + k) * 2 + side) * 3


@njit
def node_from_flat(node, ny, nz):
    """
    Inverse of the (i*ny + j)*nz + k node numbering.

    Returns:
        (i, j, k)
    """
    k = node % nz
    j = (node // nz) % ny
    i = node // (ny * nz)
    return i, j, k


class LookupTable:
    """
    Per-node corrections of one grid, stored in a single flat array.

    Args:
        grid: The Grid the table belongs to
        values: Optional existing flat array of size grid.table_size

    Attributes:
        values: Flat float64 array (read-only once frozen)
    """

    def __init__(self, grid, values=None):
        self.grid = grid
        if values is None:
            values = np.zeros(grid.table_size, dtype=np.float64)
        else:
            values = np.ascontiguousarray(values, dtype=np.float64)
            if values.shape != (grid.table_size,):
                raise ConfigurationError(
                    f"Table for {grid} needs {grid.table_size} values, "
                    f"got shape {values.shape}"
                )
        self.values = values

    def flat_index(self, i, j, k, side, component=0):
        """
        Position of one value in the flat array.

        Args:
            i, j, k: Node indices along x, y, |z|
            side: 0 for z < 0, 1 for z >= 0
            component: 0, 1, 2 for x, y, z
        """
        g = self.grid
        if not (0 <= i < g.nx and 0 <= j < g.ny and 0 <= k < g.nz):
            raise IndexError(f"Node ({i}, {j}, {k}) outside grid {g.shape}")
        if side not in (0, 1) or component not in (0, 1, 2):
            raise IndexError(f"Invalid side {side} or component {component}")
        return (((i * g.ny + j) * g.nz + k) * 2 + side) * 3 + component

    def node(self, i, j, k, side):
        """Stored 3-vector of one node (a view into the table)."""
        start = self.flat_index(i, j, k, side)
        return self.values[start:start + 3]

    def as_array(self):
        """View with shape (nx, ny, nz, 2, 3)."""
        g = self.grid
        return self.values.reshape(g.nx, g.ny, g.nz, 2, 3)

    def freeze(self):
        """Make the table immutable."""
        self.values.setflags(write=False)
        return self

    @property
    def frozen(self):
        return not self.values.flags.writeable

    def __repr__(self):
        state = "frozen" if self.frozen else "writable"
        return f"LookupTable({self.grid!r}, {state})"
