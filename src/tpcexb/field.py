"""
Magnetic Field Sources and Accessor

Implements:
- FieldSource: interface shared by every magnetic field backend
- AnalyticField models (uniform, axial gradient, arbitrary Python callable)
- FieldMap: measured field on a regular mesh with trilinear interpolation
- FieldAccessor: unit conversion to tesla and the description used by the
  compiled integration kernels

Built-in sources follow the conventions of the experiment's field classes:
positions in cm, fields in kilogauss. The accessor hides this from the rest
of the package, which works in SI.
"""

from abc import ABC, abstractmethod

import numpy as np
from numba import njit

from .constants import CM, KGAUSS, TESLA
from .errors import ConfigurationError


# Dispatch codes understood by native_field()
KIND_UNIFORM = 0
KIND_GRADIENT = 1
KIND_MAP = 2

N_PARAMS = 6

# Placeholder mesh for sources without one (keeps kernel argument types fixed)
_NO_MESH = np.zeros((1, 1, 1, 3), dtype=np.float64)


# ==================== NUMBA-COMPILED FIELD EVALUATION ====================

@njit
def _mesh_axis(u, u_min, du, n):
    """
    Lower mesh index and fraction along one axis, clamped to the mesh.
    """
    f = (u - u_min) / du
    if f < 0.0:
        f = 0.0
    elif f > n - 1:
        f = n - 1.0
    i = int(f)
    if i > n - 2:
        i = n - 2
    return i, f - i


@njit
def interpolate_mesh(params, mesh, x, y, z):
    """
    Trilinear interpolation of a regular field mesh.

    Points outside the mesh take the value on its boundary.

    Args:
        params: [x_min, y_min, z_min, dx, dy, dz] in native position units
        mesh: Field values, shape (nx, ny, nz, 3)
        x, y, z: Position in native units

    Returns:
        (bx, by, bz) in native field units
    """
    nx, ny, nz = mesh.shape[0], mesh.shape[1], mesh.shape[2]
    i, fx = _mesh_axis(x, params[0], params[3], nx)
    j, fy = _mesh_axis(y, params[1], params[4], ny)
    k, fz = _mesh_axis(z, params[2], params[5], nz)

    b0 = 0.0
    b1 = 0.0
    b2 = 0.0
    for di in range(2):
        wx = fx if di == 1 else 1.0 - fx
        for dj in range(2):
            wy = fy if dj == 1 else 1.0 - fy
            for dk in range(2):
                w = wx * wy * (fz if dk == 1 else 1.0 - fz)
                b0 += w * mesh[i + di, j + dj, k + dk, 0]
                b1 += w * mesh[i + di, j + dj, k + dk, 1]
                b2 += w * mesh[i + di, j + dj, k + dk, 2]
    return b0, b1, b2


@njit
def native_field(kind, params, mesh, x, y, z):
    """
    Evaluate a built-in field source in its native units.

    Args:
        kind: KIND_UNIFORM, KIND_GRADIENT or KIND_MAP
        params: Source parameters, shape (N_PARAMS,)
        mesh: Field mesh (only read for KIND_MAP)
        x, y, z: Position in native units

    Returns:
        (bx, by, bz) in native field units
    """
    if kind == KIND_UNIFORM:
        return params[0], params[1], params[2]
    elif kind == KIND_GRADIENT:
        # Bz = b0 (1 + g z), transverse part keeps div B = 0
        b0 = params[0]
        g = params[1]
        return (params[2] - 0.5 * b0 * g * x,
                params[3] - 0.5 * b0 * g * y,
                b0 * (1.0 + g * z))
    return interpolate_mesh(params, mesh, x, y, z)


# ==================== FIELD SOURCES ====================

class FieldSource(ABC):
    """
    Abstract magnetic field backend.

    Every source has a native position unit and a native field unit
    (expressed in metres and tesla respectively) and evaluates the field
    at a position given in those units.

    Attributes:
        position_unit: Native length unit [m]
        field_unit: Native field unit [T]
        kind: Dispatch code for the compiled kernels, None if the source
              can only be evaluated from Python
    """

    position_unit = CM
    field_unit = KGAUSS
    kind = None

    @abstractmethod
    def field(self, x, y, z):
        """
        Field at a position.

        Args:
            x, y, z: Position in native units

        Returns:
            (bx, by, bz) in native field units
        """

    def kernel_arguments(self):
        """
        Parameters and mesh passed to native_field() for compiled sources.
        """
        raise NotImplementedError(f"{type(self).__name__} has no compiled form")

    @property
    def compiled(self):
        return self.kind is not None


class AnalyticField(FieldSource):
    """Field given by a closed-form model."""


class UniformField(AnalyticField):
    """
    Homogeneous field.

    Args:
        bx, by, bz: Field components [kG]
    """

    kind = KIND_UNIFORM

    def __init__(self, bx=0.0, by=0.0, bz=5.0):
        self.b = np.array([bx, by, bz], dtype=np.float64)

    def field(self, x, y, z):
        return float(self.b[0]), float(self.b[1]), float(self.b[2])

    def kernel_arguments(self):
        params = np.zeros(N_PARAMS, dtype=np.float64)
        params[:3] = self.b
        return params, _NO_MESH

    def __repr__(self):
        return f"UniformField(bx={self.b[0]}, by={self.b[1]}, bz={self.b[2]} kG)"


class GradientField(AnalyticField):
    """
    Solenoid-like field with a linear axial gradient.

        Bz = b0 * (1 + g*z)
        Bx = bx - b0*g*x/2
        By = by - b0*g*y/2

    The radial terms make the field divergence free.

    Args:
        b0: Axial field at z = 0 [kG]
        gradient: Relative axial gradient g [1/cm]
        bx, by: Constant transverse offsets [kG]
    """

    kind = KIND_GRADIENT

    def __init__(self, b0=5.0, gradient=0.0, bx=0.0, by=0.0):
        self.b0 = float(b0)
        self.gradient = float(gradient)
        self.bx = float(bx)
        self.by = float(by)

    def field(self, x, y, z):
        params, mesh = self.kernel_arguments()
        return native_field(self.kind, params, mesh, float(x), float(y), float(z))

    def kernel_arguments(self):
        params = np.zeros(N_PARAMS, dtype=np.float64)
        params[:4] = (self.b0, self.gradient, self.bx, self.by)
        return params, _NO_MESH

    def __repr__(self):
        return (f"GradientField(b0={self.b0} kG, gradient={self.gradient}/cm, "
                f"bx={self.bx}, by={self.by})")


class CallableField(AnalyticField):
    """
    Arbitrary Python field model.

    The callable is evaluated from Python, so tables built on it use the
    thread-pool path instead of the compiled kernels.

    Args:
        func: Callable (x, y, z) -> (bx, by, bz) in native units
        position_unit: Length unit expected by func [m]
        field_unit: Field unit returned by func [T]
    """

    def __init__(self, func, position_unit=CM, field_unit=KGAUSS):
        if not callable(func):
            raise ConfigurationError(f"Field model {func!r} is not callable")
        self.func = func
        self.position_unit = position_unit
        self.field_unit = field_unit

    def field(self, x, y, z):
        bx, by, bz = self.func(x, y, z)
        return float(bx), float(by), float(bz)


class FieldMap(FieldSource):
    """
    Measured field on a regular mesh.

    Values between mesh points are trilinearly interpolated; outside the
    mesh the boundary value is used.

    Args:
        b: Field values, shape (nx, ny, nz, 3), native field units
        origin: (x_min, y_min, z_min) in native position units
        spacing: (dx, dy, dz) in native position units
        position_unit: Mesh length unit [m]
        field_unit: Field unit of b [T]

    Raises:
        ConfigurationError: Bad mesh shape or non-positive spacing
    """

    kind = KIND_MAP

    def __init__(self, b, origin, spacing, position_unit=CM, field_unit=KGAUSS):
        b = np.ascontiguousarray(b, dtype=np.float64)
        if b.ndim != 4 or b.shape[3] != 3:
            raise ConfigurationError(
                f"Field map must have shape (nx, ny, nz, 3), got {b.shape}"
            )
        if min(b.shape[:3]) < 2:
            raise ConfigurationError(
                f"Field map needs at least 2 mesh points per axis, got {b.shape[:3]}"
            )
        spacing = np.asarray(spacing, dtype=np.float64)
        if spacing.shape != (3,) or np.any(spacing <= 0):
            raise ConfigurationError(f"Invalid field map spacing {spacing}")
        origin = np.asarray(origin, dtype=np.float64)
        if origin.shape != (3,) or not np.all(np.isfinite(origin)):
            raise ConfigurationError(f"Invalid field map origin {origin}")

        self.b = b
        self.origin = origin
        self.spacing = spacing
        self.position_unit = position_unit
        self.field_unit = field_unit

    @classmethod
    def from_text(cls, path, position_unit=CM, field_unit=KGAUSS):
        """
        Load a map from a whitespace separated text file.

        Each row holds x, y, z, bx, by, bz. Rows may come in any order but
        must cover a complete, evenly spaced mesh.
        """
        data = np.loadtxt(path, ndmin=2)
        if data.shape[1] != 6:
            raise ConfigurationError(
                f"{path}: expected 6 columns (x y z bx by bz), got {data.shape[1]}"
            )
        x, y, z = data[:, 0], data[:, 1], data[:, 2]
        x_grid, y_grid, z_grid = np.unique(x), np.unique(y), np.unique(z)
        for name, g in (('x', x_grid), ('y', y_grid), ('z', z_grid)):
            steps = np.diff(g)
            if len(steps) and not np.allclose(steps, steps[0]):
                raise ConfigurationError(
                    f"{path}: {name} mesh points are not evenly spaced"
                )
        shape = (len(x_grid), len(y_grid), len(z_grid))
        if shape[0] * shape[1] * shape[2] != len(data):
            raise ConfigurationError(
                f"{path}: {len(data)} rows do not form a regular {shape} mesh"
            )

        order = np.lexsort((z, y, x))
        b = data[order, 3:].reshape(shape + (3,))
        spacing = [np.diff(g).mean() if len(g) > 1 else 0.0 for g in (x_grid, y_grid, z_grid)]
        origin = [x_grid[0], y_grid[0], z_grid[0]]
        return cls(b, origin, spacing, position_unit, field_unit)

    @property
    def shape(self):
        return self.b.shape[:3]

    @property
    def x_min(self):
        return self.origin[0]

    @property
    def y_min(self):
        return self.origin[1]

    @property
    def z_min(self):
        return self.origin[2]

    @property
    def dx(self):
        return self.spacing[0]

    @property
    def dy(self):
        return self.spacing[1]

    @property
    def dz(self):
        return self.spacing[2]

    @property
    def x_max(self):
        return self.origin[0] + (self.shape[0] - 1) * self.spacing[0]

    @property
    def y_max(self):
        return self.origin[1] + (self.shape[1] - 1) * self.spacing[1]

    @property
    def z_max(self):
        return self.origin[2] + (self.shape[2] - 1) * self.spacing[2]

    def field(self, x, y, z):
        params, mesh = self.kernel_arguments()
        return interpolate_mesh(params, mesh, float(x), float(y), float(z))

    def kernel_arguments(self):
        params = np.zeros(N_PARAMS, dtype=np.float64)
        params[:3] = self.origin
        params[3:] = self.spacing
        return params, self.b

    def __repr__(self):
        return (f"FieldMap(shape={self.shape}, "
                f"x=[{self.x_min}, {self.x_max}], y=[{self.y_min}, {self.y_max}], "
                f"z=[{self.z_min}, {self.z_max}])")


# ==================== ACCESSOR ====================

class FieldAccessor:
    """
    Uniform view of a field source in SI units.

    Args:
        source: The FieldSource to wrap

    Attributes:
        position_scale: Native position units per metre
        field_scale: Tesla per native field unit

    Raises:
        ConfigurationError: If source is missing or not a FieldSource
    """

    def __init__(self, source):
        if source is None:
            raise ConfigurationError("A magnetic field source must be supplied")
        if not isinstance(source, FieldSource):
            raise ConfigurationError(
                f"Unsupported field source {type(source).__name__}; "
                "expected an AnalyticField or a FieldMap"
            )
        self.source = source
        self.position_scale = 1.0 / source.position_unit
        self.field_scale = source.field_unit / TESLA

    @classmethod
    def wrap(cls, field):
        """Return field unchanged if it is already an accessor."""
        if isinstance(field, cls):
            return field
        return cls(field)

    @property
    def compiled(self):
        return self.source.compiled

    @property
    def is_map(self):
        return isinstance(self.source, FieldMap)

    def sample(self, x, y, z):
        """
        Field at a position.

        Args:
            x, y, z: Position [cm]

        Returns:
            (bx, by, bz) [T]
        """
        return self.sample_si(x * CM, y * CM, z * CM)

    def sample_si(self, x, y, z):
        """Field [T] at a position given in metres."""
        s = self.position_scale
        bx, by, bz = self.source.field(x * s, y * s, z * s)
        f = self.field_scale
        return bx * f, by * f, bz * f

    def kernel_arguments(self):
        """
        (kind, params, mesh, position_scale, field_scale) for the kernels.
        """
        params, mesh = self.source.kernel_arguments()
        return (self.source.kind, params, mesh,
                self.position_scale, self.field_scale)

    def __repr__(self):
        return f"FieldAccessor({self.source!r})"


@njit
def field_si(kind, params, mesh, position_scale, field_scale, x, y, z):
    """
    Compiled counterpart of FieldAccessor.sample_si().

    Args:
        x, y, z: Position [m]

    Returns:
        (bx, by, bz) [T]
    """
    bx, by, bz = native_field(kind, params, mesh,
                              x * position_scale, y * position_scale, z * position_scale)
    return bx * field_scale, by * field_scale, bz * field_scale
