"""
Tests for magnetic field sources and the field accessor
"""

import pytest
import numpy as np

from tpcexb.errors import ConfigurationError
from tpcexb.field import (
    FieldAccessor,
    UniformField,
    GradientField,
    CallableField,
    FieldMap,
    interpolate_mesh,
)


def linear_map(origin=(-300.0, -300.0, -300.0), spacing=(100.0, 100.0, 100.0), shape=(7, 7, 7)):
    """Map with B = (x/100, y/100, 5 + z/100) kG on a regular mesh."""
    xs = origin[0] + spacing[0] * np.arange(shape[0])
    ys = origin[1] + spacing[1] * np.arange(shape[1])
    zs = origin[2] + spacing[2] * np.arange(shape[2])
    X, Y, Z = np.meshgrid(xs, ys, zs, indexing='ij')
    b = np.stack([X / 100.0, Y / 100.0, 5.0 + Z / 100.0], axis=-1)
    return FieldMap(b, origin, spacing)


class TestAnalyticFields:
    """Test closed-form field models."""

    def test_uniform_field_native_units(self):
        """Uniform field returns its components in kG everywhere."""
        field = UniformField(bx=0.1, by=-0.2, bz=5.0)

        assert field.field(0.0, 0.0, 0.0) == (0.1, -0.2, 5.0)
        assert field.field(120.0, -80.0, 230.0) == (0.1, -0.2, 5.0)

    def test_gradient_field_axial_profile(self):
        """Bz grows linearly along z."""
        field = GradientField(b0=5.0, gradient=1e-3)

        _, _, bz0 = field.field(0.0, 0.0, 0.0)
        _, _, bz1 = field.field(0.0, 0.0, 200.0)

        assert bz0 == pytest.approx(5.0)
        assert bz1 == pytest.approx(6.0)

    def test_gradient_field_divergence_free(self):
        """Numerical divergence of the gradient field vanishes."""
        field = GradientField(b0=5.0, gradient=2e-3, bx=0.3, by=-0.1)
        h = 1e-3
        p = np.array([110.0, -60.0, 40.0])

        div = 0.0
        for axis in range(3):
            step = np.zeros(3)
            step[axis] = h
            div += (field.field(*(p + step))[axis] - field.field(*(p - step))[axis]) / (2 * h)

        assert abs(div) < 1e-9

    def test_callable_field(self):
        """CallableField evaluates the Python model."""
        field = CallableField(lambda x, y, z: (0.0, 0.0, 0.01 * z))

        assert field.field(0.0, 0.0, 100.0) == (0.0, 0.0, 1.0)
        assert not field.compiled

    def test_callable_field_rejects_non_callable(self):
        """A non-callable model is a configuration error."""
        with pytest.raises(ConfigurationError):
            CallableField(5.0)


class TestFieldMap:
    """Test measured field maps."""

    def test_bounds(self):
        """Bounds follow origin, spacing and shape."""
        field_map = linear_map()

        assert field_map.x_min == -300.0
        assert field_map.x_max == 300.0
        assert field_map.dz == 100.0
        assert field_map.shape == (7, 7, 7)

    def test_interpolation_of_linear_field_is_exact(self):
        """Trilinear interpolation reproduces a linear field."""
        field_map = linear_map()

        bx, by, bz = field_map.field(123.0, -47.0, 12.5)

        assert bx == pytest.approx(1.23)
        assert by == pytest.approx(-0.47)
        assert bz == pytest.approx(5.125)

    def test_outside_mesh_is_clamped(self):
        """Points beyond the mesh take the boundary value."""
        field_map = linear_map()

        bx, by, bz = field_map.field(1000.0, 0.0, -1000.0)

        assert bx == pytest.approx(3.0)
        assert by == pytest.approx(0.0)
        assert bz == pytest.approx(2.0)

    def test_mesh_kernel_matches_method(self):
        """The compiled kernel gives the same values as field()."""
        field_map = linear_map()
        params, mesh = field_map.kernel_arguments()

        assert interpolate_mesh(params, mesh, 10.0, 20.0, 30.0) == \
            pytest.approx(field_map.field(10.0, 20.0, 30.0))

    def test_from_text_any_row_order(self, tmp_path):
        """Loading from text does not depend on row order."""
        reference = linear_map(shape=(3, 4, 5))
        rows = []
        for i in range(3):
            for j in range(4):
                for k in range(5):
                    x = -300.0 + 100.0 * i
                    y = -300.0 + 100.0 * j
                    z = -300.0 + 100.0 * k
                    rows.append([x, y, z, *reference.b[i, j, k]])
        rows = np.array(rows)
        np.random.default_rng(1).shuffle(rows)
        path = tmp_path / "map.txt"
        np.savetxt(path, rows)

        loaded = FieldMap.from_text(path)

        assert loaded.shape == (3, 4, 5)
        np.testing.assert_allclose(loaded.origin, [-300.0, -300.0, -300.0])
        np.testing.assert_allclose(loaded.spacing, [100.0, 100.0, 100.0])
        np.testing.assert_allclose(loaded.b, reference.b)

    def test_from_text_uneven_mesh(self, tmp_path):
        """Unevenly spaced mesh points are rejected, not interpolated."""
        rows = []
        for x in (0.0, 10.0, 30.0):
            for y in (0.0, 10.0):
                for z in (0.0, 10.0):
                    rows.append([x, y, z, x, 0.0, 5.0])
        path = tmp_path / "map.txt"
        np.savetxt(path, rows)

        with pytest.raises(ConfigurationError):
            FieldMap.from_text(path)

    def test_from_text_incomplete_mesh(self, tmp_path):
        """Rows that do not form a full mesh are rejected."""
        path = tmp_path / "map.txt"
        np.savetxt(path, [[0, 0, 0, 0, 0, 5], [1, 0, 0, 0, 0, 5], [0, 1, 0, 0, 0, 5]])

        with pytest.raises(ConfigurationError):
            FieldMap.from_text(path)

    @pytest.mark.parametrize("shape", [(4, 4, 3), (4, 4, 1, 3), (1, 4, 4, 3)])
    def test_bad_shape(self, shape):
        """Maps need shape (nx, ny, nz, 3) with at least 2 points per axis."""
        with pytest.raises(ConfigurationError):
            FieldMap(np.zeros(shape), (0, 0, 0), (1, 1, 1))

    def test_bad_spacing(self):
        """Non-positive spacing is rejected."""
        with pytest.raises(ConfigurationError):
            FieldMap(np.zeros((2, 2, 2, 3)), (0, 0, 0), (1, 0, 1))


class TestFieldAccessor:
    """Test unit conversion and validation of the accessor."""

    def test_kilogauss_to_tesla(self):
        """Built-in sources in kG are sampled in tesla."""
        accessor = FieldAccessor(UniformField(bx=0.1, by=0.0, bz=5.0))

        bx, by, bz = accessor.sample(100.0, 0.0, 0.0)

        assert bx == pytest.approx(0.01)
        assert by == 0.0
        assert bz == pytest.approx(0.5)

    def test_position_unit_conversion(self):
        """Positions in cm reach a metre-based model in metres."""
        seen = []

        def model(x, y, z):
            seen.append((x, y, z))
            return 0.0, 0.0, 0.5

        accessor = FieldAccessor(CallableField(model, position_unit=1.0, field_unit=1.0))
        b = accessor.sample(150.0, -20.0, 80.0)

        assert seen[0] == pytest.approx((1.5, -0.2, 0.8))
        assert b == pytest.approx((0.0, 0.0, 0.5))

    def test_missing_source(self):
        """No field source is a fatal configuration error."""
        with pytest.raises(ConfigurationError):
            FieldAccessor(None)

    def test_unsupported_source(self):
        """Objects that are not FieldSources are rejected."""
        with pytest.raises(ConfigurationError):
            FieldAccessor(lambda x, y, z: (0, 0, 5))

    def test_wrap_keeps_accessor(self):
        """wrap() does not nest accessors."""
        accessor = FieldAccessor(UniformField())

        assert FieldAccessor.wrap(accessor) is accessor
        assert isinstance(FieldAccessor.wrap(UniformField()), FieldAccessor)

    def test_kernel_arguments(self):
        """Compiled sources expose their kernel description."""
        accessor = FieldAccessor(linear_map())
        kind, params, mesh, position_scale, field_scale = accessor.kernel_arguments()

        assert accessor.compiled
        assert accessor.is_map
        assert mesh.shape == (7, 7, 7, 3)
        assert position_scale == pytest.approx(100.0)
        assert field_scale == pytest.approx(0.1)
