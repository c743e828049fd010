"""
Drift Trajectory Integration

Follows a drift electron from its starting point to the readout plane at
|z| = 250 cm with fixed-step explicit Euler integration of the Langevin
drift velocity. The step is

    h = 250 cm / v_drift / n_steps

so n_steps steps nominally cover a full half drift length. The readout
crossing is found by linear interpolation of the last step; the axial
coordinate is rebuilt from the drift time (the way the detector measures
it) instead of from the last position.

A high-order reference trajectory (scipy RK45 with a terminal event on the
readout plane) is available for accuracy studies.
"""

import numpy as np
from numba import njit, prange
from scipy.integrate import solve_ivp

from .constants import (
    CM,
    DEFAULT_STEPS,
    DRIFT_FIELD,
    DRIFT_LENGTH,
    DRIFT_LENGTH_M,
    E_OVER_M,
)
from .errors import ConfigurationError
from .motion import MotionModel, drift_velocity_at


# ==================== NUMBA-COMPILED INTEGRATION ====================

@njit
def crossing_point(xo, yo, zo, x, y, z, t, h, v_drift, z0):
    """
    Readout crossing from the last Euler step.

    Args:
        xo, yo, zo: Position before the last step [m]
        x, y, z: Position after the last step [m]
        t: Time after the last step [s]
        h: Step size [s]
        v_drift: Drift velocity [m/s]
        z0: Starting z [cm], selects the drift side

    Returns:
        (x, y, z) distorted crossing [cm]
    """
    plane = DRIFT_LENGTH_M if z >= 0.0 else -DRIFT_LENGTH_M
    p = (plane - zo) / (z - zo)
    xc = (xo + p * (x - xo)) / CM
    yc = (yo + p * (y - yo)) / CM
    t_cross = t - h + p * h
    side = 1.0 if z0 >= 0.0 else -1.0
    zc = side * (DRIFT_LENGTH - t_cross * v_drift / CM)
    return xc, yc, zc


@njit
def euler_distort(x0, y0, z0, v_drift, n_steps, kind, params, mesh,
                  position_scale, field_scale):
    """
    Forward distortion of one starting point (compiled field sources).

    Args:
        x0, y0, z0: Starting point [cm]
        v_drift: Drift velocity [m/s]
        n_steps: Steps over a full half drift length
        kind, params, mesh, position_scale, field_scale: See FieldAccessor

    Returns:
        (x, y, z) distorted crossing [cm]; the start point itself if it is
        already on or beyond the readout plane
    """
    tau = v_drift / DRIFT_FIELD / E_OVER_M
    h = DRIFT_LENGTH_M / v_drift / n_steps

    x = x0 * CM
    y = y0 * CM
    z = z0 * CM
    xo, yo, zo = x, y, z
    t = 0.0
    while abs(z) < DRIFT_LENGTH_M:
        xo, yo, zo = x, y, z
        vx, vy, vz = drift_velocity_at(x, y, z, tau, kind, params, mesh,
                                       position_scale, field_scale)
        x += h * vx
        y += h * vy
        z += h * vz
        t += h

    if t == 0.0:
        return x0, y0, z0
    return crossing_point(xo, yo, zo, x, y, z, t, h, v_drift, z0)


@njit
def to_correction(x0, y0, z0, xd, yd, zd):
    """Turn a distorted position into a correction: start - (distorted - start)."""
    return x0 - (xd - x0), y0 - (yd - y0), z0 - (zd - z0)


@njit
def euler_correction(x0, y0, z0, v_drift, n_steps, kind, params, mesh,
                     position_scale, field_scale):
    """Correction vector of one starting point [cm]."""
    xd, yd, zd = euler_distort(x0, y0, z0, v_drift, n_steps, kind, params, mesh,
                               position_scale, field_scale)
    return to_correction(x0, y0, z0, xd, yd, zd)


@njit(parallel=True)
def euler_correction_many(points, v_drift, n_steps, kind, params, mesh,
                          position_scale, field_scale):
    """
    Corrections for an (n, 3) array of starting points [cm].
    """
    n = points.shape[0]
    out = np.empty((n, 3), dtype=np.float64)
    for p in prange(n):
        cx, cy, cz = euler_correction(points[p, 0], points[p, 1], points[p, 2],
                                      v_drift, n_steps, kind, params, mesh,
                                      position_scale, field_scale)
        out[p, 0] = cx
        out[p, 1] = cy
        out[p, 2] = cz
    return out


# ==================== PYTHON INTERFACE ====================

def check_steps(n_steps):
    """
    Validate an integration step count.

    Raises:
        ConfigurationError: Not an integer >= 1
    """
    try:
        valid = not isinstance(n_steps, bool) and int(n_steps) == n_steps and n_steps >= 1
    except (TypeError, ValueError, OverflowError):
        valid = False
    if not valid:
        raise ConfigurationError(f"Step count must be an integer >= 1, got {n_steps!r}")
    return int(n_steps)


class TrajectoryIntegrator:
    """
    Drift electron tracking to the readout plane.

    Args:
        accessor: FieldAccessor for the magnetic field
        drift_velocity: Drift velocity [cm/us]
        n_steps: Euler steps over the full half drift length

    Raises:
        ConfigurationError: Non-positive drift velocity or step count
    """

    def __init__(self, accessor, drift_velocity, n_steps=DEFAULT_STEPS):
        self.motion = MotionModel(accessor, drift_velocity)
        self.accessor = accessor
        self.n_steps = check_steps(n_steps)

    @property
    def drift_velocity(self):
        return self.motion.drift_velocity

    @property
    def v_drift(self):
        return self.motion.v_drift

    @property
    def step(self):
        """Integration step [s]."""
        return DRIFT_LENGTH_M / self.v_drift / self.n_steps

    def distort(self, x, y, z):
        """
        Where a drift electron starting at (x, y, z) is reconstructed.

        Args:
            x, y, z: Starting point [cm]

        Returns:
            (x, y, z) distorted position [cm]
        """
        x, y, z = float(x), float(y), float(z)
        if self.accessor.compiled:
            return euler_distort(x, y, z, self.v_drift, self.n_steps,
                                 *self.accessor.kernel_arguments())
        return self._distort_python(x, y, z)

    def correction(self, x, y, z):
        """
        Corrected position for a hit measured at (x, y, z).

        The forward distortion at the point is applied with opposite sign:
        start - (distorted - start).
        """
        xd, yd, zd = self.distort(x, y, z)
        return to_correction(float(x), float(y), float(z), xd, yd, zd)

    def correction_many(self, points):
        """
        Corrections for an (n, 3) array of points [cm].
        """
        points = np.ascontiguousarray(np.atleast_2d(points), dtype=np.float64)
        if self.accessor.compiled:
            return euler_correction_many(points, self.v_drift, self.n_steps,
                                         *self.accessor.kernel_arguments())
        return np.array([self.correction(*p) for p in points], dtype=np.float64).reshape(-1, 3)

    def _distort_python(self, x0, y0, z0):
        # Same stepping as euler_distort(), for fields evaluated in Python
        h = self.step
        velocity = self.motion.velocity_si
        x, y, z = x0 * CM, y0 * CM, z0 * CM
        xo, yo, zo = x, y, z
        t = 0.0
        while abs(z) < DRIFT_LENGTH_M:
            xo, yo, zo = x, y, z
            vx, vy, vz = velocity(x, y, z)
            x += h * vx
            y += h * vy
            z += h * vz
            t += h

        if t == 0.0:
            return x0, y0, z0
        return crossing_point(xo, yo, zo, x, y, z, t, h, self.v_drift, z0)

    def reference_distort(self, x, y, z, rtol=1e-10, atol=1e-13):
        """
        Distortion from an adaptive RK45 trajectory.

        Used to check the accuracy of the Euler integration; not used for
        building tables.

        Args:
            x, y, z: Starting point [cm]
            rtol, atol: solve_ivp tolerances (atol in metres)

        Returns:
            (x, y, z) distorted position [cm]
        """
        x0, y0, z0 = float(x), float(y), float(z)
        if abs(z0) >= DRIFT_LENGTH:
            return x0, y0, z0

        velocity = self.motion.velocity_si

        def rhs(t, s):
            return velocity(s[0], s[1], s[2])

        def readout(t, s):
            return abs(s[2]) - DRIFT_LENGTH_M

        readout.terminal = True
        readout.direction = 1.0

        # Transverse fields only slow the axial drift; 10x covers any sane field
        t_max = 10.0 * DRIFT_LENGTH_M / self.v_drift
        sol = solve_ivp(rhs, (0.0, t_max), [x0 * CM, y0 * CM, z0 * CM],
                        method='RK45', events=readout, rtol=rtol, atol=atol)
        if sol.status != 1:
            raise RuntimeError(
                f"Reference trajectory from ({x0}, {y0}, {z0}) did not reach "
                f"the readout plane: {sol.message}"
            )

        t_cross = sol.t_events[0][0]
        xc, yc, _ = sol.y_events[0][0]
        side = 1.0 if z0 >= 0.0 else -1.0
        return xc / CM, yc / CM, side * (DRIFT_LENGTH - t_cross * self.v_drift / CM)

    def __repr__(self):
        return (f"TrajectoryIntegrator(drift_velocity={self.drift_velocity} cm/us, "
                f"n_steps={self.n_steps})")
