"""
Electron Drift Motion (Langevin Equation)

Steady-state solution of the Langevin equation for an electron drifting
in crossed electric and magnetic fields with a single scalar time
constant tau:

    v = tau / (1 + |w|^2 tau^2) * [ (I + tau^2 w w^T) E' + tau (E' x w) ]

with w = (e/m) B and E' = (e/m) E. Written out, the tensor has diagonal
terms 1 + w_i^2 tau^2 and off-diagonal terms w_i w_j tau^2 +- w_k tau.

Reference:
    Blum, Riegler & Rolandi (2008), "Particle Detection with Drift
    Chambers", Section 2.1
"""

import numpy as np
from numba import njit

from .constants import CM, CM_PER_US, DRIFT_FIELD, E_OVER_M, time_constant
from .errors import ConfigurationError
from .field import field_si


# ==================== NUMBA-COMPILED KERNELS ====================

@njit
def electric_field(z):
    """
    Drift field at a given z.

    Uniform and axial; its sign follows the drift side (z < 0 is the
    negative side, the cathode plane belongs to the positive side).

    Args:
        z: Axial position (any length unit)

    Returns:
        (ex, ey, ez) [V/m]
    """
    if z < 0.0:
        return 0.0, 0.0, -DRIFT_FIELD
    return 0.0, 0.0, DRIFT_FIELD


@njit
def langevin_velocity(ex, ey, ez, bx, by, bz, tau):
    """
    Drift velocity vector for local E and B.

    Args:
        ex, ey, ez: Electric field [V/m]
        bx, by, bz: Magnetic field [T]
        tau: Time constant [s]

    Returns:
        (vx, vy, vz) [m/s]
    """
    tau2 = tau * tau
    wx = E_OVER_M * bx
    wy = E_OVER_M * by
    wz = E_OVER_M * bz
    ex = E_OVER_M * ex
    ey = E_OVER_M * ey
    ez = E_OVER_M * ez
    w2 = wx * wx + wy * wy + wz * wz

    vx = ((1.0 + wx * wx * tau2) * ex
          + (wz * tau + wx * wy * tau2) * ey
          + (-wy * tau + wx * wz * tau2) * ez)
    vy = ((-wz * tau + wx * wy * tau2) * ex
          + (1.0 + wy * wy * tau2) * ey
          + (wx * tau + wy * wz * tau2) * ez)
    vz = ((wy * tau + wx * wz * tau2) * ex
          + (-wx * tau + wy * wz * tau2) * ey
          + (1.0 + wz * wz * tau2) * ez)

    fac = tau / (1.0 + w2 * tau2)
    return vx * fac, vy * fac, vz * fac


@njit
def drift_velocity_at(x, y, z, tau, kind, params, mesh, position_scale, field_scale):
    """
    Drift velocity at a position for a compiled field source.

    Args:
        x, y, z: Position [m]
        tau: Time constant [s]
        kind, params, mesh, position_scale, field_scale: See FieldAccessor

    Returns:
        (vx, vy, vz) [m/s]
    """
    bx, by, bz = field_si(kind, params, mesh, position_scale, field_scale, x, y, z)
    ex, ey, ez = electric_field(z)
    return langevin_velocity(ex, ey, ez, bx, by, bz, tau)


# ==================== PYTHON INTERFACE ====================

def check_drift_velocity(drift_velocity):
    """
    Validate a drift velocity.

    Raises:
        ConfigurationError: Not a finite positive number
    """
    try:
        v = float(drift_velocity)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid drift velocity {drift_velocity!r}") from None
    if not np.isfinite(v) or v <= 0.0:
        raise ConfigurationError(f"Drift velocity must be positive, got {drift_velocity}")
    return v


class MotionModel:
    """
    Drift velocity field of electrons in the chamber.

    Args:
        accessor: FieldAccessor for the magnetic field
        drift_velocity: Nominal drift velocity without magnetic field [cm/us]

    Attributes:
        v_drift: Drift velocity [m/s]
        tau: Langevin time constant [s]
    """

    def __init__(self, accessor, drift_velocity):
        self.accessor = accessor
        self.drift_velocity = check_drift_velocity(drift_velocity)
        self.v_drift = self.drift_velocity * CM_PER_US
        self.tau = time_constant(self.drift_velocity)

    def velocity_si(self, x, y, z):
        """Drift velocity [m/s] at a position given in metres."""
        bx, by, bz = self.accessor.sample_si(x, y, z)
        ex, ey, ez = electric_field(z)
        return langevin_velocity(ex, ey, ez, bx, by, bz, self.tau)

    def velocity(self, x, y, z):
        """
        Drift velocity at a position.

        Args:
            x, y, z: Position [cm]

        Returns:
            (vx, vy, vz) [m/s]
        """
        return self.velocity_si(x * CM, y * CM, z * CM)

    def __repr__(self):
        return (f"MotionModel(drift_velocity={self.drift_velocity} cm/us, "
                f"tau={self.tau:.3e} s)")
