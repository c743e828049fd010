"""
Physical Constants and Chamber Geometry

All internal computation is in SI units. Public coordinates are in cm,
drift velocities in cm/us and magnetic fields in tesla.
"""

import numpy as np

# ==================== FUNDAMENTAL CONSTANTS ====================

e = 1.602176487e-19  # Elementary charge [C]
m_e = 9.10938215e-31  # Electron mass [kg]

E_OVER_M = e / m_e  # Electron charge-to-mass ratio [C/kg]

# ==================== DRIFT CHAMBER ====================

DRIFT_FIELD = 40.0e3  # Drift field modulus [V/m]
DRIFT_LENGTH = 250.0  # Half drift length, readout plane at |z| = 250 [cm]
R_INNER = 90.0  # Inner radius of the correction acceptance [cm]
R_OUTER = 250.0  # Outer radius of the correction acceptance [cm]

# Table nodes on the cathode are evaluated slightly off z = 0
CATHODE_OFFSET = 1.0e-4  # [cm]

# ==================== UNIT CONVERSIONS ====================

CM = 1.0e-2  # [m]
KGAUSS = 0.1  # [T]
TESLA = 1.0  # [T]
CM_PER_US = 1.0e4  # [m/s]

DRIFT_LENGTH_M = DRIFT_LENGTH * CM  # [m]

# ==================== DEFAULTS ====================

DEFAULT_STEPS = 100  # Euler steps over the full drift length
DEFAULT_NODES = 100  # Table nodes per axis
DEFAULT_MEAN_SAMPLES = 50  # Path samples for the first-order mean field

# Builds above this many nodes get a warning
LARGE_TABLE_NODES = 10_000_000


def mobility(drift_velocity):
    """
    Electron mobility mu = v_d / E.

    Args:
        drift_velocity: Drift velocity [cm/us]

    Returns:
        mu: Mobility [m^2/(V*s)]
    """
    return drift_velocity * CM_PER_US / DRIFT_FIELD


def time_constant(drift_velocity):
    """
    Langevin time constant tau = v_d / E / (e/m).

    Args:
        drift_velocity: Drift velocity [cm/us]

    Returns:
        tau: Time constant [s]
    """
    return mobility(drift_velocity) / E_OVER_M


def omega_tau(drift_velocity, b):
    """
    Dimensionless omega*tau = mu * B for a field of b tesla.

    Example (nominal chamber):
        >>> omega_tau(2.65, 0.5)  # ~0.33
    """
    return mobility(drift_velocity) * np.asarray(b)
