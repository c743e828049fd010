"""
tpcexb: ExB Distortion Correction for Time Projection Chambers

Electrons drifting through a non-uniform magnetic field inside the
uniform drift field of a TPC follow curved paths. This package integrates
their motion, tabulates the resulting displacement on a 3D grid once, and
corrects reconstructed hit positions by trilinear interpolation.
"""

__version__ = "0.1.0"

from .errors import ConfigurationError
from .field import (
    FieldSource,
    AnalyticField,
    UniformField,
    GradientField,
    CallableField,
    FieldMap,
    FieldAccessor,
)
from .motion import MotionModel
from .integrator import TrajectoryIntegrator
from .grid import Grid, LookupTable
from .builders import ExactTableBuilder, FirstOrderTableBuilder
from .corrector import DistortionCorrector, ExactCorrector, FirstOrderCorrector
from .diagnostics import ResidualScan, scan_residuals

__all__ = [
    "ConfigurationError",
    # Fields
    "FieldSource",
    "AnalyticField",
    "UniformField",
    "GradientField",
    "CallableField",
    "FieldMap",
    "FieldAccessor",
    # Drift
    "MotionModel",
    "TrajectoryIntegrator",
    # Tables
    "Grid",
    "LookupTable",
    "ExactTableBuilder",
    "FirstOrderTableBuilder",
    # Correction
    "DistortionCorrector",
    "ExactCorrector",
    "FirstOrderCorrector",
    # Diagnostics
    "ResidualScan",
    "scan_residuals",
]
