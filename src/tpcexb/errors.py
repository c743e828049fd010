"""
Exceptions raised while configuring a distortion correction.
"""


class ConfigurationError(ValueError):
    """
    Invalid construction parameters.

    Raised before any lookup table is built: missing or unsupported field
    source, fewer than two grid nodes on an axis, degenerate bounds,
    non-positive drift velocity or step count.
    """
