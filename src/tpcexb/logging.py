"""
Console Messages

Table builds report their size and duration, field-map grids their derived
bounds. Verbosity is a single module-wide LogLevel, taken from the
environment variable TPCEXB_LOG_LEVEL at import (default: WARNING):

    TPCEXB_LOG_LEVEL=info python analysis.py
"""

import os
from enum import IntEnum


ENV_VARIABLE = 'TPCEXB_LOG_LEVEL'


class LogLevel(IntEnum):
    """Verbosity, from most to least talkative."""

    DEBUG = 0
    """Grid derivation details and everything below."""

    INFO = 1
    """Table build times and warnings."""

    WARNING = 2
    """Only warnings, e.g. very large tables."""

    SILENT = 3
    """Nothing."""


def _level_from_environment():
    name = os.environ.get(ENV_VARIABLE, '').strip().upper()
    return LogLevel.__members__.get(name, LogLevel.WARNING)


_log_level = _level_from_environment()


def set_log_level(level):
    """
    Set the module-wide LogLevel.

    Raises:
        TypeError: level is not a LogLevel
    """
    global _log_level
    if not isinstance(level, LogLevel):
        raise TypeError(f"Expected a LogLevel, got {level!r}")
    _log_level = level


def get_log_level():
    return _log_level


def _emit(level, prefix, msg):
    if _log_level <= level:
        print(prefix + str(msg))


def log_debug(msg):
    _emit(LogLevel.DEBUG, 'DEBUG: ', msg)


def log_info(msg):
    _emit(LogLevel.INFO, '', msg)


def log_warning(msg):
    _emit(LogLevel.WARNING, 'WARNING: ', msg)
