"""
Core Infrastructure
====================

Foundational components shared by the optimizer packages.

Components:
- exceptions: Error hierarchy (configuration, consistency, instantiation)
- structured_log: JSON event logging
- floating: Tolerant float comparison and invariant decimal text
"""

from .exceptions import (
    OptimizerError,
    ConfigurationError,
    ConsistencyViolation,
    IndicatorInstantiationError,
    SerializationError,
)
from .floating import approx_compare, approx_equal, format_decimal, is_absent, parse_decimal
from .structured_log import jlog, read_recent_logs

__all__ = [
    # Exceptions
    'OptimizerError',
    'ConfigurationError',
    'ConsistencyViolation',
    'IndicatorInstantiationError',
    'SerializationError',
    # Floats
    'approx_compare',
    'approx_equal',
    'format_decimal',
    'is_absent',
    'parse_decimal',
    # Structured Logging
    'jlog',
    'read_recent_logs',
]
