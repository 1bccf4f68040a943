"""
Unified Exception Hierarchy for the Universal Optimizer.

All exceptions inherit from OptimizerError so callers can tell search-level
failures apart from ordinary Python errors.

Usage:
    from core.exceptions import ConfigurationError, ConsistencyViolation

    try:
        optimizer.run()
    except ConfigurationError as e:
        # Nothing was submitted to the backtester
        print(e.error_code, e.context)
    except ConsistencyViolation as e:
        # A genetic operator produced an invalid candidate (defect)
        raise
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================

class OptimizerError(Exception):
    """
    Base exception for all optimizer errors.

    Attributes:
        error_code: Unique identifier for this error type
        is_recoverable: Whether the caller can retry with a different draw
        context: Additional context about the error
        timestamp: When the error occurred
    """
    error_code: str = "OPTIMIZER_ERROR"
    is_recoverable: bool = True

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "is_recoverable": self.is_recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# FATAL ERRORS (search cannot proceed)
# =============================================================================

class ConfigurationError(OptimizerError):
    """
    Raised when the optimizer settings leave nothing to search.

    Examples:
    - No entry leaf kind enabled (patterns and indicators both off)
    - No exit mechanism enabled
    - Neither entries nor exits are optimized
    """
    error_code = "CONFIGURATION_ERROR"
    is_recoverable = False


class ConsistencyViolation(OptimizerError):
    """
    Raised when a genetic operator yields a candidate that is not consistent.

    This is an assertion failure, never retried.
    """
    error_code = "CONSISTENCY_VIOLATION"
    is_recoverable = False

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        super().__init__(f"{operation} produced an inconsistent candidate", context)


# =============================================================================
# RECOVERABLE ERRORS
# =============================================================================

class IndicatorInstantiationError(OptimizerError):
    """
    Raised when an indicator type cannot be created or computed.

    Callers pick another indicator type and retry.
    """
    error_code = "INDICATOR_INSTANTIATION"
    is_recoverable = True

    def __init__(
        self,
        type_id: str,
        reason: str,
        cause: Optional[Exception] = None,
    ):
        self.type_id = type_id
        super().__init__(
            f"Unable to create indicator {type_id}: {reason}",
            context={"type_id": type_id},
            cause=cause,
        )


class SerializationError(OptimizerError):
    """Raised when a persisted candidate or expression document is malformed."""
    error_code = "SERIALIZATION_ERROR"
    is_recoverable = False


# =============================================================================
# HELPERS
# =============================================================================

def is_recoverable(error: Exception) -> bool:
    """Check if an error is recoverable (unknown errors are not)."""
    if isinstance(error, OptimizerError):
        return error.is_recoverable
    return False


def get_error_code(error: Exception) -> str:
    """Get error code from any exception."""
    if isinstance(error, OptimizerError):
        return error.error_code
    return "UNKNOWN_ERROR"
