"""
Float helpers shared by expression evaluation and persistence.

NaN marks an absent risk parameter or an unknown comparison range, and every
persisted float is written as culture-invariant decimal text.
"""
from __future__ import annotations

import math
from typing import Optional

EPSILON = 1e-10


def approx_compare(a: float, b: float, epsilon: float = EPSILON) -> int:
    """
    Three-way compare with an absolute tolerance.

    Returns:
        0 when ``|a - b| < epsilon``, -1 when a < b, 1 otherwise.
        Callers screen out NaN first.
    """
    if abs(a - b) < epsilon:
        return 0
    return -1 if a < b else 1


def approx_equal(a: float, b: float, epsilon: float = EPSILON) -> bool:
    """Tolerance equality where two NaNs count as equal."""
    if math.isnan(a) and math.isnan(b):
        return True
    return approx_compare(a, b, epsilon) == 0


def is_absent(value: Optional[float]) -> bool:
    """True for None or NaN."""
    return value is None or math.isnan(value)


def format_decimal(value: float) -> str:
    """Render a float as invariant decimal text (``repr`` round-trips exactly)."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return repr(float(value))


def parse_decimal(text: str) -> float:
    """Inverse of :func:`format_decimal`."""
    text = text.strip()
    if text in ("NaN", "nan"):
        return math.nan
    if text == "Infinity":
        return math.inf
    if text == "-Infinity":
        return -math.inf
    return float(text)
