"""
Patterns
========

Candlestick pattern terminal and the swing-based trend classifier it uses.
"""

from .candlestick import (
    CHART_PATTERNS,
    TREND_NEUTRAL_PATTERNS,
    CandleStickPatternLogic,
    ChartPattern,
)
from .trend import Swing, Trend, TrendClassifier

__all__ = [
    'CHART_PATTERNS',
    'TREND_NEUTRAL_PATTERNS',
    'CandleStickPatternLogic',
    'ChartPattern',
    'Swing',
    'Trend',
    'TrendClassifier',
]
