"""
Centralized test fixtures for the Universal Optimizer.

This module provides reusable helpers for:
- Market data generation (OHLCV, hand-built candles, intraday sessions)
- In-memory backtesters for the search loop
"""

from .backtesters import ScriptedBacktester
from .market_data import flat_bars, generate_intraday, generate_ohlcv, make_bars

__all__ = [
    'ScriptedBacktester',
    'flat_bars',
    'generate_intraday',
    'generate_ohlcv',
    'make_bars',
]
