"""
Backtest module for the Universal Optimizer.

Provides:
- Bar-by-bar strategy host with market, stop, target, trailing and
  parabolic orders
- Thread-pool candidate backtester ranking results by a fitness metric
- Performance records and fitness metrics
"""
from __future__ import annotations

from .engine import CandidateBacktester
from .performance import (
    FITNESS_METRICS,
    PROFIT_FACTOR_CAP,
    PerformanceRecord,
    TradeRecord,
    compute_metrics,
    net_profit,
    profit_factor,
    sharpe,
    win_rate,
)
from .strategy_host import Position, StrategyHost

__all__ = [
    # Engine
    "CandidateBacktester",
    # Host
    "StrategyHost",
    "Position",
    # Performance
    "PerformanceRecord",
    "TradeRecord",
    "FITNESS_METRICS",
    "PROFIT_FACTOR_CAP",
    "compute_metrics",
    "net_profit",
    "profit_factor",
    "sharpe",
    "win_rate",
]
