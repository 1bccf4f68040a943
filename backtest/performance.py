"""
Backtest performance records and fitness metrics.

A ``PerformanceRecord`` pairs the evaluated candidate with the numbers the
search ranks and deduplicates by: the performance value of the configured
fitness metric, cumulative profit and win/loss counts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import numpy as np

from core.floating import approx_equal

if TYPE_CHECKING:
    from evolution.candidate import Candidate

# Profit factor reported when a run has winners but no losers
PROFIT_FACTOR_CAP = 100.0


@dataclass
class TradeRecord:
    """One round trip of a single unit."""
    side: str                 # 'long' or 'short'
    entry_bar: int
    entry_price: float
    exit_bar: int
    exit_price: float
    exit_reason: str = "signal"

    @property
    def pnl(self) -> float:
        sign = 1.0 if self.side == "long" else -1.0
        return sign * (self.exit_price - self.entry_price)

    @property
    def return_pct(self) -> float:
        return self.pnl / self.entry_price if self.entry_price else 0.0


# =============================================================================
# Metrics
# =============================================================================

def net_profit(trades: List[TradeRecord]) -> float:
    return float(sum(t.pnl for t in trades))


def profit_factor(trades: List[TradeRecord]) -> float:
    gross_win = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = sum(t.pnl for t in trades if t.pnl < 0)
    if gross_loss < 0:
        return float(gross_win / abs(gross_loss))
    return PROFIT_FACTOR_CAP if gross_win > 0 else 0.0


def win_rate(trades: List[TradeRecord]) -> float:
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.pnl > 0) / len(trades)


def sharpe(trades: List[TradeRecord]) -> float:
    """Annualised Sharpe ratio of per-trade returns (0 when undefined)."""
    if len(trades) < 2:
        return 0.0
    rets = np.array([t.return_pct for t in trades], dtype=float)
    sigma = rets.std(ddof=1)
    if sigma <= 0 or not np.isfinite(sigma):
        return 0.0
    return float(rets.mean() / sigma * np.sqrt(252))


FITNESS_METRICS: Dict[str, Callable[[List[TradeRecord]], float]] = {
    "net_profit": net_profit,
    "profit_factor": profit_factor,
    "win_rate": win_rate,
    "sharpe": sharpe,
}


def compute_metrics(trades: List[TradeRecord]) -> Dict[str, float]:
    return {name: fn(trades) for name, fn in FITNESS_METRICS.items()}


# =============================================================================
# Record
# =============================================================================

@dataclass
class PerformanceRecord:
    """Result of one candidate backtest."""
    candidate: Optional["Candidate"]
    performance_value: float
    cumulative_profit: float
    wins: int
    losses: int
    trades: List[TradeRecord] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_trades(
        cls,
        candidate: Optional["Candidate"],
        trades: List[TradeRecord],
        fitness_metric: str = "net_profit",
    ) -> "PerformanceRecord":
        metrics = compute_metrics(trades)
        return cls(
            candidate=candidate,
            performance_value=metrics[fitness_metric],
            cumulative_profit=metrics["net_profit"],
            wins=sum(1 for t in trades if t.pnl > 0),
            losses=sum(1 for t in trades if t.pnl <= 0),
            trades=list(trades),
            metrics=metrics,
        )

    def is_equivalent(self, other: "PerformanceRecord") -> bool:
        """Same observable outcome: approx-equal value and profit, equal counts."""
        return (
            approx_equal(self.performance_value, other.performance_value)
            and approx_equal(self.cumulative_profit, other.cumulative_profit)
            and self.wins == other.wins
            and self.losses == other.losses
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate.id if self.candidate is not None else None,
            "performance_value": self.performance_value,
            "cumulative_profit": self.cumulative_profit,
            "wins": self.wins,
            "losses": self.losses,
            "trade_count": len(self.trades),
            "node_count": self.candidate.node_count if self.candidate is not None else None,
            "metrics": dict(self.metrics),
        }
