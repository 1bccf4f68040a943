"""
Strategy Host
=============

Bar-by-bar execution environment for a single candidate on one OHLCV
series. The host owns the price arrays, the bar clock, a one-unit position
and the stop/target orders a strategy registers.

Fill model:
- Market orders (enter/exit) are queued and filled at the next bar's open
- Stop loss, profit target, trailing and parabolic stops are checked
  intrabar against high/low and fill at the stop level (or the open on a gap)
- When stop and target trigger on the same bar, the stop fills first
- ``exit_on_session_close`` flattens at the close of each session's last bar;
  orders queued on that bar still fill at the next session's open
- An open position is closed at the final close

Usage:
    host = StrategyHost(df, tick_size=0.01, bars_required_to_trade=20)
    trades = host.run(candidate)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from backtest.performance import TradeRecord

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("open", "high", "low", "close")

# Parabolic stop acceleration
SAR_STEP = 0.02
SAR_MAX = 0.2


@dataclass
class Position:
    """Open one-unit position and its live stop levels."""
    side: str
    entry_bar: int
    entry_price: float
    stop_price: float = math.nan
    target_price: float = math.nan
    trail_extreme: float = math.nan
    sar: float = math.nan
    sar_extreme: float = math.nan
    sar_af: float = SAR_STEP

    @property
    def is_long(self) -> bool:
        return self.side == "long"


class StrategyHost:
    """Runs one strategy object over a bar series and records its trades."""

    def __init__(
        self,
        bars: pd.DataFrame,
        tick_size: float = 0.01,
        bars_required_to_trade: int = 20,
    ):
        missing = [c for c in REQUIRED_COLUMNS if c not in bars.columns]
        if missing:
            raise ValueError(f"Bars missing columns: {missing}")

        self.bars = bars.reset_index(drop=True)
        self.open = self.bars["open"].to_numpy(dtype=float)
        self.high = self.bars["high"].to_numpy(dtype=float)
        self.low = self.bars["low"].to_numpy(dtype=float)
        self.close = self.bars["close"].to_numpy(dtype=float)
        self.volume = (
            self.bars["volume"].to_numpy(dtype=float)
            if "volume" in self.bars.columns
            else np.zeros(len(self.bars))
        )
        self.tick_size = tick_size
        self.bars_required_to_trade = bars_required_to_trade
        self.exit_on_session_close = False

        self.current_bar = -1
        self.position: Optional[Position] = None
        self.trades: List[TradeRecord] = []

        self.stop_loss_percent = math.nan
        self.profit_target_percent = math.nan
        self.trail_stop_percent = math.nan
        self.parabolic_stop_percent = math.nan

        self._pending: Optional[str] = None
        self._session_last = self._session_last_bars()

    def __len__(self) -> int:
        return len(self.close)

    def _session_last_bars(self) -> np.ndarray:
        """Boolean mask of bars that close a trading session (calendar day)."""
        n = len(self.bars)
        mask = np.zeros(n, dtype=bool)
        if n == 0:
            return mask
        if "timestamp" in self.bars.columns:
            days = pd.to_datetime(self.bars["timestamp"]).dt.normalize().to_numpy()
            mask[:-1] = days[1:] != days[:-1]
        mask[-1] = True
        return mask

    # =========================================================================
    # Order API used by strategies
    # =========================================================================

    def enter_long(self) -> None:
        self._pending = "enter_long"

    def enter_short(self) -> None:
        self._pending = "enter_short"

    def exit_long(self) -> None:
        if self.position is not None and self.position.is_long:
            self._pending = "exit"

    def exit_short(self) -> None:
        if self.position is not None and not self.position.is_long:
            self._pending = "exit"

    def set_stop_loss(self, percent: float) -> None:
        self.stop_loss_percent = percent

    def set_profit_target(self, percent: float) -> None:
        self.profit_target_percent = percent

    def set_trail_stop(self, percent: float) -> None:
        self.trail_stop_percent = percent

    def set_parabolic_stop(self, percent: float) -> None:
        self.parabolic_stop_percent = percent

    @property
    def market_position(self) -> str:
        if self.position is None:
            return "flat"
        return self.position.side

    # =========================================================================
    # Simulation
    # =========================================================================

    def run(self, strategy) -> List[TradeRecord]:
        """
        Drive ``strategy`` through every bar.

        Args:
            strategy: Object with ``on_configure(host)`` and
                ``on_bar_update(host)``

        Returns:
            Closed trades in order
        """
        strategy.on_configure(self)
        for bar in range(len(self)):
            self.current_bar = bar
            self._fill_pending(bar)
            self._check_stops(bar)
            strategy.on_bar_update(self)
            if self.exit_on_session_close and self._session_last[bar] and self.position is not None:
                self._close(bar, self.close[bar], "session_close")

        if self.position is not None:
            last = len(self) - 1
            self._close(last, self.close[last], "end_of_data")
        self._pending = None
        return self.trades

    def _fill_pending(self, bar: int) -> None:
        order, self._pending = self._pending, None
        if order is None:
            return
        price = self.open[bar]
        if order == "exit":
            if self.position is not None:
                self._close(bar, price, "signal")
            return

        side = "long" if order == "enter_long" else "short"
        if self.position is not None:
            if self.position.side == side:
                return
            self._close(bar, price, "reverse")
        self._open(bar, side, price)

    def _open(self, bar: int, side: str, price: float) -> None:
        sign = 1.0 if side == "long" else -1.0
        pos = Position(side=side, entry_bar=bar, entry_price=price)
        if not math.isnan(self.stop_loss_percent):
            pos.stop_price = price * (1.0 - sign * self.stop_loss_percent)
        if not math.isnan(self.profit_target_percent):
            pos.target_price = price * (1.0 + sign * self.profit_target_percent)
        if not math.isnan(self.trail_stop_percent):
            pos.trail_extreme = price
        if not math.isnan(self.parabolic_stop_percent):
            pos.sar = price * (1.0 - sign * self.parabolic_stop_percent)
            pos.sar_extreme = price
        self.position = pos

    def _close(self, bar: int, price: float, reason: str) -> None:
        pos = self.position
        self.trades.append(TradeRecord(
            side=pos.side,
            entry_bar=pos.entry_bar,
            entry_price=pos.entry_price,
            exit_bar=bar,
            exit_price=float(price),
            exit_reason=reason,
        ))
        self.position = None

    def _stop_levels(self, pos: Position) -> List[float]:
        levels = []
        if not math.isnan(pos.stop_price):
            levels.append(pos.stop_price)
        if not math.isnan(pos.trail_extreme):
            sign = 1.0 if pos.is_long else -1.0
            levels.append(pos.trail_extreme * (1.0 - sign * self.trail_stop_percent))
        if not math.isnan(pos.sar):
            levels.append(pos.sar)
        return levels

    def _check_stops(self, bar: int) -> None:
        pos = self.position
        if pos is None:
            return
        o, h, l = self.open[bar], self.high[bar], self.low[bar]
        levels = self._stop_levels(pos)

        if pos.is_long:
            if levels:
                level = max(levels)
                if l <= level:
                    self._close(bar, min(o, level), "stop")
                    return
            if not math.isnan(pos.target_price) and h >= pos.target_price:
                self._close(bar, max(o, pos.target_price), "target")
                return
        else:
            if levels:
                level = min(levels)
                if h >= level:
                    self._close(bar, max(o, level), "stop")
                    return
            if not math.isnan(pos.target_price) and l <= pos.target_price:
                self._close(bar, min(o, pos.target_price), "target")
                return

        self._advance_stops(pos, h, l)

    @staticmethod
    def _advance_stops(pos: Position, high: float, low: float) -> None:
        favourable = high if pos.is_long else low
        better = (lambda a, b: a > b) if pos.is_long else (lambda a, b: a < b)

        if not math.isnan(pos.trail_extreme) and better(favourable, pos.trail_extreme):
            pos.trail_extreme = favourable

        if not math.isnan(pos.sar):
            if better(favourable, pos.sar_extreme):
                pos.sar_extreme = favourable
                pos.sar_af = min(SAR_MAX, pos.sar_af + SAR_STEP)
            pos.sar = pos.sar + pos.sar_af * (pos.sar_extreme - pos.sar)
