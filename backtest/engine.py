"""
Candidate Backtester
====================

Concurrent backtest collaborator for the generational search. Each submitted
candidate is copied, run through a fresh ``StrategyHost`` on a worker
thread, and its ``PerformanceRecord`` is added to the result list.

The result list is ranked best first by the configured fitness metric and
holds at most ``keep_best_results`` records. ``reset(keep_count)`` drops all
but the best ``keep_count`` records before a new generation is submitted.

Usage:
    with CandidateBacktester(df, keep_best_results=10) as backtester:
        backtester.submit(candidate)
        backtester.wait_for_outstanding()
        best = backtester.results[0]
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, List, Optional, Tuple

import pandas as pd

from backtest.performance import FITNESS_METRICS, PerformanceRecord
from backtest.strategy_host import StrategyHost
from config.settings_schema import BacktestSettings
from core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from evolution.candidate import Candidate

logger = logging.getLogger(__name__)


class CandidateBacktester:
    """Thread-pool backtester ranking candidates by a fitness metric."""

    def __init__(
        self,
        bars: pd.DataFrame,
        tick_size: float = 0.01,
        bars_required_to_trade: int = 20,
        fitness_metric: str = "net_profit",
        keep_best_results: int = 10,
        max_workers: int = 4,
    ):
        if fitness_metric not in FITNESS_METRICS:
            raise ConfigurationError(
                f"Unknown fitness metric: {fitness_metric}",
                context={"available": sorted(FITNESS_METRICS)},
            )
        self.bars = bars.reset_index(drop=True)
        self.tick_size = tick_size
        self.bars_required_to_trade = bars_required_to_trade
        self.fitness_metric = fitness_metric
        self.keep_best_results = keep_best_results
        self.max_workers = max_workers

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="backtest")
        self._lock = threading.Lock()
        self._records: List[Tuple[int, PerformanceRecord]] = []
        self._outstanding: List[Future] = []
        self._sequence = 0
        self.submitted = 0

    @classmethod
    def from_settings(
        cls,
        bars: pd.DataFrame,
        settings: BacktestSettings,
        keep_best_results: int,
    ) -> "CandidateBacktester":
        return cls(
            bars,
            tick_size=settings.tick_size,
            bars_required_to_trade=settings.bars_required_to_trade,
            fitness_metric=settings.fitness_metric,
            keep_best_results=keep_best_results,
            max_workers=settings.max_workers,
        )

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, candidate: "Candidate") -> PerformanceRecord:
        """Backtest one candidate synchronously on a private copy."""
        runner = candidate.copy()
        host = StrategyHost(
            self.bars,
            tick_size=self.tick_size,
            bars_required_to_trade=self.bars_required_to_trade,
        )
        trades = host.run(runner)
        return PerformanceRecord.from_trades(runner, trades, self.fitness_metric)

    def submit(self, candidate: "Candidate") -> Future:
        with self._lock:
            sequence = self._sequence
            self._sequence += 1
            self.submitted += 1
        future = self._executor.submit(self._run, sequence, candidate)
        self._outstanding.append(future)
        return future

    def _run(self, sequence: int, candidate: "Candidate") -> PerformanceRecord:
        record = self.evaluate(candidate)
        with self._lock:
            self._records.append((sequence, record))
        return record

    def wait_for_outstanding(self) -> None:
        """Barrier: block until every submitted backtest finished; re-raise failures."""
        outstanding, self._outstanding = self._outstanding, []
        wait(outstanding)
        for future in outstanding:
            future.result()
        self._trim()

    # =========================================================================
    # Results
    # =========================================================================

    @staticmethod
    def _rank_key(entry: Tuple[int, PerformanceRecord]):
        sequence, record = entry
        value = record.performance_value
        if math.isnan(value):
            return (1, 0.0, sequence)
        return (0, -value, sequence)

    def _ranked(self) -> List[Tuple[int, PerformanceRecord]]:
        with self._lock:
            return sorted(self._records, key=self._rank_key)

    def _trim(self) -> None:
        if self.keep_best_results <= 0:
            return
        ranked = self._ranked()
        with self._lock:
            self._records = ranked[: self.keep_best_results]

    @property
    def results(self) -> List[PerformanceRecord]:
        """Records best first, at most ``keep_best_results`` of them."""
        ranked = self._ranked()
        if self.keep_best_results > 0:
            ranked = ranked[: self.keep_best_results]
        return [record for _, record in ranked]

    def reset(self, keep_count: int) -> None:
        """Keep only the best ``keep_count`` records."""
        ranked = self._ranked()
        with self._lock:
            self._records = ranked[: max(0, keep_count)]
        logger.debug(f"Backtester reset, kept {len(self._records)} results")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "CandidateBacktester":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
