#!/usr/bin/env python3
"""
Run the Universal Optimizer on an OHLCV CSV.

Evolves complete trading-rule genomes (entries, exits, stops, trend
strength) and prints the best candidates as readable strategy source.

Usage:
    python scripts/run_universal_optimizer.py --csv data/SPY.csv --generations 5 --seed 42
    python scripts/run_universal_optimizer.py --csv data/SPY.csv --config my.yaml --out output/results.yaml
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from backtest.engine import CandidateBacktester
from config.settings_schema import load_validated_settings
from core.exceptions import OptimizerError, get_error_code, is_recoverable
from core.structured_log import jlog
from evolution.optimizer import UniversalOptimizer


def load_bars(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    if "timestamp" not in df.columns and "date" in df.columns:
        df = df.rename(columns={"date": "timestamp"})
    if "timestamp" in df.columns:
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        df = df.sort_values("timestamp")
    return df.reset_index(drop=True)


def main() -> int:
    ap = argparse.ArgumentParser(description="Universal Optimizer: evolve trading-rule genomes")
    ap.add_argument("--csv", type=str, required=True, help="OHLCV CSV (timestamp,open,high,low,close,volume)")
    ap.add_argument("--config", type=str, default=None, help="Settings YAML (default: config/base.yaml)")
    ap.add_argument("--generations", type=int, default=None)
    ap.add_argument("--generation-size", type=int, default=None)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--top", type=int, default=3, help="Candidates to print")
    ap.add_argument("--out", type=str, default="output/universal_results.yaml")
    args = ap.parse_args()

    settings = load_validated_settings(Path(args.config) if args.config else None)
    logging.basicConfig(
        level=getattr(logging, settings.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.generations is not None:
        settings.optimizer.generations = args.generations
    if args.generation_size is not None:
        settings.optimizer.generation_size = args.generation_size

    bars = load_bars(Path(args.csv))
    print(f"Loaded {len(bars)} bars from {args.csv}")

    try:
        with CandidateBacktester.from_settings(
            bars, settings.backtest, settings.optimizer.keep_best_results
        ) as backtester:
            optimizer = UniversalOptimizer.from_settings(settings, backtester, seed=args.seed)
            results = optimizer.run()
    except OptimizerError as e:
        code = get_error_code(e)
        jlog("universal_optimizer_failed", level="ERROR", error_code=code,
             recoverable=is_recoverable(e), message=str(e))
        print(f"Optimization failed [{code}]: {e}")
        return 1

    stats = optimizer.get_evolution_stats()
    print(f"\nGenerations: {stats['generations_run']}  Submitted: {stats['submitted']}  "
          f"Skipped: {stats['skipped']}  Unique results: {stats['unique_results']}")

    for rank, record in enumerate(results[: args.top], start=1):
        print(f"\n#{rank}  {settings.backtest.fitness_metric}={record.performance_value:.4f}  "
              f"profit={record.cumulative_profit:.2f}  W/L={record.wins}/{record.losses}  "
              f"nodes={record.candidate.node_count}")
        print(record.candidate.to_source(f"Universal{rank}"))

    optimizer.export_results(args.out)
    print(f"Results written to {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
