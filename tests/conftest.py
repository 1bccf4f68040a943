"""
Pytest configuration and shared fixtures for Universal Optimizer tests.
"""

import os
import random
import sys
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Keep structured event logs out of the working tree and off the console
os.environ.setdefault("UNIVERSAL_LOG_DIR", tempfile.mkdtemp(prefix="universal_logs_"))
os.environ.setdefault("UNIVERSAL_LOG_ECHO", "0")

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from backtest.strategy_host import StrategyHost  # noqa: E402
from evolution.genome_space import GenomeSpace  # noqa: E402


@pytest.fixture
def sample_ohlcv_data():
    """Generate sample OHLCV data for testing with symbol column."""
    np.random.seed(42)
    dates = pd.date_range(start='2023-01-01', periods=250, freq='D')

    # Generate realistic price data
    base_price = 100
    returns = np.random.randn(250) * 0.02  # 2% daily volatility
    prices = base_price * np.exp(np.cumsum(returns))

    df = pd.DataFrame({
        'timestamp': dates,
        'symbol': 'TEST',
        'open': prices * (1 + np.random.randn(250) * 0.005),
        'high': prices * (1 + np.abs(np.random.randn(250) * 0.01)),
        'low': prices * (1 - np.abs(np.random.randn(250) * 0.01)),
        'close': prices,
        'volume': np.random.randint(100000, 10000000, 250),
    })

    # Ensure high >= open, close, low and low <= open, close, high
    df['high'] = df[['open', 'high', 'close']].max(axis=1)
    df['low'] = df[['open', 'low', 'close']].min(axis=1)

    return df


@pytest.fixture
def host(sample_ohlcv_data):
    """Strategy host over the sample data, clock parked on the last bar."""
    h = StrategyHost(sample_ohlcv_data, tick_size=0.01, bars_required_to_trade=20)
    h.current_bar = len(h) - 1
    return h


@pytest.fixture
def space():
    """Genome space with every leaf kind and exit mechanism enabled."""
    return GenomeSpace()


@pytest.fixture
def rng():
    return random.Random(42)
