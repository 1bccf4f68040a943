"""
Indicator Library
=================

pandas implementations of the catalog used by the optimizer. Every series is
computed from bar 0 with whatever history is available (``min_periods=1``),
so early values exist but are based on a shorter window.

Overlay indicators (moving averages, bands, channels) share the price scale;
the rest are oscillators or volume/volatility measures on their own scale.
"""
from __future__ import annotations

import math
from typing import Dict, List, Type

import numpy as np
import pandas as pd

from indicators.base import INT_MAX, Indicator, PropertySpec


# =============================================================================
# Helpers
# =============================================================================

def _period(name: str = "Period", default: int = 14) -> PropertySpec:
    return PropertySpec(name, default, 1, INT_MAX, True)


def _sma(series: pd.Series, period: int) -> pd.Series:
    return series.rolling(window=int(period), min_periods=1).mean()


def _ema(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(span=int(period), adjust=False).mean()


def _wilder(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(alpha=1.0 / int(period), adjust=False).mean()


def _lagged(series: pd.Series, period: int) -> pd.Series:
    """Value ``period`` bars back, falling back to the first bar early on."""
    return series.shift(int(period)).fillna(series.iloc[0])


def _true_range(bars: pd.DataFrame) -> pd.Series:
    prev_close = bars["close"].shift(1)
    tr = pd.concat([
        bars["high"] - bars["low"],
        (bars["high"] - prev_close).abs(),
        (bars["low"] - prev_close).abs(),
    ], axis=1).max(axis=1)
    return tr


def _safe_div(num: pd.Series, den: pd.Series, fill: float = 0.0) -> pd.Series:
    return (num / den.replace(0.0, np.nan)).fillna(fill)


def _directional(bars: pd.DataFrame, period: int):
    up = bars["high"].diff()
    down = -bars["low"].diff()
    plus_dm = pd.Series(np.where((up > down) & (up > 0), up, 0.0), index=bars.index)
    minus_dm = pd.Series(np.where((down > up) & (down > 0), down, 0.0), index=bars.index)
    atr = _wilder(_true_range(bars), period)
    di_plus = 100.0 * _safe_div(_wilder(plus_dm, period), atr)
    di_minus = 100.0 * _safe_div(_wilder(minus_dm, period), atr)
    dx = 100.0 * _safe_div((di_plus - di_minus).abs(), di_plus + di_minus)
    adx = _wilder(dx, period)
    return adx, di_plus, di_minus


# =============================================================================
# Overlays
# =============================================================================

class SMA(Indicator):
    type_id = "SMA"
    is_overlay = True
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [_sma(bars["close"], self.params["Period"])]


class EMA(Indicator):
    type_id = "EMA"
    is_overlay = True
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [_ema(bars["close"], self.params["Period"])]


class WMA(Indicator):
    type_id = "WMA"
    is_overlay = True
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        def weighted(window: np.ndarray) -> float:
            weights = np.arange(1, len(window) + 1, dtype=float)
            return float(np.dot(window, weights) / weights.sum())

        return [bars["close"].rolling(window=int(self.params["Period"]), min_periods=1).apply(weighted, raw=True)]


class TMA(Indicator):
    type_id = "TMA"
    is_overlay = True
    properties = (_period(default=15),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        first = int(math.ceil((period + 1) / 2.0))
        second = max(1, period + 1 - first)
        return [_sma(_sma(bars["close"], first), second)]


class Bollinger(Indicator):
    type_id = "Bollinger"
    is_overlay = True
    output_names = ("Upper", "Middle", "Lower")
    properties = (
        PropertySpec("NumStdDev", 2.0, 0.0, math.inf, False),
        _period(),
    )

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        middle = _sma(bars["close"], period)
        dev = bars["close"].rolling(window=period, min_periods=1).std(ddof=0).fillna(0.0)
        width = self.params["NumStdDev"] * dev
        return [middle + width, middle, middle - width]


class KeltnerChannel(Indicator):
    type_id = "KeltnerChannel"
    is_overlay = True
    output_names = ("Midline", "Upper", "Lower")
    properties = (
        PropertySpec("OffsetMultiplier", 1.5, 0.01, math.inf, False),
        _period(default=10),
    )

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        typical = (bars["high"] + bars["low"] + bars["close"]) / 3.0
        middle = _sma(typical, period)
        offset = self.params["OffsetMultiplier"] * _sma(bars["high"] - bars["low"], period)
        return [middle, middle + offset, middle - offset]


# =============================================================================
# Oscillators
# =============================================================================

class ADX(Indicator):
    type_id = "ADX"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        adx, _, _ = _directional(bars, self.params["Period"])
        return [adx]


class DM(Indicator):
    type_id = "DM"
    output_names = ("ADX", "DiPlus", "DiMinus")
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return list(_directional(bars, self.params["Period"]))


class DMI(Indicator):
    type_id = "DMI"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        _, di_plus, di_minus = _directional(bars, self.params["Period"])
        return [100.0 * _safe_div(di_plus - di_minus, di_plus + di_minus)]


class CCI(Indicator):
    type_id = "CCI"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        typical = (bars["high"] + bars["low"] + bars["close"]) / 3.0
        mean = _sma(typical, period)
        mean_dev = typical.rolling(window=period, min_periods=1).apply(
            lambda w: float(np.mean(np.abs(w - w.mean()))), raw=True
        )
        return [_safe_div(typical - mean, 0.015 * mean_dev)]


class ChaikinOscillator(Indicator):
    type_id = "ChaikinOscillator"
    properties = (_period("Fast", 3), _period("Slow", 10))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        spread = bars["high"] - bars["low"]
        multiplier = _safe_div((bars["close"] - bars["low"]) - (bars["high"] - bars["close"]), spread)
        ad_line = (multiplier * bars["volume"]).cumsum()
        return [_ema(ad_line, self.params["Fast"]) - _ema(ad_line, self.params["Slow"])]


class FisherTransform(Indicator):
    type_id = "FisherTransform"
    properties = (_period(default=10),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        median = ((bars["high"] + bars["low"]) / 2.0).to_numpy(dtype=float)
        highest = pd.Series(median).rolling(window=period, min_periods=1).max().to_numpy()
        lowest = pd.Series(median).rolling(window=period, min_periods=1).min().to_numpy()

        out = np.zeros(len(median))
        value = 0.0
        fisher = 0.0
        for i in range(len(median)):
            span = highest[i] - lowest[i]
            raw = (median[i] - lowest[i]) / span - 0.5 if span > 0 else 0.0
            value = min(0.999, max(-0.999, 0.66 * raw + 0.67 * value))
            fisher = 0.5 * math.log((1 + value) / (1 - value)) + 0.5 * fisher
            out[i] = fisher
        return [pd.Series(out, index=bars.index)]


class MACD(Indicator):
    type_id = "MACD"
    output_names = ("Macd", "Avg", "Diff")
    properties = (_period("Fast", 12), _period("Slow", 26), _period("Smooth", 9))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        macd = _ema(bars["close"], self.params["Fast"]) - _ema(bars["close"], self.params["Slow"])
        avg = _ema(macd, self.params["Smooth"])
        return [macd, avg, macd - avg]


class Momentum(Indicator):
    type_id = "Momentum"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [bars["close"] - _lagged(bars["close"], self.params["Period"])]


class ROC(Indicator):
    type_id = "ROC"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        past = _lagged(bars["close"], self.params["Period"])
        return [100.0 * _safe_div(bars["close"] - past, past)]


class RSI(Indicator):
    type_id = "RSI"
    output_names = ("RSI", "Avg")
    properties = (_period(), _period("Smooth", 3))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        delta = bars["close"].diff().fillna(0.0)
        gain = _wilder(delta.clip(lower=0.0), self.params["Period"])
        loss = _wilder((-delta).clip(lower=0.0), self.params["Period"])
        rsi = 100.0 - 100.0 / (1.0 + gain / loss.replace(0.0, np.nan))
        rsi = rsi.fillna(50.0).where(loss > 0, np.where(gain > 0, 100.0, 50.0))
        return [rsi, _ema(rsi, self.params["Smooth"])]


class Stochastics(Indicator):
    type_id = "Stochastics"
    output_names = ("D", "K")
    properties = (_period("PeriodD", 7), _period("PeriodK", 14), _period("Smooth", 3))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        fast_k = _fast_k(bars, self.params["PeriodK"])
        k = _sma(fast_k, self.params["Smooth"])
        return [_sma(k, self.params["PeriodD"]), k]


class StochasticsFast(Indicator):
    type_id = "StochasticsFast"
    output_names = ("D", "K")
    properties = (_period("PeriodD", 3), _period("PeriodK", 14))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        k = _fast_k(bars, self.params["PeriodK"])
        return [_sma(k, self.params["PeriodD"]), k]


def _fast_k(bars: pd.DataFrame, period: int) -> pd.Series:
    lowest = bars["low"].rolling(window=int(period), min_periods=1).min()
    highest = bars["high"].rolling(window=int(period), min_periods=1).max()
    return 100.0 * _safe_div(bars["close"] - lowest, highest - lowest)


class TRIX(Indicator):
    type_id = "TRIX"
    output_names = ("Default", "Signal")
    properties = (_period(), _period("SignalPeriod", 3))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = self.params["Period"]
        triple = _ema(_ema(_ema(bars["close"], period), period), period)
        prev = triple.shift(1).fillna(triple.iloc[0])
        trix = 100.0 * _safe_div(triple - prev, prev)
        return [trix, _ema(trix, self.params["SignalPeriod"])]


# =============================================================================
# Volatility and volume
# =============================================================================

class ATR(Indicator):
    type_id = "ATR"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [_wilder(_true_range(bars), self.params["Period"])]


class Range(Indicator):
    type_id = "Range"

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [bars["high"] - bars["low"]]


class StdDev(Indicator):
    type_id = "StdDev"
    properties = (_period(),)

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        period = int(self.params["Period"])
        return [bars["close"].rolling(window=period, min_periods=1).std(ddof=0).fillna(0.0)]


class VOL(Indicator):
    type_id = "VOL"

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        return [bars["volume"].astype(float)]


class VROC(Indicator):
    type_id = "VROC"
    properties = (_period(), _period("Smooth", 3))

    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        volume = bars["volume"].astype(float)
        past = _lagged(volume, self.params["Period"])
        return [_sma(100.0 * _safe_div(volume - past, past), self.params["Smooth"])]


# =============================================================================
# Catalog
# =============================================================================

INDICATOR_TYPES: Dict[str, Type[Indicator]] = {
    cls.type_id: cls
    for cls in (
        ADX, ATR, Bollinger, CCI, ChaikinOscillator, DM, DMI, EMA,
        FisherTransform, KeltnerChannel, MACD, Momentum, Range, ROC, RSI,
        StdDev, SMA, Stochastics, StochasticsFast, TMA, TRIX, VROC, VOL, WMA,
    )
}

DEFAULT_COMPARE_RANGES = {
    "ADX": (0.0, 100.0),
    "CCI": (-400.0, 400.0),
    "ChaikinOscillator": (-1000.0, 1000.0),
    "DM": (-100.0, 100.0),
    "DMI": (-100.0, 100.0),
    "FisherTransform": (-10.0, 10.0),
    "ROC": (-1.0, 1.0),
    "RSI": (0.0, 100.0),
    "Stochastics": (0.0, 100.0),
    "StochasticsFast": (0.0, 100.0),
}
