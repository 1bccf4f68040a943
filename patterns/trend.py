"""
Trend Classifier
================

Classifies the current bar as up-trend, down-trend or neither from swing
pivot history.

A swing low at bar ``i`` is a low strictly below the ``strength`` lows before
it and not above the ``strength`` lows after it (mirrored for swing highs).
A pivot only becomes visible once bar ``i + strength`` has closed.

Usage:
    classifier = TrendClassifier(host, trend_strength=4)
    if classifier.classify() is Trend.UP:
        ...
"""
from __future__ import annotations

import logging
from bisect import bisect_right
from enum import Enum
from typing import List

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

logger = logging.getLogger(__name__)


class Trend(Enum):
    UP = "Up"
    DOWN = "Down"
    NEITHER = "Neither"


def find_pivots(values: np.ndarray, strength: int, highs: bool) -> List[int]:
    """Indices of swing pivots (highs when ``highs`` else lows), ascending."""
    values = np.asarray(values, dtype=float)
    width = 2 * strength + 1
    if strength < 1 or len(values) < width:
        return []

    windows = sliding_window_view(values, width)
    center = windows[:, strength][:, None]
    before = windows[:, :strength]
    after = windows[:, strength + 1:]
    if highs:
        mask = (before < center).all(axis=1) & (after <= center).all(axis=1)
    else:
        mask = (before > center).all(axis=1) & (after >= center).all(axis=1)
    return (np.nonzero(mask)[0] + strength).tolist()


class Swing:
    """Swing pivots of a bar series, queried relative to a current bar."""

    def __init__(self, high: np.ndarray, low: np.ndarray, strength: int):
        self.strength = strength
        self._high_pivots = find_pivots(high, strength, highs=True)
        self._low_pivots = find_pivots(low, strength, highs=False)

    def _nth_recent(self, pivots: List[int], instance: int, current_bar: int) -> int:
        confirmed = bisect_right(pivots, current_bar - self.strength)
        if instance < 1 or instance > confirmed:
            return -1
        return current_bar - pivots[confirmed - instance]

    def swing_high_bar(self, instance: int, current_bar: int) -> int:
        """Bars ago of the ``instance``-th most recent swing high, or -1."""
        return self._nth_recent(self._high_pivots, instance, current_bar)

    def swing_low_bar(self, instance: int, current_bar: int) -> int:
        """Bars ago of the ``instance``-th most recent swing low, or -1."""
        return self._nth_recent(self._low_pivots, instance, current_bar)


class TrendClassifier:
    """
    Up/down/neither classification for a bar host.

    The host exposes ``high`` and ``low`` arrays and a ``current_bar`` index.
    Swing pivots are computed on first use.
    """

    def __init__(self, host, trend_strength: int):
        self.host = host
        self.trend_strength = trend_strength
        self._swing: Swing | None = None

    @property
    def swing(self) -> Swing:
        if self._swing is None:
            self._swing = Swing(self.host.high, self.host.low, self.trend_strength)
            logger.debug(f"Swing pivots built (strength={self.trend_strength})")
        return self._swing

    def classify(self) -> Trend:
        host = self.host
        bar = host.current_bar
        swing = self.swing

        def low(ago: int) -> float:
            return host.low[bar - ago]

        def high(ago: int) -> float:
            return host.high[bar - ago]

        # Walk back over swing lows until a rising pair is found
        up_start = up_end = 0
        occurrence = 1
        while low(up_end) <= low(up_start):
            up_start = swing.swing_low_bar(occurrence + 1, bar)
            up_end = swing.swing_low_bar(occurrence, bar)
            if up_start < 0 or up_end < 0:
                break
            occurrence += 1

        # Same for swing highs, looking for a falling pair
        down_start = down_end = 0
        occurrence = 1
        while high(down_end) >= high(down_start):
            down_start = swing.swing_high_bar(occurrence + 1, bar)
            down_end = swing.swing_high_bar(occurrence, bar)
            if down_start < 0 or down_end < 0:
                break
            occurrence += 1

        if up_start > 0 and up_end > 0 and up_start < down_start:
            return Trend.UP
        if down_start > 0 and down_end > 0 and up_start > down_start:
            return Trend.DOWN
        return Trend.NEITHER
