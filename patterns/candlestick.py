"""
Candlestick Pattern Logic
=========================

Boolean candlestick predicates over the last few bars of a host, optionally
gated by the trend classification.

Each ``CandleStickPatternLogic`` instance applies a two-bar no-repeat rule:
once a pattern is found, nothing is reported on the next two evaluated bars.
The state is a two-slot buffer indexed by bar parity.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Optional

from core.floating import approx_compare
from patterns.trend import Trend, TrendClassifier

logger = logging.getLogger(__name__)


class ChartPattern(Enum):
    BEARISH_BELT_HOLD = "BearishBeltHold"
    BEARISH_ENGULFING = "BearishEngulfing"
    BEARISH_HARAMI = "BearishHarami"
    BEARISH_HARAMI_CROSS = "BearishHaramiCross"
    BULLISH_BELT_HOLD = "BullishBeltHold"
    BULLISH_ENGULFING = "BullishEngulfing"
    BULLISH_HARAMI = "BullishHarami"
    BULLISH_HARAMI_CROSS = "BullishHaramiCross"
    DARK_CLOUD_COVER = "DarkCloudCover"
    DOJI = "Doji"
    DOWNSIDE_TASUKI_GAP = "DownsideTasukiGap"
    EVENING_STAR = "EveningStar"
    FALLING_THREE_METHODS = "FallingThreeMethods"
    HAMMER = "Hammer"
    HANGING_MAN = "HangingMan"
    INVERTED_HAMMER = "InvertedHammer"
    MORNING_STAR = "MorningStar"
    PIERCING_LINE = "PiercingLine"
    RISING_THREE_METHODS = "RisingThreeMethods"
    SHOOTING_STAR = "ShootingStar"
    STICK_SANDWICH = "StickSandwich"
    THREE_BLACK_CROWS = "ThreeBlackCrows"
    THREE_WHITE_SOLDIERS = "ThreeWhiteSoldiers"
    UPSIDE_GAP_TWO_CROWS = "UpsideGapTwoCrows"
    UPSIDE_TASUKI_GAP = "UpsideTasukiGap"


CHART_PATTERNS = tuple(ChartPattern)

# Shapes that never consult the trend classifier
TREND_NEUTRAL_PATTERNS = frozenset({
    ChartPattern.DOJI,
    ChartPattern.DOWNSIDE_TASUKI_GAP,
    ChartPattern.EVENING_STAR,
    ChartPattern.FALLING_THREE_METHODS,
    ChartPattern.MORNING_STAR,
    ChartPattern.RISING_THREE_METHODS,
    ChartPattern.STICK_SANDWICH,
    ChartPattern.UPSIDE_TASUKI_GAP,
})

# Bars of history each predicate reads (bars-ago 0 .. n-1)
_BARS_USED: Dict[ChartPattern, int] = {
    ChartPattern.DOJI: 1,
    ChartPattern.HAMMER: 1,
    ChartPattern.HANGING_MAN: 1,
    ChartPattern.INVERTED_HAMMER: 1,
    ChartPattern.SHOOTING_STAR: 1,
    ChartPattern.DOWNSIDE_TASUKI_GAP: 3,
    ChartPattern.EVENING_STAR: 3,
    ChartPattern.MORNING_STAR: 3,
    ChartPattern.STICK_SANDWICH: 3,
    ChartPattern.THREE_BLACK_CROWS: 3,
    ChartPattern.THREE_WHITE_SOLDIERS: 3,
    ChartPattern.UPSIDE_GAP_TWO_CROWS: 3,
    ChartPattern.UPSIDE_TASUKI_GAP: 3,
    ChartPattern.FALLING_THREE_METHODS: 5,
    ChartPattern.RISING_THREE_METHODS: 5,
}


def bars_used(pattern: ChartPattern) -> int:
    return _BARS_USED.get(pattern, 2)


class CandleStickPatternLogic:
    """
    Pattern matcher bound to one bar host.

    Args:
        host: Exposes ``open/high/low/close`` arrays, ``current_bar`` and
            ``tick_size``
        trend_strength: Swing strength for the trend classifier and the
            MAX/MIN window of hammer-type patterns
    """

    def __init__(self, host, trend_strength: int):
        self.host = host
        self.trend_strength = trend_strength
        self._prior = [False, False]
        self._classifier: Optional[TrendClassifier] = None
        self._is_up = False
        self._is_down = False

    @property
    def classifier(self) -> Optional[TrendClassifier]:
        """The trend classifier, or None until a trend pattern was evaluated."""
        return self._classifier

    def evaluate(self, pattern: ChartPattern) -> bool:
        bar = self.host.current_bar
        if bar < self.trend_strength or bar < 2 or bar < bars_used(pattern) - 1:
            return False

        if pattern not in TREND_NEUTRAL_PATTERNS:
            if self._classifier is None:
                self._classifier = TrendClassifier(self.host, self.trend_strength)
            trend = self._classifier.classify()
            self._is_up = trend is Trend.UP
            self._is_down = trend is Trend.DOWN

        found = False
        if not self._prior[0] and not self._prior[1]:
            found = self._match(pattern)
        self._prior[bar % 2] = found
        return found

    # ------------------------------------------------------------------

    def _match(self, pattern: ChartPattern) -> bool:
        h = self.host
        bar = h.current_bar
        tick = h.tick_size
        up = self._is_up
        down = self._is_down

        def O(ago: int) -> float:
            return float(h.open[bar - ago])

        def H(ago: int) -> float:
            return float(h.high[bar - ago])

        def L(ago: int) -> float:
            return float(h.low[bar - ago])

        def C(ago: int) -> float:
            return float(h.close[bar - ago])

        def eq(a: float, b: float) -> bool:
            return approx_compare(a, b) == 0

        def window_max() -> float:
            return float(h.high[bar - self.trend_strength + 1: bar + 1].max())

        def window_min() -> float:
            return float(h.low[bar - self.trend_strength + 1: bar + 1].min())

        p = ChartPattern
        if pattern is p.BEARISH_BELT_HOLD:
            return up and C(1) > O(1) and O(0) > C(1) + 5 * tick and eq(O(0), H(0)) and C(0) < O(0)
        if pattern is p.BEARISH_ENGULFING:
            return up and C(1) > O(1) and C(0) < O(0) and O(0) > C(1) and C(0) < O(1)
        if pattern is p.BEARISH_HARAMI:
            return up and C(0) < O(0) and C(1) > O(1) and L(0) >= O(1) and H(0) <= C(1)
        if pattern is p.BEARISH_HARAMI_CROSS:
            return (up and H(0) <= C(1) and L(0) >= O(1) and O(0) <= C(1) and C(0) >= O(1)
                    and abs(C(0) - O(0)) <= tick)
        if pattern is p.BULLISH_BELT_HOLD:
            return down and C(1) < O(1) and O(0) < C(1) - 5 * tick and eq(O(0), L(0)) and C(0) > O(0)
        if pattern is p.BULLISH_ENGULFING:
            return down and C(1) < O(1) and C(0) > O(0) and C(0) > O(1) and O(0) < C(1)
        if pattern is p.BULLISH_HARAMI:
            return down and C(0) > O(0) and C(1) < O(1) and L(0) >= C(1) and H(0) <= O(1)
        if pattern is p.BULLISH_HARAMI_CROSS:
            return (down and H(0) <= O(1) and L(0) >= C(1) and O(0) >= C(1) and C(0) <= O(1)
                    and abs(C(0) - O(0)) <= tick)
        if pattern is p.DARK_CLOUD_COVER:
            return (up and O(0) > H(1) and C(1) > O(1) and C(0) < O(0)
                    and C(0) <= C(1) - (C(1) - O(1)) / 2 and C(0) >= O(1))
        if pattern is p.DOJI:
            return abs(C(0) - O(0)) <= (H(0) - L(0)) * 0.07
        if pattern is p.DOWNSIDE_TASUKI_GAP:
            return (C(2) < O(2) and C(1) < O(1) and C(0) > O(0) and H(1) < L(2)
                    and O(0) > C(1) and O(0) < O(1) and C(0) > O(1) and C(0) < C(2))
        if pattern is p.EVENING_STAR:
            return C(2) > O(2) and C(1) > C(2) and O(0) < abs((C(1) - O(1)) / 2) + O(1) and C(0) < O(0)
        if pattern is p.FALLING_THREE_METHODS:
            return (C(4) < O(4) and C(0) < O(0) and C(0) < L(4)
                    and all(H(i) < H(4) and L(i) > L(4) for i in (3, 2, 1)))
        if pattern is p.HAMMER:
            rng = H(0) - L(0)
            return (down and eq(window_min(), L(0)) and L(0) < O(0) - 5 * tick
                    and abs(O(0) - C(0)) < 0.10 * rng and (H(0) - C(0)) < 0.25 * rng)
        if pattern is p.HANGING_MAN:
            rng = H(0) - L(0)
            return (up and eq(window_max(), H(0)) and L(0) < O(0) - 5 * tick
                    and abs(O(0) - C(0)) < 0.10 * rng and (H(0) - C(0)) < 0.25 * rng)
        if pattern is p.INVERTED_HAMMER:
            rng = H(0) - L(0)
            return (up and eq(window_max(), H(0)) and H(0) > O(0) + 5 * tick
                    and abs(O(0) - C(0)) < 0.10 * rng and (C(0) - L(0)) < 0.25 * rng)
        if pattern is p.MORNING_STAR:
            return C(2) < O(2) and C(1) < C(2) and O(0) > abs((C(1) - O(1)) / 2) + O(1) and C(0) > O(0)
        if pattern is p.PIERCING_LINE:
            return (down and O(0) < L(1) and C(1) < O(1) and C(0) > O(0)
                    and C(0) >= C(1) + (O(1) - C(1)) / 2 and C(0) <= O(1))
        if pattern is p.RISING_THREE_METHODS:
            return (C(4) > O(4) and C(0) > O(0) and C(0) > H(4)
                    and all(H(i) < H(4) and L(i) > L(4) for i in (3, 2, 1)))
        if pattern is p.SHOOTING_STAR:
            return (up and H(0) > O(0) and (H(0) - O(0)) >= 2 * (O(0) - C(0))
                    and C(0) < O(0) and (C(0) - L(0)) <= 2 * tick)
        if pattern is p.STICK_SANDWICH:
            return eq(C(2), C(0)) and C(2) < O(2) and C(1) > O(1) and C(0) < O(0)
        if pattern is p.THREE_BLACK_CROWS:
            return (up and C(0) < O(0) and C(1) < O(1) and C(2) < O(2) and C(0) < C(1) and C(1) < C(2)
                    and O(0) < O(1) and O(0) > C(1) and O(1) < O(2) and O(1) > C(2))
        if pattern is p.THREE_WHITE_SOLDIERS:
            return (down and C(0) > O(0) and C(1) > O(1) and C(2) > O(2) and C(0) > C(1) and C(1) > C(2)
                    and O(0) < C(1) and O(0) > O(1) and O(1) < C(2) and O(1) > O(2))
        if pattern is p.UPSIDE_GAP_TWO_CROWS:
            return (up and C(2) > O(2) and C(1) < O(1) and C(0) < O(0) and L(1) > H(2)
                    and C(0) > H(2) and C(0) < C(1) and O(0) > O(1))
        if pattern is p.UPSIDE_TASUKI_GAP:
            return (C(2) > O(2) and C(1) > O(1) and C(0) < O(0) and L(1) > H(2)
                    and O(0) < C(1) and O(0) > O(1) and C(0) < O(1) and C(0) > C(2))
        raise ValueError(f"Unknown pattern {pattern}")
