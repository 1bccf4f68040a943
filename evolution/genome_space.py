"""
Genome space: what random generation, mutation and crossover may produce.

Built from ``OptimizerSettings`` plus an ``IndicatorRegistry``. Feasibility
is checked up front so that an impossible search fails before any backtest
is submitted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from config.settings_schema import OptimizerSettings
from core.exceptions import ConfigurationError
from indicators.registry import IndicatorRegistry


class ExitShape(Enum):
    """Exit forms are never mixed within one candidate."""
    CONDITION = "condition"            # exit expressions only
    PARABOLIC = "parabolic"            # parabolic stop, no profit target
    STOP_TARGET = "stop_target"        # stop loss + profit target
    TRAIL_TARGET = "trail_target"      # trail stop + profit target


@dataclass
class GenomeSpace:
    """Enabled leaf kinds, sides and exit mechanisms for one run."""
    registry: IndicatorRegistry = field(default_factory=IndicatorRegistry)
    optimize_entries: bool = True
    optimize_exits: bool = True
    optimize_session_close: bool = True
    trade_long: bool = True
    trade_short: bool = True
    entry_patterns: bool = True
    entry_indicators: bool = True
    exit_patterns: bool = True
    exit_indicators: bool = True
    exit_parabolic: bool = True
    exit_stop_targets: bool = True
    max_probe_attempts: int = 100

    @classmethod
    def from_settings(
        cls,
        settings: OptimizerSettings,
        registry: Optional[IndicatorRegistry] = None,
    ) -> "GenomeSpace":
        return cls(
            registry=registry or IndicatorRegistry(),
            optimize_entries=settings.optimize_entries,
            optimize_exits=settings.optimize_exits,
            optimize_session_close=settings.optimize_session_close,
            trade_long=settings.trade_long,
            trade_short=settings.trade_short,
            entry_patterns=settings.entries.use_candlestick_patterns,
            entry_indicators=settings.entries.use_indicators,
            exit_patterns=settings.exits.use_candlestick_patterns,
            exit_indicators=settings.exits.use_indicators,
            exit_parabolic=settings.exits.use_parabolic_stop,
            exit_stop_targets=settings.exits.use_stop_targets,
        )

    def validate(self) -> None:
        """Raise ConfigurationError when nothing can be searched."""
        if not self.entry_patterns and not self.entry_indicators:
            raise ConfigurationError(
                "Entries not defined: enable candlestick patterns or indicators for entries"
            )
        if not (self.exit_patterns or self.exit_indicators or self.exit_parabolic or self.exit_stop_targets):
            raise ConfigurationError(
                "Exits not defined: enable candlestick patterns, indicators, parabolic stops "
                "or stop/targets for exits"
            )
        if not self.optimize_entries and not self.optimize_exits:
            raise ConfigurationError("Optimize entries or exits (or both)")
        if not self.trade_long and not self.trade_short:
            raise ConfigurationError("Trade long or short (or both)")
        if (self.entry_indicators or self.exit_indicators) and len(self.registry) == 0:
            raise ConfigurationError("Indicators enabled but the indicator catalog is empty")

    # ------------------------------------------------------------------

    def use_patterns(self, is_entry: Optional[bool]) -> bool:
        if is_entry is None:
            return True
        return self.entry_patterns if is_entry else self.exit_patterns

    def use_indicators(self, is_entry: Optional[bool]) -> bool:
        if is_entry is None:
            return True
        return self.entry_indicators if is_entry else self.exit_indicators

    def entry_shapes(self) -> List[Tuple[bool, bool]]:
        """(long, short) entry presence choices: both, long-only, short-only."""
        shapes = []
        if self.trade_long and self.trade_short:
            shapes.append((True, True))
        if self.trade_long:
            shapes.append((True, False))
        if self.trade_short:
            shapes.append((False, True))
        return shapes

    def exit_shapes(self) -> List[ExitShape]:
        shapes = []
        if self.exit_patterns or self.exit_indicators:
            shapes.append(ExitShape.CONDITION)
        if self.exit_parabolic:
            shapes.append(ExitShape.PARABOLIC)
        if self.exit_stop_targets:
            shapes.extend([ExitShape.STOP_TARGET, ExitShape.TRAIL_TARGET])
        return shapes
