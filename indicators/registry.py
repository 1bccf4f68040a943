"""
Comparator Registry
===================

Fixed catalogs the expression language draws from:

- ``Condition``: comparison operators of a comparison node
- ``LogicalOperator``: operators of a logical node
- ``IndicatorRegistry``: the named indicator types available to a run, each
  with an optional plausible compare range for threshold comparisons

Usage:
    from indicators.registry import IndicatorRegistry

    registry = IndicatorRegistry()
    rsi = registry.create_instance("RSI", Period=10)
    any_indicator = registry.random_indicator(random.Random(7))
"""
from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from core.exceptions import ConfigurationError, IndicatorInstantiationError
from indicators.base import Indicator
from indicators.library import DEFAULT_COMPARE_RANGES, INDICATOR_TYPES

logger = logging.getLogger(__name__)


class Condition(Enum):
    """Comparison operators, in catalog order."""
    CROSS_ABOVE = "CrossAbove"
    CROSS_BELOW = "CrossBelow"
    EQUALS = "Equals"
    GREATER = "Greater"
    GREATER_EQUAL = "GreaterEqual"
    LESS = "Less"
    LESS_EQUAL = "LessEqual"
    NOT_EQUAL = "NotEqual"

    @property
    def is_cross(self) -> bool:
        return self in (Condition.CROSS_ABOVE, Condition.CROSS_BELOW)


# Random draws never produce NotEqual; it is still a valid persisted value.
RANDOM_CONDITIONS: Tuple[Condition, ...] = tuple(c for c in Condition if c is not Condition.NOT_EQUAL)


class LogicalOperator(Enum):
    AND = "And"
    NOT = "Not"
    OR = "Or"


LOGICAL_OPERATORS: Tuple[LogicalOperator, ...] = tuple(LogicalOperator)

CompareRange = Optional[Tuple[float, float]]


class IndicatorRegistry:
    """
    Catalog of indicator types available to a run.

    Args:
        catalog: Type id -> compare range (or None). Empty/None selects the
            full built-in catalog with its default ranges.
        types: Type id -> indicator class lookup (defaults to the library)
        max_attempts: Draws tried by :meth:`random_indicator` before giving up
    """

    def __init__(
        self,
        catalog: Optional[Mapping[str, CompareRange]] = None,
        types: Optional[Mapping[str, Type[Indicator]]] = None,
        max_attempts: int = 100,
    ):
        self._classes: Dict[str, Type[Indicator]] = dict(types or INDICATOR_TYPES)
        self.max_attempts = max_attempts

        if not catalog:
            catalog = {
                type_id: DEFAULT_COMPARE_RANGES.get(type_id) for type_id in self._classes
            }

        unknown = [type_id for type_id in catalog if type_id not in self._classes]
        if unknown:
            raise ConfigurationError(
                "Unknown indicator types in catalog",
                context={"types": ",".join(unknown)},
            )

        self._ranges: Dict[str, CompareRange] = {
            type_id: (tuple(float(v) for v in bounds) if bounds is not None else None)
            for type_id, bounds in catalog.items()
        }
        self._type_ids: List[str] = list(self._ranges)

    @classmethod
    def from_settings(cls, settings) -> "IndicatorRegistry":
        return cls(catalog=settings.indicators)

    # ------------------------------------------------------------------

    @property
    def type_ids(self) -> List[str]:
        return list(self._type_ids)

    def __len__(self) -> int:
        return len(self._type_ids)

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._ranges

    def register(self, indicator_cls: Type[Indicator], compare_range: CompareRange = None) -> None:
        """Add (or replace) a type in this run's catalog."""
        self._classes[indicator_cls.type_id] = indicator_cls
        if indicator_cls.type_id not in self._ranges:
            self._type_ids.append(indicator_cls.type_id)
        self._ranges[indicator_cls.type_id] = compare_range

    def compare_range(self, type_id: str) -> CompareRange:
        return self._ranges.get(type_id)

    def is_overlay(self, type_id: str) -> bool:
        return self._classes[type_id].is_overlay

    # ------------------------------------------------------------------

    def create_instance(self, type_id: str, **params: Any) -> Indicator:
        """
        Instantiate a type.

        Raises:
            IndicatorInstantiationError: Unknown type, construction failure,
                zero output series or more than one input series
        """
        indicator_cls = self._classes.get(type_id)
        if indicator_cls is None:
            raise IndicatorInstantiationError(type_id, "unknown type")
        try:
            indicator = indicator_cls(**params)
        except (KeyError, TypeError, ValueError) as e:
            raise IndicatorInstantiationError(type_id, "construction failed", cause=e) from e

        if indicator.output_count == 0:
            raise IndicatorInstantiationError(type_id, "no output series")
        if indicator.input_series_count > 1:
            raise IndicatorInstantiationError(type_id, "multi-series input not supported")
        return indicator

    def random_indicator(
        self,
        rng: random.Random,
        is_overlay: Optional[bool] = None,
    ) -> Indicator:
        """
        Draw a uniformly random type from the catalog and instantiate it.

        Failing types are logged and another draw is made. With ``is_overlay``
        set, only types of that scale are drawn.
        """
        candidates: Sequence[str] = self._type_ids
        if is_overlay is not None:
            candidates = [t for t in self._type_ids if self._classes[t].is_overlay == is_overlay]
        if not candidates:
            raise IndicatorInstantiationError(
                "*", f"no {'overlay' if is_overlay else 'non-overlay'} types in catalog"
            )

        for _ in range(self.max_attempts):
            type_id = candidates[rng.randrange(len(candidates))]
            try:
                return self.create_instance(type_id)
            except IndicatorInstantiationError as e:
                logger.warning(f"Skipping indicator type: {e}")
        raise IndicatorInstantiationError("*", f"no instantiable type after {self.max_attempts} draws")

    def from_dict(self, data: Dict[str, Any]) -> Indicator:
        """Rebuild a persisted indicator (see ``Indicator.to_dict``)."""
        indicator = self.create_instance(data["type"], **Indicator.parse_properties(data))
        indicator.selected_series = min(int(data.get("selected_series", 0)), indicator.output_count - 1)
        return indicator
