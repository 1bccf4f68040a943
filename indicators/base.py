"""
Indicator Base
==============

An ``Indicator`` is a named, parameterised numeric time series computed from
OHLCV bars. Each instance is owned by exactly one comparison node of an
expression tree; it is bound to a bar host before evaluation and read with a
bars-ago index (0 = current bar).

Usage:
    from indicators.library import SMA

    sma = SMA(Period=20)
    sma.bind(host)
    latest = sma[0]
    previous = sma[1]
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from core.exceptions import IndicatorInstantiationError
from core.floating import format_decimal, parse_decimal

logger = logging.getLogger(__name__)

INT_MAX = 2_147_483_647


@dataclass(frozen=True)
class PropertySpec:
    """A tunable numeric property with its declared valid range."""
    name: str
    default: float
    minimum: float
    maximum: float
    is_int: bool = True

    def coerce(self, value: float) -> float:
        """Clamp into range; integer properties round half to even."""
        value = max(self.minimum, min(self.maximum, float(value)))
        if self.is_int:
            return int(round(value))
        return value


class Indicator(ABC):
    """
    Abstract indicator.

    Subclasses declare their catalog metadata as class attributes and
    implement :meth:`compute`.
    """

    type_id: str = ""
    is_overlay: bool = False
    output_names: Tuple[str, ...] = ("Value",)
    input_series_count: int = 1
    properties: Tuple[PropertySpec, ...] = ()

    def __init__(self, **params: Any):
        self.params: Dict[str, float] = {p.name: p.coerce(p.default) for p in self.properties}
        for name, value in params.items():
            self.set_property(name, value)
        self.selected_series = 0
        self._host = None
        self._values: Optional[List[np.ndarray]] = None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def output_count(self) -> int:
        return len(self.output_names)

    def tunable_properties(self) -> List[PropertySpec]:
        return list(self.properties)

    def property_spec(self, name: str) -> PropertySpec:
        for spec in self.properties:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.type_id} has no property {name}")

    def get_property(self, name: str) -> float:
        self.property_spec(name)
        return self.params[name]

    def set_property(self, name: str, value: float) -> None:
        self.params[name] = self.property_spec(name).coerce(value)

    def display_name(self) -> str:
        """Type and parameters, e.g. ``Bollinger(2.0,14)``."""
        if not self.properties:
            return self.type_id
        args = ",".join(
            str(int(self.params[p.name])) if p.is_int else format_decimal(self.params[p.name])
            for p in self.properties
        )
        return f"{self.type_id}({args})"

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    @abstractmethod
    def compute(self, bars: pd.DataFrame) -> List[pd.Series]:
        """Compute every output series over the full bar frame."""

    def bind(self, host) -> None:
        """Compute all outputs over ``host.bars`` and attach to the host clock."""
        try:
            outputs = self.compute(host.bars)
        except (ArithmeticError, KeyError, ValueError) as e:
            raise IndicatorInstantiationError(self.type_id, "compute failed", cause=e) from e
        if len(outputs) != self.output_count:
            raise IndicatorInstantiationError(
                self.type_id, f"expected {self.output_count} outputs, got {len(outputs)}"
            )
        self._values = [np.asarray(s, dtype=float) for s in outputs]
        self._host = host

    @property
    def is_bound(self) -> bool:
        return self._values is not None

    def series_values(self, series: Optional[int] = None) -> np.ndarray:
        """Whole selected output series (empty when unbound)."""
        if self._values is None:
            return np.empty(0)
        return self._values[self.selected_series if series is None else series]

    def __getitem__(self, bars_ago: int) -> float:
        if self._values is None:
            return math.nan
        index = self._host.current_bar - bars_ago
        values = self._values[self.selected_series]
        if index < 0 or index >= len(values):
            return math.nan
        return float(values[index])

    # ------------------------------------------------------------------
    # Copy / persistence
    # ------------------------------------------------------------------

    def clone(self) -> "Indicator":
        """Fresh unbound instance with the same properties.

        The selected output series is *not* carried over; callers that need
        it copy ``selected_series`` themselves.
        """
        return type(self)(**self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type_id,
            "selected_series": str(self.selected_series),
            "properties": {
                p.name: (str(int(self.params[p.name])) if p.is_int else format_decimal(self.params[p.name]))
                for p in self.properties
            },
        }

    @staticmethod
    def parse_properties(data: Dict[str, Any]) -> Dict[str, float]:
        return {name: parse_decimal(str(text)) for name, text in (data.get("properties") or {}).items()}

    def __repr__(self) -> str:
        return f"{self.display_name()}[{self.selected_series}]"
