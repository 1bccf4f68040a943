"""
Expression Trees
================

Boolean expression language of a candidate's entry and exit rules. The node
set is closed:

- ``LogicalExpression``: And / Or / Not over child expressions
- ``ComparisonExpression``: an indicator compared with a price, another
  indicator, or a threshold inside the indicator's observed range
- ``PatternExpression``: a candlestick pattern terminal

Trees are strictly owned (no shared subtrees). ``copy`` is deep, and
``mutate`` returns a new tree in which only the subtree rooted at the target
node differs from the original.

Usage:
    from evolution.expressions import random_expression

    tree = random_expression(space, rng, is_entry=True)
    target = tree.nodes()[rng.randrange(tree.node_count())]
    child = tree.mutate(candidate, rng, target, is_entry=True)
    print(child.to_string())
"""

from __future__ import annotations

import hashlib
import logging
import math
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

from core.exceptions import IndicatorInstantiationError, SerializationError
from core.floating import approx_compare, format_decimal, parse_decimal
from evolution.genome_space import GenomeSpace
from indicators.base import Indicator
from indicators.registry import (
    LOGICAL_OPERATORS,
    RANDOM_CONDITIONS,
    Condition,
    IndicatorRegistry,
    LogicalOperator,
)
from patterns.candlestick import CHART_PATTERNS, CandleStickPatternLogic, ChartPattern

if TYPE_CHECKING:
    from evolution.candidate import Candidate

logger = logging.getLogger(__name__)

# Integer properties are capped so lookbacks stay within a 256-bar window
INT_PROPERTY_CAP = 256 - 10

MAX_RANDOM_DEPTH = 8

_OPERATOR_SYMBOLS = {
    Condition.EQUALS: "==",
    Condition.GREATER: ">",
    Condition.GREATER_EQUAL: ">=",
    Condition.LESS: "<",
    Condition.LESS_EQUAL: "<=",
    Condition.NOT_EQUAL: "!=",
}


# =============================================================================
# Base
# =============================================================================

class Expression(ABC):
    """Abstract base class for expression tree nodes."""

    kind: str = ""

    @abstractmethod
    def evaluate(self, owner: "Candidate", host) -> bool:
        """Evaluate on the host's current bar."""

    @abstractmethod
    def copy(self) -> "Expression":
        """Deep, independent copy."""

    @abstractmethod
    def nodes(self) -> List["Expression"]:
        """All nodes in pre-order, self first."""

    @abstractmethod
    def mutate(
        self,
        owner: "Candidate",
        rng: random.Random,
        target: "Expression",
        is_entry: Optional[bool] = None,
    ) -> "Expression":
        """New tree where only the subtree rooted at ``target`` changed."""

    @abstractmethod
    def to_string(self) -> str:
        """Canonical one-line rendering of the behaviour-relevant fields."""

    @abstractmethod
    def to_source(self, indent: int = 0) -> str:
        """Readable Python condition text for generated strategies."""

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Structured document, see :func:`expression_from_dict`."""

    def initialize(self, owner: "Candidate", host) -> None:
        """Bind run-time state to a host before the first evaluation."""

    def node_count(self) -> int:
        return len(self.nodes())

    def contains(self, node: "Expression") -> bool:
        return any(n is node for n in self.nodes())

    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_string().encode("utf-8")).hexdigest()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_string()})"


# =============================================================================
# Logical
# =============================================================================

class LogicalExpression(Expression):
    """And / Or over two children, or Not over ``left`` (``right`` ignored)."""

    kind = "LogicalExpression"

    def __init__(
        self,
        left: Expression,
        operator: LogicalOperator,
        right: Optional[Expression] = None,
    ):
        self.left = left
        self.operator = operator
        self.right = right

    def evaluate(self, owner: "Candidate", host) -> bool:
        if self.operator is LogicalOperator.AND:
            return self.left.evaluate(owner, host) and self.right.evaluate(owner, host)
        if self.operator is LogicalOperator.OR:
            return self.left.evaluate(owner, host) or self.right.evaluate(owner, host)
        return not self.left.evaluate(owner, host)

    def copy(self) -> "LogicalExpression":
        return LogicalExpression(
            self.left.copy(),
            self.operator,
            self.right.copy() if self.right is not None else None,
        )

    def nodes(self) -> List[Expression]:
        result: List[Expression] = [self]
        result.extend(self.left.nodes())
        if self.right is not None:
            result.extend(self.right.nodes())
        return result

    def initialize(self, owner: "Candidate", host) -> None:
        self.left.initialize(owner, host)
        if self.right is not None:
            self.right.initialize(owner, host)

    def mutate(self, owner, rng, target, is_entry=None) -> "LogicalExpression":
        right = self.right
        if target is self:
            r = rng.randrange(10)
            if r < 6:
                operator = LOGICAL_OPERATORS[rng.randrange(len(LOGICAL_OPERATORS))]
                if right is None and operator is not LogicalOperator.NOT:
                    return LogicalExpression(
                        self.left.copy(), operator, random_expression(owner.space, rng, is_entry)
                    )
                return LogicalExpression(
                    self.left.copy(),
                    operator,
                    right.copy() if right is not None else None,
                )
            if r < 8:
                return LogicalExpression(
                    random_expression(owner.space, rng, is_entry),
                    self.operator,
                    right.copy() if right is not None else None,
                )
            return LogicalExpression(
                self.left.copy(),
                self.operator,
                random_expression(owner.space, rng, is_entry),
            )

        if self.left.contains(target):
            left = self.left.mutate(owner, rng, target, is_entry)
            return LogicalExpression(left, self.operator, right.copy() if right is not None else None)
        if right is not None and right.contains(target):
            return LogicalExpression(self.left.copy(), self.operator, right.mutate(owner, rng, target, is_entry))
        return self.copy()

    def to_string(self) -> str:
        if self.operator is LogicalOperator.NOT:
            return f"not ({self.left.to_string()})"
        word = "and" if self.operator is LogicalOperator.AND else "or"
        return f"({self.left.to_string()} {word} {self.right.to_string()})"

    def to_source(self, indent: int = 0) -> str:
        if self.operator is LogicalOperator.NOT:
            return f"not ({self.left.to_source(indent + 1)})"
        word = "and" if self.operator is LogicalOperator.AND else "or"
        pad = "    " * indent
        return (f"({self.left.to_source(indent + 1)}\n"
                f"{pad}{word} {self.right.to_source(indent + 1)})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "left": self.left.to_dict(),
            "operator": self.operator.value,
            "right": self.right.to_dict() if self.right is not None else None,
        }


# =============================================================================
# Comparison
# =============================================================================

class ComparisonExpression(Expression):
    """
    Indicator comparison leaf.

    For an overlay ``left`` the comparand is the close price (when
    ``use_price_to_compare``) or ``right``. For a non-overlay ``left`` the
    comparand is ``min + (max - min) * compare_percent`` over the cached
    observed range of ``left``.
    """

    kind = "IndicatorExpression"

    def __init__(
        self,
        left: Indicator,
        right: Indicator,
        condition: Condition = Condition.GREATER,
        left_bars_ago: int = 0,
        right_bars_ago: int = 0,
        use_price_to_compare: bool = False,
        compare_percent: float = 0.5,
        min_compare: float = math.nan,
        max_compare: float = math.nan,
    ):
        self.left = left
        self.right = right
        self.condition = condition
        self.left_bars_ago = left_bars_ago
        self.right_bars_ago = right_bars_ago
        self.use_price_to_compare = use_price_to_compare
        self.compare_percent = compare_percent
        self.min_compare = min_compare
        self.max_compare = max_compare

    @property
    def compare_value(self) -> float:
        return self.min_compare + (self.max_compare - self.min_compare) * self.compare_percent

    def invalidate_range(self) -> None:
        self.min_compare = math.nan
        self.max_compare = math.nan

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _comparand(self, host, bars_ago: int) -> float:
        if not self.left.is_overlay:
            return self.compare_value
        if self.use_price_to_compare:
            index = host.current_bar - bars_ago
            return float(host.close[index]) if index >= 0 else math.nan
        return self.right[bars_ago]

    def evaluate(self, owner: "Candidate", host) -> bool:
        if self.condition.is_cross:
            above = self.condition is Condition.CROSS_ABOVE
            first_side = -1
            max_back = min(1, host.current_bar)
            for ago in range(max_back + 1):
                value = self.left[ago]
                comparand = self._comparand(host, ago)
                on_side = value > comparand if above else value < comparand
                off_side = value <= comparand if above else value >= comparand
                if first_side < 0 and on_side:
                    first_side = ago
                elif first_side >= 0 and off_side:
                    return True
            return False

        value = self.left[self.left_bars_ago]
        comparand = self._comparand(host, self.right_bars_ago)
        if math.isnan(value) or math.isnan(comparand):
            return False
        result = approx_compare(value, comparand)
        if self.condition is Condition.EQUALS:
            return result == 0
        if self.condition is Condition.GREATER:
            return result > 0
        if self.condition is Condition.GREATER_EQUAL:
            return result >= 0
        if self.condition is Condition.LESS:
            return result < 0
        if self.condition is Condition.LESS_EQUAL:
            return result <= 0
        return result != 0

    def initialize(self, owner: "Candidate", host) -> None:
        try:
            self.left.bind(host)
            self.right.bind(host)
        except IndicatorInstantiationError as e:
            logger.warning(f"Comparison left unbound: {e}")
            return

        if not self.left.is_overlay and math.isnan(self.max_compare):
            values = self.left.series_values()
            finite = values[np.isfinite(values)]
            if finite.size:
                self.min_compare = float(finite.min())
                self.max_compare = float(finite.max())
            else:
                declared = owner.space.registry.compare_range(self.left.type_id)
                if declared is not None:
                    self.min_compare, self.max_compare = declared

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _copy_left(self) -> Indicator:
        left = self.left.clone()
        left.selected_series = self.left.selected_series
        return left

    def _copy_right(self) -> Indicator:
        right = self.right.clone()
        right.selected_series = self.right.selected_series
        return right

    def copy(self) -> "ComparisonExpression":
        return ComparisonExpression(
            left=self._copy_left(),
            right=self._copy_right(),
            condition=self.condition,
            left_bars_ago=self.left_bars_ago,
            right_bars_ago=self.right_bars_ago,
            use_price_to_compare=self.use_price_to_compare,
            compare_percent=self.compare_percent,
            min_compare=self.min_compare,
            max_compare=self.max_compare,
        )

    def nodes(self) -> List[Expression]:
        return [self]

    def mutate(self, owner, rng, target, is_entry=None) -> "ComparisonExpression":
        if target is not self:
            return self.copy()

        registry = owner.space.registry
        for _ in range(owner.space.max_probe_attempts):
            r = rng.randrange(50)

            condition = self.condition
            if r < 2:
                condition = RANDOM_CONDITIONS[rng.randrange(len(RANDOM_CONDITIONS))]
            left = registry.random_indicator(rng) if 2 <= r < 4 else self._copy_left()
            right = registry.random_indicator(rng) if 4 <= r < 6 else self._copy_right()
            right = compatible_right(left, right, owner.space, rng)

            node = ComparisonExpression(
                left=left,
                right=right,
                condition=condition,
                left_bars_ago=self.left_bars_ago,
                right_bars_ago=self.right_bars_ago,
                use_price_to_compare=self.use_price_to_compare,
                compare_percent=self.compare_percent,
                min_compare=self.min_compare,
                max_compare=self.max_compare,
            )

            if 2 <= r < 4:
                node.invalidate_range()
            elif 4 <= r < 6:
                factor = 0.9 if rng.randrange(2) == 0 else 1.1
                node.compare_percent = min(1.0, max(0.0, node.compare_percent * factor))
                node.use_price_to_compare = rng.randrange(2) == 0
            elif 6 <= r < 10:
                side = node.left if r < 8 else node.right
                side.selected_series = rng.randrange(side.output_count)
                node.invalidate_range()
            elif 10 <= r < 30:
                indicator = node.left if r < 20 else node.right
                specs = indicator.tunable_properties()
                if not specs:
                    continue
                spec = specs[rng.randrange(len(specs))]
                factor = 0.75 if rng.randrange(2) == 0 else 1.25
                maximum = min(spec.maximum, INT_PROPERTY_CAP) if spec.is_int else spec.maximum
                value = max(spec.minimum, min(maximum, indicator.get_property(spec.name) * factor))
                indicator.set_property(spec.name, value)
                if indicator is node.left:
                    node.invalidate_range()
            elif 30 <= r < 40:
                node.left_bars_ago = rng.randrange(10)
            else:
                node.right_bars_ago = rng.randrange(10)
            return node

        logger.debug("Comparison mutation found no applicable facet, returning copy")
        return self.copy()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @staticmethod
    def _ref(indicator: Indicator) -> str:
        return f"{indicator.display_name()}[{indicator.selected_series}]"

    def _comparand_text(self) -> str:
        if not self.left.is_overlay:
            return f"pct({format_decimal(self.compare_percent)})"
        return "Close" if self.use_price_to_compare else self._ref(self.right)

    def to_string(self) -> str:
        left = self._ref(self.left)
        comparand = self._comparand_text()
        if self.condition.is_cross:
            return f"{self.condition.value}({left}, {comparand})"
        if self.left.is_overlay:
            comparand = f"{comparand}@{self.right_bars_ago}"
        return f"{left}@{self.left_bars_ago} {_OPERATOR_SYMBOLS[self.condition]} {comparand}"

    @staticmethod
    def _series_source(indicator: Indicator) -> str:
        text = indicator.display_name()
        if indicator.selected_series != 0:
            text += f".values[{indicator.selected_series}]"
        return text

    def _comparand_source(self) -> str:
        if not self.left.is_overlay:
            if math.isnan(self.max_compare):
                return f"self.threshold({self._series_source(self.left)}, {format_decimal(self.compare_percent)})"
            return format_decimal(self.compare_value)
        return "Close" if self.use_price_to_compare else self._series_source(self.right)

    def to_source(self, indent: int = 0) -> str:
        left = self._series_source(self.left)
        comparand = self._comparand_source()
        if self.condition.is_cross:
            name = "cross_above" if self.condition is Condition.CROSS_ABOVE else "cross_below"
            return f"{name}({left}, {comparand}, 1)"
        if self.left.is_overlay:
            comparand = f"{comparand}[{self.right_bars_ago}]"
        return f"approx_compare({left}[{self.left_bars_ago}], {comparand}) {_OPERATOR_SYMBOLS[self.condition]} 0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
            "compare_percent": format_decimal(self.compare_percent),
            "condition": self.condition.value,
            "left_bars_ago": str(self.left_bars_ago),
            "max_compare": format_decimal(self.max_compare),
            "min_compare": format_decimal(self.min_compare),
            "right_bars_ago": str(self.right_bars_ago),
            "use_price_to_compare": str(self.use_price_to_compare),
        }


# =============================================================================
# Pattern
# =============================================================================

class PatternExpression(Expression):
    """Candlestick pattern terminal, evaluated with the owner's trend strength."""

    kind = "CandleStickPatternExpression"

    def __init__(self, pattern: ChartPattern = ChartPattern.MORNING_STAR):
        self.pattern = pattern
        self._logic: Optional[CandleStickPatternLogic] = None

    def evaluate(self, owner: "Candidate", host) -> bool:
        if self._logic is None or self._logic.host is not host:
            self._logic = CandleStickPatternLogic(host, owner.trend_strength)
        return self._logic.evaluate(self.pattern)

    def copy(self) -> "PatternExpression":
        return PatternExpression(self.pattern)

    def nodes(self) -> List[Expression]:
        return [self]

    def mutate(self, owner, rng, target, is_entry=None) -> "PatternExpression":
        if target is not self:
            return self.copy()
        others = [p for p in CHART_PATTERNS if p is not self.pattern]
        return PatternExpression(others[rng.randrange(len(others))])

    def to_string(self) -> str:
        return f"pattern({self.pattern.value})"

    def to_source(self, indent: int = 0) -> str:
        return f"self.candlestick_pattern_logic.evaluate(ChartPattern.{self.pattern.name})"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "pattern": self.pattern.value}


# =============================================================================
# Random generation
# =============================================================================

def compatible_right(
    left: Indicator,
    right: Indicator,
    space: GenomeSpace,
    rng: random.Random,
) -> Indicator:
    """Redraw ``right`` until its overlay flag matches ``left``."""
    registry = space.registry
    for _ in range(space.max_probe_attempts):
        if right.is_overlay == left.is_overlay:
            return right
        right = registry.random_indicator(rng)
    if right.is_overlay == left.is_overlay:
        return right
    return registry.random_indicator(rng, is_overlay=left.is_overlay)


def random_comparison(space: GenomeSpace, rng: random.Random) -> ComparisonExpression:
    """Fresh comparison leaf with a compatible indicator pair."""
    registry: IndicatorRegistry = space.registry
    compare_percent = rng.randrange(101) / 100.0
    condition = RANDOM_CONDITIONS[rng.randrange(len(RANDOM_CONDITIONS))]
    left = registry.random_indicator(rng)
    right = registry.random_indicator(rng)
    use_price = rng.randrange(2) == 0
    right = compatible_right(left, right, space, rng)
    return ComparisonExpression(
        left=left,
        right=right,
        condition=condition,
        use_price_to_compare=use_price,
        compare_percent=compare_percent,
    )


def random_expression(
    space: GenomeSpace,
    rng: random.Random,
    is_entry: Optional[bool] = None,
    _depth: int = 0,
) -> Expression:
    """
    Random subtree for an entry (``is_entry=True``), exit (``False``) or
    unrestricted (``None``) context.

    Draws ``r`` in ``[0, 1 + 2*patterns + 2*indicators)``: 0 yields a logical
    node with two random children, 1-2 a pattern (when enabled), anything
    else a comparison.
    """
    use_patterns = space.use_patterns(is_entry)
    use_indicators = space.use_indicators(is_entry)
    if not use_patterns and not use_indicators:
        raise ValueError(f"No leaf kinds enabled (is_entry={is_entry})")

    leaf_span = 2 * use_patterns + 2 * use_indicators
    if _depth >= MAX_RANDOM_DEPTH:
        r = 1 + rng.randrange(leaf_span)
    else:
        r = rng.randrange(1 + leaf_span)

    if r == 0:
        left = random_expression(space, rng, is_entry, _depth + 1)
        operator = LOGICAL_OPERATORS[rng.randrange(len(LOGICAL_OPERATORS))]
        right = random_expression(space, rng, is_entry, _depth + 1)
        return LogicalExpression(left, operator, right)
    if use_patterns and r <= 2:
        return PatternExpression(CHART_PATTERNS[rng.randrange(len(CHART_PATTERNS))])
    return random_comparison(space, rng)


# =============================================================================
# Persistence
# =============================================================================

def expression_from_dict(data: Dict[str, Any], registry: IndicatorRegistry) -> Expression:
    """Rebuild an expression document produced by ``to_dict``."""
    try:
        kind = data["type"]
        if kind == LogicalExpression.kind:
            operator = LogicalOperator(data["operator"])
            right = data.get("right")
            if right is None and operator is not LogicalOperator.NOT:
                raise SerializationError(
                    "Binary logical expression without a right operand",
                    context={"operator": operator.value},
                )
            return LogicalExpression(
                expression_from_dict(data["left"], registry),
                operator,
                expression_from_dict(right, registry) if right is not None else None,
            )
        if kind == PatternExpression.kind:
            return PatternExpression(ChartPattern(data["pattern"]))
        if kind == ComparisonExpression.kind:
            return ComparisonExpression(
                left=registry.from_dict(data["left"]),
                right=registry.from_dict(data["right"]),
                condition=Condition(data["condition"]),
                left_bars_ago=int(data["left_bars_ago"]),
                right_bars_ago=int(data["right_bars_ago"]),
                use_price_to_compare=str(data["use_price_to_compare"]) == "True",
                compare_percent=parse_decimal(str(data["compare_percent"])),
                min_compare=parse_decimal(str(data["min_compare"])),
                max_compare=parse_decimal(str(data["max_compare"])),
            )
    except (KeyError, TypeError, ValueError, IndicatorInstantiationError) as e:
        raise SerializationError("Malformed expression document", cause=e) from e
    raise SerializationError("Unknown expression type", context={"type": kind})
