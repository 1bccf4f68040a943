"""
Tests for evolution/expressions.py - expression tree nodes.
"""
import math
import random

import pytest

from backtest.strategy_host import StrategyHost
from core.exceptions import SerializationError
from evolution.candidate import Candidate
from evolution.expressions import (
    ComparisonExpression,
    LogicalExpression,
    PatternExpression,
    INT_PROPERTY_CAP,
    expression_from_dict,
    random_comparison,
    random_expression,
)
from evolution.genome_space import GenomeSpace
from indicators.library import RSI, SMA, Bollinger
from indicators.registry import Condition, IndicatorRegistry, LogicalOperator
from patterns.candlestick import ChartPattern
from tests.fixtures.market_data import flat_bars, make_bars


def _owner(space, **kwargs):
    return Candidate(space, **kwargs)


def _closes_host(closes, bar=None):
    host = StrategyHost(make_bars(closes, closes, closes, closes))
    host.current_bar = len(closes) - 1 if bar is None else bar
    return host


class TestComparisonEvaluation:
    """Tests for comparison leaf evaluation."""

    def test_threshold_comparison_uses_range_midpoint(self, host, space):
        """Non-overlay Greater at 50% is true exactly when above the midpoint."""
        expr = ComparisonExpression(
            left=RSI(), right=RSI(), condition=Condition.GREATER,
            compare_percent=0.5, min_compare=0.0, max_compare=100.0,
        )
        owner = _owner(space, enter_long=expr)
        expr.initialize(owner, host)

        assert expr.compare_value == 50.0
        assert expr.evaluate(owner, host) == (expr.left[0] > 50.0)

    def test_range_learned_from_series(self, host, space):
        expr = ComparisonExpression(left=RSI(), right=RSI(), compare_percent=0.25)
        owner = _owner(space, enter_long=expr)
        expr.initialize(owner, host)

        values = expr.left.series_values()
        assert expr.min_compare == pytest.approx(values.min())
        assert expr.max_compare == pytest.approx(values.max())
        assert expr.compare_value == pytest.approx(values.min() + (values.max() - values.min()) * 0.25)

    def test_known_range_not_relearned(self, host, space):
        expr = ComparisonExpression(
            left=RSI(), right=RSI(), min_compare=10.0, max_compare=20.0,
        )
        expr.initialize(_owner(space), host)
        assert (expr.min_compare, expr.max_compare) == (10.0, 20.0)

    def test_overlay_against_close(self, space):
        host = _closes_host([10, 11, 12, 13])
        owner = _owner(space)
        equal = ComparisonExpression(
            left=SMA(Period=1), right=SMA(), condition=Condition.EQUALS, use_price_to_compare=True,
        )
        greater = ComparisonExpression(
            left=SMA(Period=1), right=SMA(), condition=Condition.GREATER, use_price_to_compare=True,
        )
        for expr in (equal, greater):
            expr.initialize(owner, host)
        assert equal.evaluate(owner, host)
        assert not greater.evaluate(owner, host)

    def test_overlay_against_right_indicator(self, space):
        host = _closes_host([10, 11, 12, 13])
        owner = _owner(space)
        expr = ComparisonExpression(
            left=SMA(Period=1), right=SMA(Period=4), condition=Condition.GREATER,
        )
        expr.initialize(owner, host)
        assert expr.evaluate(owner, host)

    def test_nan_operand_is_false(self, space):
        host = _closes_host([10, 11, 12, 13])
        owner = _owner(space)
        expr = ComparisonExpression(
            left=SMA(Period=1), right=SMA(Period=1), condition=Condition.LESS_EQUAL, left_bars_ago=9,
        )
        expr.initialize(owner, host)
        assert math.isnan(expr.left[9])
        assert not expr.evaluate(owner, host)

    def test_unbound_comparison_is_false(self, host, space):
        expr = ComparisonExpression(left=SMA(), right=SMA(), condition=Condition.LESS_EQUAL)
        assert not expr.evaluate(_owner(space), host)


class TestCross:
    """Tests for CrossAbove / CrossBelow over a one-bar lookback."""

    CLOSES = [10, 10, 10, 9, 12]

    def _cross(self, condition):
        return ComparisonExpression(left=SMA(Period=1), right=SMA(Period=3), condition=condition)

    def test_cross_above_on_breakout_bar(self, space):
        host = _closes_host(self.CLOSES)
        expr = self._cross(Condition.CROSS_ABOVE)
        expr.initialize(_owner(space), host)
        assert expr.evaluate(_owner(space), host)

    def test_no_cross_above_before_breakout(self, space):
        host = _closes_host(self.CLOSES, bar=3)
        expr = self._cross(Condition.CROSS_ABOVE)
        expr.initialize(_owner(space), host)
        assert not expr.evaluate(_owner(space), host)

    def test_cross_below_not_reported_on_rise(self, space):
        host = _closes_host(self.CLOSES)
        expr = self._cross(Condition.CROSS_BELOW)
        expr.initialize(_owner(space), host)
        assert not expr.evaluate(_owner(space), host)

    def test_cross_below_on_drop_bar(self, space):
        host = _closes_host(self.CLOSES, bar=3)
        expr = self._cross(Condition.CROSS_BELOW)
        expr.initialize(_owner(space), host)
        assert expr.evaluate(_owner(space), host)


class TestLogicalEvaluation:
    """Tests for And / Or / Not over pattern terminals."""

    @pytest.fixture
    def flat_host(self):
        host = StrategyHost(flat_bars(10))
        host.current_bar = 6
        return host

    def _doji(self):
        return PatternExpression(ChartPattern.DOJI)

    def _hammer(self):
        return PatternExpression(ChartPattern.HAMMER)

    def test_and(self, flat_host, space):
        owner = _owner(space)
        assert LogicalExpression(self._doji(), LogicalOperator.AND, self._doji()).evaluate(owner, flat_host)
        assert not LogicalExpression(self._doji(), LogicalOperator.AND, self._hammer()).evaluate(owner, flat_host)

    def test_or(self, flat_host, space):
        owner = _owner(space)
        assert LogicalExpression(self._hammer(), LogicalOperator.OR, self._doji()).evaluate(owner, flat_host)
        assert not LogicalExpression(self._hammer(), LogicalOperator.OR, self._hammer()).evaluate(owner, flat_host)

    def test_not_ignores_right(self, flat_host, space):
        owner = _owner(space)
        assert not LogicalExpression(self._doji(), LogicalOperator.NOT, self._hammer()).evaluate(owner, flat_host)
        assert LogicalExpression(self._hammer(), LogicalOperator.NOT).evaluate(owner, flat_host)

    def test_pattern_uses_owner_trend_strength(self, flat_host, space):
        owner = _owner(space, trend_strength=8)
        assert not self._doji().evaluate(owner, flat_host)


class TestStructure:
    """Tests for copy, node listing and targeted mutation."""

    def _tree(self):
        return LogicalExpression(
            PatternExpression(ChartPattern.DOJI),
            LogicalOperator.AND,
            ComparisonExpression(left=SMA(Period=5), right=SMA(Period=20)),
        )

    def test_nodes_preorder(self):
        tree = self._tree()
        assert tree.nodes() == [tree, tree.left, tree.right]
        assert tree.node_count() == 3

    def test_copy_is_independent(self):
        tree = self._tree()
        tree.right.left.selected_series = 0
        clone = tree.copy()
        clone.right.left.set_property("Period", 30)

        assert clone.to_string() != tree.to_string()
        assert tree.right.left.get_property("Period") == 5
        assert all(a is not b for a, b in zip(tree.nodes(), clone.nodes()))

    def test_copy_keeps_selected_series(self):
        from indicators.library import Bollinger
        expr = ComparisonExpression(left=Bollinger(), right=SMA())
        expr.left.selected_series = 2
        assert expr.copy().left.selected_series == 2

    def test_mutate_changes_only_target_subtree(self, space, rng):
        tree = self._tree()
        owner = _owner(space, enter_long=tree)
        child = tree.mutate(owner, rng, tree.left, is_entry=True)

        assert child is not tree
        assert child.right.to_string() == tree.right.to_string()
        assert child.left.pattern is not ChartPattern.DOJI
        assert tree.left.pattern is ChartPattern.DOJI

    def test_mutate_untargeted_node_copies(self, space, rng):
        leaf = PatternExpression(ChartPattern.HAMMER)
        other = PatternExpression(ChartPattern.DOJI)
        child = leaf.mutate(_owner(space), rng, other)
        assert child is not leaf
        assert child.pattern is ChartPattern.HAMMER

    def test_comparison_mutation_keeps_overlay_pairing(self, space):
        rng = random.Random(3)
        owner = _owner(space)
        expr = random_comparison(space, rng)
        for _ in range(50):
            expr = expr.mutate(owner, rng, expr, is_entry=True)
            assert expr.left.is_overlay == expr.right.is_overlay
            assert 0.0 <= expr.compare_percent <= 1.0


class TestRandomExpression:
    """Tests for random subtree generation."""

    def test_random_comparison_pairs_scales(self, space):
        rng = random.Random(11)
        for _ in range(50):
            expr = random_comparison(space, rng)
            assert expr.left.is_overlay == expr.right.is_overlay
            assert expr.condition is not Condition.NOT_EQUAL

    def test_leaf_kinds_respect_context(self):
        space = GenomeSpace(entry_patterns=False, exit_indicators=False)
        rng = random.Random(5)
        for _ in range(30):
            entry = random_expression(space, rng, is_entry=True)
            exit_ = random_expression(space, rng, is_entry=False)
            assert not any(isinstance(n, PatternExpression) for n in entry.nodes())
            assert not any(isinstance(n, ComparisonExpression) for n in exit_.nodes())

    def test_no_leaf_kinds_raises(self, rng):
        space = GenomeSpace(entry_patterns=False, entry_indicators=False)
        with pytest.raises(ValueError):
            random_expression(space, rng, is_entry=True)

    def test_same_seed_same_tree(self, space):
        a = random_expression(space, random.Random(99), is_entry=True)
        b = random_expression(space, random.Random(99), is_entry=True)
        assert a.to_string() == b.to_string()


class TestPersistence:
    """Tests for expression documents."""

    def test_document_round_trip(self, space):
        rng = random.Random(21)
        for _ in range(20):
            tree = random_expression(space, rng, is_entry=False)
            rebuilt = expression_from_dict(tree.to_dict(), space.registry)
            assert rebuilt.to_string() == tree.to_string()

    def test_comparison_document_fields(self):
        expr = ComparisonExpression(left=RSI(Period=10), right=RSI(), condition=Condition.LESS)
        data = expr.to_dict()
        assert data["type"] == "IndicatorExpression"
        assert data["condition"] == "Less"
        assert data["min_compare"] == "NaN"
        assert data["use_price_to_compare"] == "False"
        assert data["left"]["properties"]["Period"] == "10"

    def test_not_node_without_right(self, space):
        tree = LogicalExpression(PatternExpression(ChartPattern.DOJI), LogicalOperator.NOT)
        rebuilt = expression_from_dict(tree.to_dict(), space.registry)
        assert rebuilt.right is None
        assert rebuilt.to_string() == "not (pattern(Doji))"

    @pytest.mark.parametrize("operator", ["And", "Or"])
    def test_binary_node_without_right_rejected(self, space, operator):
        data = LogicalExpression(
            PatternExpression(ChartPattern.DOJI), LogicalOperator.AND, PatternExpression(ChartPattern.HAMMER),
        ).to_dict()
        data["operator"] = operator
        data["right"] = None
        with pytest.raises(SerializationError):
            expression_from_dict(data, space.registry)

        del data["right"]
        with pytest.raises(SerializationError):
            expression_from_dict(data, space.registry)

    def test_unknown_type_rejected(self, space):
        with pytest.raises(SerializationError):
            expression_from_dict({"type": "Mystery"}, space.registry)

    def test_missing_field_rejected(self, space):
        with pytest.raises(SerializationError):
            expression_from_dict({"type": "CandleStickPatternExpression"}, space.registry)


class TestRendering:
    """Tests for canonical print and generated source."""

    def test_threshold_string(self):
        expr = ComparisonExpression(left=RSI(Period=10), right=RSI(), condition=Condition.GREATER)
        assert expr.to_string() == "RSI(10,3)[0]@0 > pct(0.5)"

    def test_overlay_string(self):
        expr = ComparisonExpression(
            left=SMA(Period=5), right=SMA(Period=20), condition=Condition.LESS, right_bars_ago=2,
        )
        assert expr.to_string() == "SMA(5)[0]@0 < SMA(20)[0]@2"

    def test_cross_string(self):
        expr = ComparisonExpression(
            left=SMA(Period=5), right=SMA(), condition=Condition.CROSS_ABOVE, use_price_to_compare=True,
        )
        assert expr.to_string() == "CrossAbove(SMA(5)[0], Close)"

    def test_source_mentions_pattern(self):
        assert "ChartPattern.MORNING_STAR" in PatternExpression(ChartPattern.MORNING_STAR).to_source()


class ScriptedRandom(random.Random):
    """Generator whose ``randrange`` replays a fixed script, then falls back to the seed."""

    def __init__(self, script, seed=0):
        super().__init__(seed)
        self._script = list(script)

    def randrange(self, *args, **kwargs):
        if self._script:
            return self._script.pop(0)
        return super().randrange(*args, **kwargs)


class TestComparisonMutationFacets:
    """Tests for individual comparison mutation facets with a scripted draw order."""

    @pytest.fixture
    def rsi_space(self):
        return GenomeSpace(registry=IndicatorRegistry(catalog={"RSI": (0, 100)}))

    def _threshold(self, **left_params):
        return ComparisonExpression(
            left=RSI(**left_params), right=RSI(Period=20), condition=Condition.GREATER,
            compare_percent=0.5, min_compare=0.0, max_compare=100.0,
        )

    def _mutate(self, expr, space, script):
        return expr.mutate(_owner(space), ScriptedRandom(script), expr, is_entry=True)

    def test_left_property_scaled_up(self, rsi_space):
        expr = self._threshold(Period=40)
        child = self._mutate(expr, rsi_space, [10, 0, 1])
        assert child.left.get_property("Period") == 50
        assert math.isnan(child.min_compare) and math.isnan(child.max_compare)

    def test_left_property_scaled_down(self, rsi_space):
        expr = self._threshold(Period=40)
        child = self._mutate(expr, rsi_space, [10, 0, 0])
        assert child.left.get_property("Period") == 30

    def test_integer_property_capped(self, rsi_space):
        expr = self._threshold(Period=240)
        child = self._mutate(expr, rsi_space, [10, 0, 1])
        assert child.left.get_property("Period") == INT_PROPERTY_CAP == 246

    def test_property_clamped_to_declared_minimum(self, rsi_space):
        expr = self._threshold(Period=1)
        child = self._mutate(expr, rsi_space, [10, 0, 0])
        assert child.left.get_property("Period") == 1

    def test_float_property_not_capped(self, space):
        expr = ComparisonExpression(left=Bollinger(NumStdDev=400.0), right=SMA())
        child = self._mutate(expr, space, [10, 0, 1])
        assert child.left.get_property("NumStdDev") == pytest.approx(500.0)

    def test_parent_unchanged(self, rsi_space):
        expr = self._threshold(Period=240)
        before = expr.to_string()
        self._mutate(expr, rsi_space, [10, 0, 1])
        assert expr.to_string() == before
        assert expr.left.get_property("Period") == 240
        assert (expr.min_compare, expr.max_compare) == (0.0, 100.0)

    def test_right_property_keeps_range(self, rsi_space):
        expr = self._threshold()
        child = self._mutate(expr, rsi_space, [20, 0, 1])
        assert child.right.get_property("Period") == 25
        assert child.left.get_property("Period") == 14
        assert (child.min_compare, child.max_compare) == (0.0, 100.0)

    def test_left_series_reselect_invalidates_range(self, rsi_space):
        expr = self._threshold()
        child = self._mutate(expr, rsi_space, [6, 1])
        assert child.left.selected_series == 1
        assert math.isnan(child.min_compare) and math.isnan(child.max_compare)

    def test_right_series_reselect_invalidates_range(self, rsi_space):
        expr = self._threshold()
        child = self._mutate(expr, rsi_space, [8, 1])
        assert child.right.selected_series == 1
        assert child.left.selected_series == 0
        assert math.isnan(child.max_compare)

    def test_compare_percent_scaled_down(self, rsi_space):
        expr = self._threshold()
        child = self._mutate(expr, rsi_space, [4, 0, 0, 1])
        assert child.compare_percent == pytest.approx(0.45)
        assert child.use_price_to_compare is False
        assert (child.min_compare, child.max_compare) == (0.0, 100.0)

    def test_compare_percent_scaled_up_and_clamped(self, rsi_space):
        expr = self._threshold()
        expr.compare_percent = 0.95
        child = self._mutate(expr, rsi_space, [4, 0, 1, 0])
        assert child.compare_percent == 1.0
        assert child.use_price_to_compare is True
        assert expr.compare_percent == 0.95
