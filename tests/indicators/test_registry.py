"""
Tests for indicators/registry.py - operator catalogs and indicator registry.
"""
import random

import pytest

from config.settings_schema import Settings
from core.exceptions import ConfigurationError, IndicatorInstantiationError
from indicators.base import Indicator
from indicators.library import SMA
from indicators.registry import (
    LOGICAL_OPERATORS,
    RANDOM_CONDITIONS,
    Condition,
    IndicatorRegistry,
    LogicalOperator,
)


class _NoOutputs(Indicator):
    type_id = "NoOutputs"
    output_names = ()

    def compute(self, bars):
        return []


class _TwoInputs(Indicator):
    type_id = "TwoInputs"
    input_series_count = 2

    def compute(self, bars):
        return [bars["close"]]


class TestOperatorCatalogs:
    """Tests for condition and logical operator catalogs."""

    def test_random_conditions_exclude_not_equal(self):
        assert Condition.NOT_EQUAL not in RANDOM_CONDITIONS
        assert len(RANDOM_CONDITIONS) == len(Condition) - 1

    def test_cross_flags(self):
        assert Condition.CROSS_ABOVE.is_cross
        assert Condition.CROSS_BELOW.is_cross
        assert not Condition.GREATER.is_cross

    def test_logical_operators(self):
        assert set(LOGICAL_OPERATORS) == {LogicalOperator.AND, LogicalOperator.NOT, LogicalOperator.OR}


class TestRegistryCatalog:
    """Tests for building the per-run catalog."""

    def test_default_catalog_is_full_library(self):
        registry = IndicatorRegistry()
        assert len(registry) == 24
        assert "RSI" in registry
        assert registry.compare_range("RSI") == (0.0, 100.0)
        assert registry.compare_range("SMA") is None
        assert registry.is_overlay("SMA")

    def test_subset_catalog(self):
        registry = IndicatorRegistry(catalog={"RSI": (10, 90), "SMA": None})
        assert registry.type_ids == ["RSI", "SMA"]
        assert registry.compare_range("RSI") == (10.0, 90.0)

    def test_unknown_type_in_catalog(self):
        with pytest.raises(ConfigurationError):
            IndicatorRegistry(catalog={"Ichimoku": None})

    def test_from_settings(self):
        settings = Settings(indicators={"CCI": [-200, 200], "EMA": None})
        registry = IndicatorRegistry.from_settings(settings)
        assert registry.type_ids == ["CCI", "EMA"]
        assert registry.compare_range("CCI") == (-200.0, 200.0)

    def test_register_adds_type(self):
        registry = IndicatorRegistry(catalog={"SMA": None})
        registry.register(_TwoInputs)
        assert "TwoInputs" in registry
        assert len(registry) == 2


class TestCreateInstance:
    """Tests for instantiation rules."""

    def test_creates_with_params(self):
        registry = IndicatorRegistry()
        rsi = registry.create_instance("RSI", Period=10)
        assert rsi.type_id == "RSI"
        assert rsi.get_property("Period") == 10

    def test_unknown_type(self):
        with pytest.raises(IndicatorInstantiationError):
            IndicatorRegistry().create_instance("Nope")

    def test_bad_param(self):
        with pytest.raises(IndicatorInstantiationError):
            IndicatorRegistry().create_instance("SMA", Length=3)

    def test_rejects_zero_outputs(self):
        registry = IndicatorRegistry(catalog={"SMA": None})
        registry.register(_NoOutputs)
        with pytest.raises(IndicatorInstantiationError):
            registry.create_instance("NoOutputs")

    def test_rejects_multi_input(self):
        registry = IndicatorRegistry(catalog={"SMA": None})
        registry.register(_TwoInputs)
        with pytest.raises(IndicatorInstantiationError):
            registry.create_instance("TwoInputs")


class TestRandomIndicator:
    """Tests for random draws."""

    def test_deterministic_for_seed(self):
        registry = IndicatorRegistry()
        first = [registry.random_indicator(random.Random(5)).type_id for _ in range(3)]
        second = [registry.random_indicator(random.Random(5)).type_id for _ in range(3)]
        assert first == second

    def test_overlay_filter(self):
        registry = IndicatorRegistry()
        rng = random.Random(1)
        for _ in range(30):
            assert registry.random_indicator(rng, is_overlay=True).is_overlay
            assert not registry.random_indicator(rng, is_overlay=False).is_overlay

    def test_failing_types_are_skipped(self):
        """Should log the failure and draw another type."""
        registry = IndicatorRegistry(catalog={"SMA": None})
        registry.register(_NoOutputs)
        rng = random.Random(3)
        for _ in range(20):
            assert registry.random_indicator(rng).type_id == "SMA"

    def test_no_candidates(self):
        registry = IndicatorRegistry(catalog={"SMA": None})
        with pytest.raises(IndicatorInstantiationError):
            registry.random_indicator(random.Random(0), is_overlay=False)

    def test_gives_up_after_bounded_attempts(self):
        registry = IndicatorRegistry(catalog={"SMA": None}, max_attempts=5)
        registry.register(_NoOutputs)
        with pytest.raises(IndicatorInstantiationError):
            registry.random_indicator(random.Random(0), is_overlay=False)


class TestFromDict:
    """Tests for rebuilding persisted indicators."""

    def test_round_trip_keeps_selection(self):
        registry = IndicatorRegistry()
        macd = registry.create_instance("MACD", Fast=8)
        macd.selected_series = 2
        rebuilt = registry.from_dict(macd.to_dict())
        assert rebuilt.selected_series == 2
        assert rebuilt.get_property("Fast") == 8
        assert rebuilt.display_name() == macd.display_name()

    def test_selection_clamped_to_outputs(self):
        data = SMA().to_dict()
        data["selected_series"] = "4"
        assert IndicatorRegistry().from_dict(data).selected_series == 0
