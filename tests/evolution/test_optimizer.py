"""
Tests for evolution/optimizer.py - generational search loop.
"""
import random

import pytest
import yaml

from config.settings_schema import OptimizerSettings, Settings
from core.exceptions import ConfigurationError
from evolution.candidate import Candidate
from evolution.dedup import UniqueGenomes
from evolution.optimizer import UniversalOptimizer, slot_counts
from tests.fixtures.backtesters import ScriptedBacktester


def make_settings(**overrides):
    values = {"generations": 3, "generation_size": 8, "keep_best_results": 10, "seed": 42}
    values.update(overrides)
    return OptimizerSettings(**values)


class TestSlotCounts:
    """Tests for the slot layout of a generation."""

    @pytest.mark.parametrize("size,expected", [
        (1, (0, 0, 0)),
        (3, (0, 0, 0)),
        (4, (1, 1, 1)),
        (8, (2, 2, 2)),
        (10, (2, 2, 2)),
        (40, (10, 10, 10)),
    ])
    def test_counts(self, size, expected):
        assert slot_counts(size) == expected

    def test_random_slots_fill_the_rest(self):
        for size in range(1, 60):
            stable, mutate, cross = slot_counts(size)
            assert stable + mutate + cross <= size
            assert size - stable - mutate - cross >= size // 4


class TestConfiguration:
    """Tests for fatal configuration errors."""

    @pytest.mark.parametrize("overrides", [
        {"entries": {"use_candlestick_patterns": False, "use_indicators": False}},
        {"exits": {"use_candlestick_patterns": False, "use_indicators": False,
                   "use_parabolic_stop": False, "use_stop_targets": False}},
        {"optimize_entries": False, "optimize_exits": False},
        {"trade_long": False, "trade_short": False},
    ])
    def test_rejected_before_any_submission(self, overrides):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(**overrides), backtester)
        with pytest.raises(ConfigurationError):
            optimizer.run()
        assert backtester.submissions == []
        assert optimizer.get_evolution_stats() == {"status": "not_run"}

    def test_from_settings_uses_catalog(self):
        settings = Settings(optimizer={"generations": 1, "generation_size": 4}, indicators={"SMA": None})
        optimizer = UniversalOptimizer.from_settings(settings, ScriptedBacktester(), seed=1)
        assert optimizer.space.registry.type_ids == ["SMA"]
        assert optimizer.generation_size == 4


class TestSearchLoop:
    """Tests for generation bookkeeping with a scripted backtester."""

    def test_progress_and_skips(self):
        """Stable slots are not resubmitted while results stay unique."""
        backtester = ScriptedBacktester(keep_best_results=10)
        optimizer = UniversalOptimizer(make_settings(), backtester)
        optimizer.run()

        assert optimizer.submitted == 20
        assert optimizer.skipped == 4
        assert optimizer.progress == 24
        assert backtester.resets == [2, 2]
        assert backtester.barriers == 3

    def test_stable_members_survive_in_results(self):
        backtester = ScriptedBacktester(keep_best_results=10)
        optimizer = UniversalOptimizer(make_settings(), backtester)
        results = optimizer.run()

        result_ids = {r.candidate.id for r in results}
        assert {c.id for c in optimizer.population[:2]} <= result_ids
        assert len(results) == 8

    def test_stable_slots_hold_previous_best(self):
        backtester = ScriptedBacktester(keep_best_results=10)
        optimizer = UniversalOptimizer(make_settings(generations=2), backtester)
        optimizer.run()

        best_of_first = [r.candidate for r in backtester.snapshots[0][:2]]
        assert [c.id for c in optimizer.population[:2]] == [c.id for c in best_of_first]
        assert optimizer.population[0] is best_of_first[0]

    def test_generation_has_no_structural_duplicates(self):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(generation_size=12), backtester)
        optimizer.run()

        unique = UniqueGenomes()
        for candidate in optimizer.population:
            unique.add(candidate)
        assert len(unique) == len(optimizer.population)

    def test_population_always_consistent(self):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(generations=4, generation_size=12), backtester)
        optimizer.run()
        assert all(c.is_consistent for c in backtester.submissions)
        assert len(optimizer.population) == 12

    def test_reset_all_when_duplicates_found(self):
        """Equal outcomes collapse, so every slot is resubmitted from scratch."""
        backtester = ScriptedBacktester(score=lambda candidate, sequence: 1.0)
        optimizer = UniversalOptimizer(make_settings(), backtester)
        results = optimizer.run()

        assert optimizer.submitted == 24
        assert optimizer.skipped == 0
        assert backtester.resets == [0, 0]
        assert len(results) == 1
        assert all(h["reset_all"] for h in optimizer.get_evolution_stats()["history"][1:])

    def test_reset_all_resubmits_copies(self):
        backtester = ScriptedBacktester(score=lambda candidate, sequence: 1.0)
        optimizer = UniversalOptimizer(make_settings(generations=2), backtester)
        optimizer.run()

        first_generation = backtester.submissions[:8]
        stable = backtester.submissions[8]
        assert stable.id in {c.id for c in first_generation}
        assert all(stable is not c for c in first_generation)

    def test_keep_best_results_bounds_skips(self):
        backtester = ScriptedBacktester(keep_best_results=1)
        optimizer = UniversalOptimizer(make_settings(keep_best_results=1), backtester)
        optimizer.run()
        assert optimizer.skipped == 2
        assert backtester.resets == [1, 1]

    def test_single_generation(self):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(generations=1), backtester)
        results = optimizer.run()
        assert optimizer.submitted == 8
        assert backtester.resets == []
        assert results[0].performance_value == 8.0

    def test_tiny_generation_has_only_random_slots(self):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(generation_size=3), backtester)
        optimizer.run()
        assert optimizer.submitted == 9
        assert optimizer.skipped == 0
        assert backtester.resets == [0, 0]


class TestDeterminism:
    """Tests for seeded reproducibility."""

    def _genomes(self, seed):
        backtester = ScriptedBacktester()
        optimizer = UniversalOptimizer(make_settings(seed=seed), backtester)
        optimizer.run()
        return [c.to_string() for c in backtester.submissions]

    def test_same_seed_same_run(self):
        assert self._genomes(5) == self._genomes(5)

    def test_different_seed_different_run(self):
        assert self._genomes(5) != self._genomes(6)

    def test_explicit_rng_wins(self):
        a = UniversalOptimizer(make_settings(seed=1), ScriptedBacktester(), rng=random.Random(3))
        b = UniversalOptimizer(make_settings(seed=2), ScriptedBacktester(), seed=9, rng=random.Random(3))
        assert a.rng.random() == b.rng.random()


class TestReporting:
    """Tests for stats and result export."""

    def test_stats_after_run(self):
        optimizer = UniversalOptimizer(make_settings(), ScriptedBacktester())
        optimizer.run()
        stats = optimizer.get_evolution_stats()

        assert stats["generations_run"] == 3
        assert stats["submitted"] == 20
        assert stats["best_performance"] == 20.0
        assert [h["generation"] for h in stats["history"]] == [0, 1, 2]

    def test_export_results(self, tmp_path):
        optimizer = UniversalOptimizer(make_settings(), ScriptedBacktester())
        optimizer.run()
        path = tmp_path / "out" / "results.yaml"
        optimizer.export_results(str(path), top_n=3)

        data = yaml.safe_load(path.read_text())
        entries = data["universal_results"]
        assert [e["rank"] for e in entries] == [1, 2, 3]
        assert entries[0]["performance_value"] == 20.0
        assert entries[0]["candidate"]["type"] == "Universal"
        assert entries[0]["genome"].startswith("EL=")

    def test_exported_candidates_reload(self, tmp_path):
        optimizer = UniversalOptimizer(make_settings(), ScriptedBacktester())
        optimizer.run()
        path = tmp_path / "results.yaml"
        optimizer.export_results(str(path))

        entry = yaml.safe_load(path.read_text())["universal_results"][0]
        rebuilt = Candidate.from_dict(entry["candidate"], optimizer.space)
        assert rebuilt.to_string() == entry["genome"]
