"""
Universal Optimizer - generational genetic-programming search
==============================================================

Evolves whole trading-rule genomes (``Candidate``) against a backtester.

Each generation of size G is split into four slot ranges:

- stable:    floor(0.25 G) best unique results of the previous generation
- mutate:    up to floor(0.25 G) single-group mutations
- crossover: up to floor(0.25 G) children of a population member and a
             stable donor with the same long/short entry presence
- random:    the rest, fresh random candidates

Behavioural duplicates are collapsed between generations; structural
duplicates (same canonical print) are never admitted into one generation
unless the retry budget runs out.

Usage:
    from evolution.optimizer import UniversalOptimizer

    with CandidateBacktester(df, keep_best_results=10) as backtester:
        optimizer = UniversalOptimizer(settings.optimizer, backtester, seed=42)
        results = optimizer.run()
        optimizer.export_results("output/universal_results.yaml")
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from backtest.performance import PerformanceRecord
from config.settings_schema import OptimizerSettings, Settings
from core.structured_log import jlog
from evolution.candidate import Candidate
from evolution.dedup import UniqueGenomes, get_unique_results
from evolution.genome_space import GenomeSpace
from indicators.registry import IndicatorRegistry

logger = logging.getLogger(__name__)

SLOT_FRACTION = 0.25


def slot_counts(generation_size: int) -> Tuple[int, int, int]:
    """(stable, mutate, crossover) slot counts; random fills the rest."""
    quarter = int(generation_size * SLOT_FRACTION)
    stable = quarter
    mutate = max(0, min(generation_size - stable, quarter))
    cross = max(0, min(generation_size - stable - mutate, quarter))
    return stable, mutate, cross


class UniversalOptimizer:
    """
    Generational search over candidate genomes.

    The backtester collaborator provides ``submit(candidate)``,
    ``wait_for_outstanding()``, ``reset(keep_count)`` and ``results``
    (records best first). ``CandidateBacktester`` is the bundled one.
    """

    def __init__(
        self,
        settings: OptimizerSettings,
        backtester,
        registry: Optional[IndicatorRegistry] = None,
        seed: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            settings: Optimizer section of the settings
            backtester: Backtest collaborator
            registry: Indicator catalog (default: built-in catalog)
            seed: Seed for the shared generator, overrides ``settings.seed``
            rng: Explicit generator, overrides both seeds
        """
        self.settings = settings
        self.backtester = backtester
        self.space = GenomeSpace.from_settings(settings, registry)
        self.generations = settings.generations
        self.generation_size = settings.generation_size
        self.keep_best_results = settings.keep_best_results
        self.rng = rng or random.Random(seed if seed is not None else settings.seed)

        self.stable_count, self.mutate_count, self.cross_count = slot_counts(self.generation_size)

        self.population: List[Candidate] = []
        self.results: List[PerformanceRecord] = []
        self.progress = 0
        self.submitted = 0
        self.skipped = 0
        self._generation = -1
        self._history: List[Dict[str, Any]] = []

        logger.info(
            f"UniversalOptimizer initialized: generations={self.generations}, "
            f"generation_size={self.generation_size}, stable={self.stable_count}, "
            f"mutate={self.mutate_count}, crossover={self.cross_count}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backtester,
        seed: Optional[int] = None,
    ) -> "UniversalOptimizer":
        return cls(
            settings.optimizer,
            backtester,
            registry=IndicatorRegistry.from_settings(settings),
            seed=seed,
        )

    def validate(self) -> None:
        """Raise ConfigurationError when the settings leave nothing to search."""
        self.space.validate()

    # =========================================================================
    # Search loop
    # =========================================================================

    def run(self) -> List[PerformanceRecord]:
        """
        Run all generations.

        Returns:
            Deduplicated results of the last generation, best first

        Raises:
            ConfigurationError: Before any submission when nothing can be searched
            ConsistencyViolation: When a genetic operator yields an invalid genome
        """
        self.validate()
        jlog(
            "universal_optimizer_start",
            generations=self.generations,
            generation_size=self.generation_size,
            keep_best_results=self.keep_best_results,
        )

        reset_all = True
        for generation in range(self.generations):
            self._generation = generation
            if generation == 0:
                self.population = [
                    Candidate.new_random(self.space, self.rng) for _ in range(self.generation_size)
                ]
            else:
                reset_all = self._breed_generation()

            self._submit_generation(generation, reset_all)
            self.backtester.wait_for_outstanding()
            self._record_generation(generation, reset_all)

        self.results = get_unique_results(self.backtester.results)
        jlog(
            "universal_optimizer_finish",
            generations=self.generations,
            submitted=self.submitted,
            skipped=self.skipped,
            unique_results=len(self.results),
            best=self.results[0].performance_value if self.results else None,
        )
        return self.results

    def _breed_generation(self) -> bool:
        """Build the next population in place; returns ``reset_all``."""
        results = self.backtester.results
        unique_results = get_unique_results(results)
        reset_all = len(unique_results) < len(results)

        population: List[Candidate] = [
            record.candidate for record in unique_results[: self.stable_count]
        ]
        kept_ids = {candidate.id for candidate in population}
        population.extend(c for c in self.population if c.id not in kept_ids)

        topped_up = UniqueGenomes()
        for candidate in population:
            topped_up.add(candidate)
        while len(population) < self.generation_size:
            candidate = self._random_unique(topped_up)
            topped_up.add(candidate)
            population.append(candidate)
        population = population[: self.generation_size]

        self.backtester.reset(0 if reset_all else min(self.keep_best_results, self.stable_count))

        unique = UniqueGenomes()
        mutate_end = self.stable_count + self.mutate_count
        cross_end = mutate_end + self.cross_count
        for k in range(len(population)):
            if k < self.stable_count:
                individual = population[k].copy() if reset_all else population[k]
            elif k < mutate_end:
                individual = self._mutant(population[k], unique)
            elif k < cross_end:
                individual = self._crossover_child(population, k, unique)
            else:
                individual = self._random_unique(unique)
            unique.add(individual)
            population[k] = individual

        self.population = population
        return reset_all

    def _random_unique(self, unique: UniqueGenomes) -> Candidate:
        """Random candidate not yet in ``unique`` (bounded retries)."""
        for _ in range(self.space.max_probe_attempts):
            candidate = Candidate.new_random(self.space, self.rng)
            if candidate not in unique:
                return candidate
        logger.warning("Random replenishment kept colliding, accepting a duplicate genome")
        return Candidate.new_random(self.space, self.rng)

    def _mutant(self, parent: Candidate, unique: UniqueGenomes) -> Candidate:
        for _ in range(self.space.max_probe_attempts):
            child = parent.mutate(self.rng)
            if child not in unique:
                return child
        logger.debug(f"Mutation of candidate {parent.id} kept colliding, injecting random")
        return self._random_unique(unique)

    def _crossover_child(
        self,
        population: List[Candidate],
        k: int,
        unique: UniqueGenomes,
    ) -> Candidate:
        parent = population[k]
        m = 0
        while True:
            fitter = population[self.rng.randrange(self.stable_count)]
            if parent.entries_compatible(fitter):
                for _ in range(self.generation_size + 1):
                    child = parent.crossover(fitter, self.rng)
                    if child not in unique:
                        return child
                return self._random_unique(unique)
            if m >= self.stable_count:
                return self._random_unique(unique)
            m += 1

    def _submit_generation(self, generation: int, reset_all: bool) -> None:
        skip_below = min(self.keep_best_results, self.stable_count)
        for k, candidate in enumerate(self.population):
            if not reset_all and generation > 0 and k < skip_below:
                self.skipped += 1
            else:
                self.backtester.submit(candidate)
                self.submitted += 1
            self.progress += 1

    def _record_generation(self, generation: int, reset_all: bool) -> None:
        results = self.backtester.results
        best = results[0].performance_value if results else None
        summary = {
            "generation": generation,
            "reset_all": reset_all,
            "population": len(self.population),
            "results": len(results),
            "best": best,
        }
        self._history.append(summary)
        logger.info(
            f"Gen {generation}: population={len(self.population)}, "
            f"results={len(results)}, best={best}, reset_all={reset_all}"
        )
        jlog("universal_generation", **summary)

    # =========================================================================
    # Reporting
    # =========================================================================

    def export_results(
        self,
        output_path: str = "output/universal_results.yaml",
        top_n: Optional[int] = None,
    ) -> None:
        """Export the final result set (genome documents and metrics) to YAML."""
        records = self.results if top_n is None else self.results[:top_n]
        entries = []
        for rank, record in enumerate(records, start=1):
            entry = record.to_dict()
            entry["rank"] = rank
            entry["genome"] = record.candidate.to_string()
            entry["candidate"] = record.candidate.to_dict()
            entries.append(entry)

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"universal_results": entries}, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Exported {len(entries)} candidates to {output_path}")

    def get_evolution_stats(self) -> Dict[str, Any]:
        """Get statistics about the search run."""
        if self._generation < 0:
            return {"status": "not_run"}

        return {
            "generations_run": self._generation + 1,
            "generation_size": self.generation_size,
            "submitted": self.submitted,
            "skipped": self.skipped,
            "progress": self.progress,
            "unique_results": len(self.results),
            "best_performance": self.results[0].performance_value if self.results else None,
            "history": list(self._history),
        }
