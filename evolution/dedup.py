"""
Duplicate detection for the generational search.

Two mechanisms:

1. ``get_unique_results``: behavioural duplicates. Records with the same
   observable outcome (approx-equal performance value and cumulative profit,
   equal win/loss counts) form a group; only the group member with the
   fewest nodes survives.
2. ``UniqueGenomes``: structural duplicates. A per-generation set of
   canonical-print fingerprints, so a generation never holds two candidates
   with the same genome.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Set

from backtest.performance import PerformanceRecord

if TYPE_CHECKING:
    from evolution.candidate import Candidate


def get_unique_results(results: List[PerformanceRecord]) -> List[PerformanceRecord]:
    """
    Keep one record per group of equivalent results.

    Input order is preserved (the backtester supplies it best first). Within
    a group the record of the candidate with the fewest nodes is kept; ties
    go to the earlier record. Records without a candidate are dropped.

    Args:
        results: Backtest records, best first

    Returns:
        Unique records in input order of their group representative
    """
    unique: List[PerformanceRecord] = []
    for record in results:
        if record.candidate is None:
            continue
        group = [
            other for other in results
            if other.candidate is not None and other.is_equivalent(record)
        ]
        group.sort(key=lambda r: r.candidate.node_count)
        keeper = group[0]
        if not any(keeper is kept for kept in unique):
            unique.append(keeper)
    return unique


class UniqueGenomes:
    """Fingerprint set of the genomes accepted into one generation."""

    def __init__(self):
        self._fingerprints: Set[str] = set()

    def __len__(self) -> int:
        return len(self._fingerprints)

    def __contains__(self, candidate: "Candidate") -> bool:
        return candidate.fingerprint() in self._fingerprints

    def add(self, candidate: "Candidate") -> None:
        self._fingerprints.add(candidate.fingerprint())
