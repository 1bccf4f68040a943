"""
Evolution
=========

Genetic-programming search over whole trading-rule genomes.

- genome_space: what random generation, mutation and crossover may produce
- expressions: boolean expression trees (logical, comparison, pattern nodes)
- candidate: the full genome with entries, exits, risk parameters
- dedup: behavioural and structural duplicate detection
- optimizer: the generational search loop
"""
from __future__ import annotations

from .candidate import Candidate, GeneGroup
from .dedup import UniqueGenomes, get_unique_results
from .expressions import (
    ComparisonExpression,
    Expression,
    LogicalExpression,
    PatternExpression,
    expression_from_dict,
    random_expression,
)
from .genome_space import ExitShape, GenomeSpace
from .optimizer import UniversalOptimizer, slot_counts

__all__ = [
    'Candidate',
    'GeneGroup',
    'UniqueGenomes',
    'get_unique_results',
    'ComparisonExpression',
    'Expression',
    'LogicalExpression',
    'PatternExpression',
    'expression_from_dict',
    'random_expression',
    'ExitShape',
    'GenomeSpace',
    'UniversalOptimizer',
    'slot_counts',
]
