"""
Indicators
==========

Technical indicator collaborator for the expression language: the catalog
(``library``), the abstract ``Indicator`` handle (``base``) and the run-time
registry with comparison/logical operator catalogs (``registry``).
"""

from .base import Indicator, PropertySpec
from .registry import (
    Condition,
    IndicatorRegistry,
    LogicalOperator,
    RANDOM_CONDITIONS,
)

__all__ = [
    'Indicator',
    'PropertySpec',
    'Condition',
    'IndicatorRegistry',
    'LogicalOperator',
    'RANDOM_CONDITIONS',
]
