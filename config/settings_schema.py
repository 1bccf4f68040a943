"""
Typed Settings Schema (Pydantic)
================================

Typed, validated configuration for the Universal Optimizer. Field ranges are
checked here; cross-field feasibility (is there anything left to search?) is
checked by the optimizer itself before any backtest is submitted.

Usage:
    from config.settings_schema import load_validated_settings

    settings = load_validated_settings()
    print(settings.optimizer.generation_size)

    # Or build settings in code (tests, notebooks)
    settings = Settings(optimizer={"generations": 3, "generation_size": 8})
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config.settings_loader import get_config_path
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# ============================================================================
# Schema Definitions
# ============================================================================

class EntrySettings(BaseModel):
    """Leaf kinds available to entry expressions."""
    use_candlestick_patterns: bool = True
    use_indicators: bool = True


class ExitSettings(BaseModel):
    """Exit mechanisms available to candidates."""
    use_candlestick_patterns: bool = True
    use_indicators: bool = True
    use_parabolic_stop: bool = True
    use_stop_targets: bool = True


class OptimizerSettings(BaseModel):
    """Generational search configuration."""
    generations: int = Field(default=10, ge=1, description="Number of generations")
    generation_size: int = Field(default=40, ge=1, description="Population size")
    keep_best_results: int = Field(
        default=10, ge=0,
        description="Cached results the backtester keeps between generations"
    )
    seed: Optional[int] = Field(default=None, description="Seed for the shared generator")
    optimize_entries: bool = True
    optimize_exits: bool = True
    optimize_session_close: bool = True
    trade_long: bool = True
    trade_short: bool = True
    entries: EntrySettings = Field(default_factory=EntrySettings)
    exits: ExitSettings = Field(default_factory=ExitSettings)


class BacktestSettings(BaseModel):
    """Bar host and backtester configuration."""
    bars_required_to_trade: int = Field(default=20, ge=0)
    tick_size: float = Field(default=0.01, gt=0)
    fitness_metric: Literal["net_profit", "profit_factor", "win_rate", "sharpe"] = "net_profit"
    max_workers: int = Field(default=4, ge=1)


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseModel):
    """Complete settings schema."""
    model_config = ConfigDict(extra="allow")

    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    # Empty means the full built-in catalog with its default ranges
    indicators: Dict[str, Optional[Tuple[float, float]]] = Field(default_factory=dict)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("indicators", mode="before")
    @classmethod
    def _check_ranges(
        cls, value: Optional[Dict[str, Union[None, List[float], Tuple[float, float]]]]
    ) -> Dict[str, Any]:
        if value is None:
            return {}
        for name, bounds in value.items():
            if bounds is None:
                continue
            if len(bounds) != 2:
                raise ValueError(f"compare range of {name} must be [min, max]")
            if float(bounds[0]) >= float(bounds[1]):
                raise ValueError(f"compare range of {name} must satisfy min < max")
        return value


# ============================================================================
# Loading
# ============================================================================

def _load_yaml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load raw YAML configuration."""
    if path is None:
        path = get_config_path()

    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_validated_settings(path: Optional[Path] = None) -> Settings:
    """
    Load and validate settings from base.yaml (or ``path``).

    Returns:
        Validated Settings object

    Raises:
        ConfigurationError: If any field is out of range
    """
    raw = _load_yaml_config(path)
    try:
        return Settings(**raw)
    except ValidationError as e:
        logger.error(f"Settings validation failed: {e}")
        raise ConfigurationError(
            "Invalid settings",
            context={"errors": len(e.errors())},
            cause=e,
        ) from e
