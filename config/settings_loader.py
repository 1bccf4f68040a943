"""
YAML settings location for the Universal Optimizer.
Resolves base.yaml, honouring the UNIVERSAL_CONFIG_PATH override.
"""
from __future__ import annotations

import os
from pathlib import Path


def get_config_path() -> Path:
    """Return path to base.yaml config file."""
    env_path = os.getenv("UNIVERSAL_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path(__file__).parent / "base.yaml"
