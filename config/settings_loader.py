"""
YAML settings loader for the ChefFlow kitchen bridge.
Provides cached access to base.yaml settings.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


_settings_cache: Optional[Dict[str, Any]] = None


def get_config_path() -> Path:
    """Return path to the settings file."""
    # Check environment variable first, then default to project config
    env_path = os.getenv("CHEFFLOW_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path(__file__).parent / "base.yaml"


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """Load and cache settings from the settings file."""
    global _settings_cache
    if _settings_cache is not None and not force_reload:
        return _settings_cache

    config_path = get_config_path()
    if not config_path.exists():
        _settings_cache = {}
        return _settings_cache

    with open(config_path, "r", encoding="utf-8") as f:
        _settings_cache = yaml.safe_load(f) or {}
    return _settings_cache


def clear_settings_cache() -> None:
    """Drop the cached settings (for tests and config reloads)."""
    global _settings_cache
    _settings_cache = None
