"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
Methodology parameters, transaction codes and monitor thresholds are all
read through here, never hardcoded in the engine.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_transaction_config() -> Dict[str, Any]:
    """Returns the transactions block (purchase code, aliases, date formats)."""
    return load_config()["transactions"]


def get_methodology_configs() -> Dict[str, Dict[str, Any]]:
    """Returns every configured methodology, keyed by name."""
    return load_config()["methodologies"]


def get_methodology_config(name: str) -> Dict[str, Any]:
    """
    Returns the parameter block for a single methodology.

    Raises:
        KeyError: If the methodology is not in the config.
    """
    methodologies = get_methodology_configs()
    if name not in methodologies:
        raise KeyError(
            f"No methodology config for '{name}'. "
            f"Available: {list(methodologies.keys())}"
        )
    return methodologies[name]


def get_all_methodology_names() -> list[str]:
    """Returns all configured methodology names, in config order."""
    return list(get_methodology_configs().keys())


def get_monitoring_config() -> Dict[str, Any]:
    """Returns flag monitoring config."""
    return load_config()["monitoring"]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
