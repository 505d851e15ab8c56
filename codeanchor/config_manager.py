"""Configuration manager for the code graph using TOML files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)

# Keys accepted in the [graph] section
GRAPH_KEYS = {
    "context_depth",
    "import_depth",
    "max_file_bytes",
    "parse_timeout",
    "workers",
    "debounce_seconds",
    "ignore",
}


def _config_file(config_file: Optional[Path]) -> Path:
    if config_file is not None:
        return config_file
    from .config import CONFIG_FILE

    return CONFIG_FILE


def load_full_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    path = _config_file(config_file)
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}


def _save_full_config(config: Dict[str, Any], config_file: Optional[Path] = None) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    path = _config_file(config_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config file %s: %s", path, exc)
        return False


def load_graph_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load graph build settings from the ``[graph]`` section.

    Unknown keys are dropped with a warning so a typo never silently
    changes behaviour.

    Returns:
        Dict of recognised settings, or an empty dict.
    """
    section = load_full_config(config_file).get("graph", {})
    if not isinstance(section, dict):
        logger.warning("[graph] section of config is not a table; ignoring it")
        return {}
    unknown = sorted(set(section) - GRAPH_KEYS)
    if unknown:
        logger.warning("Unknown [graph] config keys ignored: %s", ", ".join(unknown))
    return {key: value for key, value in section.items() if key in GRAPH_KEYS}


def save_graph_config(values: Dict[str, Any], config_file: Optional[Path] = None) -> bool:
    """Save graph build settings to config TOML.

    Preserves other sections in the file.

    Args:
        values: Settings to merge into ``[graph]``.

    Returns:
        True if saved successfully, False otherwise.
    """
    unknown = sorted(set(values) - GRAPH_KEYS)
    if unknown:
        raise ValueError(f"Unknown graph config keys: {', '.join(unknown)}")
    config = load_full_config(config_file)
    section = dict(config.get("graph", {}))
    section.update(values)
    config["graph"] = section
    return _save_full_config(config, config_file)
