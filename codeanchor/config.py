"""Configuration paths and defaults for the local code graph."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Set

from .config_manager import load_graph_config

BASE_DIR = Path(os.environ.get("ANCHOR_HOME", str(Path.home() / ".codeanchor"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
CONFIG_FILE = BASE_DIR / "config.toml"

SCHEMA_VERSION = 1

DEFAULT_CONTEXT_DEPTH = 2
DEFAULT_IMPORT_DEPTH = 3
DEFAULT_MAX_FILE_BYTES = 1024 * 1024
DEFAULT_PARSE_TIMEOUT = 10.0
DEFAULT_WORKERS = min(32, (os.cpu_count() or 1) + 4)
DEFAULT_DEBOUNCE_SECONDS = 0.5

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git",
    "site-packages", ".tox", ".pytest_cache", "build", "dist",
    ".mypy_cache", ".ruff_cache", "htmlcov", ".eggs",
    "egg-info", ".codeanchor", "target",
}


def debounce_seconds() -> float:
    """Watch-mode debounce from the ``[graph]`` section of ``config.toml``."""
    values = load_graph_config(CONFIG_FILE)
    return float(values.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS))


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
