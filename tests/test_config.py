"""Tests for TOML configuration handling."""

from pathlib import Path

import pytest

from codeanchor import config
from codeanchor.config_manager import load_full_config, load_graph_config, save_graph_config
from codeanchor.models import BuildOptions
from codeanchor.watcher import GraphWatcher


def test_missing_config_file_is_empty(temp_dir: Path):
    assert load_full_config(temp_dir / "nope.toml") == {}
    assert load_graph_config(temp_dir / "nope.toml") == {}


def test_save_and_load_graph_section(temp_dir: Path):
    path = temp_dir / "config.toml"
    path.write_text('[other]\nkeep = "me"\n', encoding="utf-8")

    assert save_graph_config({"context_depth": 3, "ignore": ["build/"]}, path) is True
    assert load_graph_config(path) == {"context_depth": 3, "ignore": ["build/"]}
    # Other sections survive
    assert load_full_config(path)["other"] == {"keep": "me"}


def test_unknown_keys(temp_dir: Path):
    path = temp_dir / "config.toml"
    with pytest.raises(ValueError):
        save_graph_config({"contxt_depth": 3}, path)

    path.write_text("[graph]\nworkers = 2\nbogus = true\n", encoding="utf-8")
    assert load_graph_config(path) == {"workers": 2}


def test_malformed_file_is_ignored(temp_dir: Path):
    path = temp_dir / "config.toml"
    path.write_text("[graph\nworkers = ", encoding="utf-8")
    assert load_graph_config(path) == {}


def test_build_options_from_config(temp_dir: Path):
    path = temp_dir / "config.toml"
    save_graph_config({"max_file_bytes": 2048, "parse_timeout": 1.5, "ignore": ["dist/"]}, path)
    options = BuildOptions.from_config(path)
    assert options.max_file_bytes == 2048
    assert options.parse_timeout == 1.5
    assert options.ignore_patterns == ["dist/"]
    assert options.context_depth == config.DEFAULT_CONTEXT_DEPTH
    assert options.workers == config.DEFAULT_WORKERS


def test_build_options_use_patched_config_file():
    # The autouse fixture points CONFIG_FILE at an empty temp location
    assert not config.CONFIG_FILE.exists()
    assert BuildOptions.from_config() == BuildOptions(workers=config.DEFAULT_WORKERS)


def test_debounce_is_read_at_use(session):
    assert config.debounce_seconds() == config.DEFAULT_DEBOUNCE_SECONDS

    save_graph_config({"debounce_seconds": 0.25})
    assert config.debounce_seconds() == 0.25
    watcher = GraphWatcher(session)
    assert watcher.handler.debounce_seconds == 0.25
    assert GraphWatcher(session, debounce_seconds=1.0).handler.debounce_seconds == 1.0
