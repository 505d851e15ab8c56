"""Tests for source tree enumeration."""

from pathlib import Path

import pytest

from codeanchor.errors import RootUnreadable
from codeanchor.scanner import load_ignore_spec, scan, scoped_patterns


def _paths(root: Path, **kwargs):
    return [f.path for f in scan(root, **kwargs)]


def test_scan_tags_languages_and_sorts(write_files, project_root):
    write_files({
        "src/app.py": "",
        "src/web/index.ts": "",
        "main.go": "",
        "README.md": "",
    })
    found = scan(project_root)
    assert [(f.path, f.language) for f in found] == [
        ("README.md", None),
        ("main.go", "go"),
        ("src/app.py", "python"),
        ("src/web/index.ts", "typescript"),
    ]
    assert found[2].abs_path == project_root / "src" / "app.py"


def test_skip_dirs_and_hidden_entries(write_files, project_root):
    write_files({
        "app.py": "",
        "node_modules/lib/index.js": "",
        "__pycache__/app.cpython-311.py": "",
        ".venv/lib/site.py": "",
        ".hidden.py": "",
        "pkg.egg-info/info.py": "",
        "pkg/mod.py": "",
    })
    assert _paths(project_root) == ["app.py", "pkg/mod.py"]


def test_gitignore_and_extra_patterns(write_files, project_root):
    write_files({
        ".gitignore": "generated/\n*_pb2.py\n",
        "app.py": "",
        "generated/models.py": "",
        "api/service_pb2.py": "",
        "vendor/lib.py": "",
    })
    assert _paths(project_root) == ["app.py", "vendor/lib.py"]
    assert _paths(project_root, ignore_patterns=["vendor/"]) == ["app.py"]


def test_no_ignore_rules(project_root):
    assert load_ignore_spec(project_root) is None
    assert load_ignore_spec(project_root, ["", "  "]) is None
    assert load_ignore_spec(project_root, ["*.tmp"]).match_file("a.tmp")


def test_unreadable_root(temp_dir):
    with pytest.raises(RootUnreadable):
        scan(temp_dir / "missing")
    not_a_dir = temp_dir / "file.py"
    not_a_dir.write_text("x = 1\n")
    with pytest.raises(RootUnreadable):
        scan(not_a_dir)


def test_nested_gitignore_files(write_files, project_root):
    write_files({
        ".gitignore": "*.log\n",
        "top.gen.py": "",
        "pkg/.gitignore": "*.gen.py\n/local.py\ncache/\n",
        "pkg/a.gen.py": "",
        "pkg/local.py": "",
        "pkg/core.py": "",
        "pkg/cache/blob.py": "",
        "pkg/sub/.gitignore": "!keep.gen.py\n",
        "pkg/sub/b.gen.py": "",
        "pkg/sub/keep.gen.py": "",
        "pkg/sub/local.py": "",
        "pkg/sub/run.log": "",
    })
    assert _paths(project_root) == [
        "pkg/core.py",
        "pkg/sub/keep.gen.py",
        "pkg/sub/local.py",
        "top.gen.py",
    ]


def test_scoped_patterns():
    assert scoped_patterns(["# note", "", "*.tmp", "/out", "a/b", "!keep.tmp", "docs/"], "pkg/") == [
        "pkg/**/*.tmp",
        "pkg/out",
        "pkg/a/b",
        "!pkg/**/keep.tmp",
        "pkg/**/docs/",
    ]
    assert scoped_patterns(["*.tmp"], "") == ["*.tmp"]
