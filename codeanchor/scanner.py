"""Input boundary: enumerate the readable source files under a project root."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern

from .config import SKIP_DIRS
from .errors import RootUnreadable
from .parser import AdapterRegistry, default_registry

logger = logging.getLogger(__name__)

IGNORE_FILE = ".gitignore"


@dataclass
class ScannedFile:
    path: str
    abs_path: Path
    language: Optional[str]


def _read_ignore_file(path: Path) -> List[str]:
    if not path.is_file():
        return []
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return []


def scoped_patterns(lines: Iterable[str], prefix: str) -> List[str]:
    """Rewrite the patterns of ``{prefix}.gitignore`` relative to the root.

    Patterns with a slash before their last character are anchored to the
    directory holding the ignore file; the others match at any depth below it.
    """
    scoped: List[str] = []
    for line in lines:
        text = line.rstrip()
        if not text or text.startswith("#"):
            continue
        if not prefix:
            scoped.append(text)
            continue
        negate = text.startswith("!")
        body = text[1:] if negate else text
        anchored = "/" in body.rstrip("/")
        body = body.lstrip("/")
        if not body:
            continue
        pattern = f"{prefix}{body}" if anchored else f"{prefix}**/{body}"
        scoped.append(f"!{pattern}" if negate else pattern)
    return scoped


def load_ignore_spec(root: Path, patterns: Iterable[str] = ()) -> Optional[PathSpec]:
    """Combine the root ``.gitignore`` with caller-supplied patterns."""
    lines = _read_ignore_file(root / IGNORE_FILE)
    lines.extend(patterns)
    return _compile(lines)


def _compile(lines: List[str]) -> Optional[PathSpec]:
    if not any(line.strip() for line in lines):
        return None
    return PathSpec.from_lines(GitWildMatchPattern, lines)


def scan(
    root: Path,
    ignore_patterns: Iterable[str] = (),
    registry: Optional[AdapterRegistry] = None,
) -> List[ScannedFile]:
    """Files under *root* that survive the ignore rules, sorted by path.

    ``.gitignore`` files are honoured at every level: rules of a nested file
    apply below its directory and take precedence over those of its parents.
    Each file is tagged with its detected language, or ``None`` when no
    adapter claims its extension.
    """
    root = Path(root)
    if not root.is_dir():
        raise RootUnreadable(root, "not a directory")
    try:
        os.listdir(root)
    except OSError as exc:
        raise RootUnreadable(root, exc.strerror or str(exc)) from exc

    registry = registry or default_registry()
    lines = _read_ignore_file(root / IGNORE_FILE) + list(ignore_patterns)
    spec = _compile(lines)
    found: List[ScannedFile] = []

    def _on_error(exc: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)

    for current, dirs, filenames in os.walk(root, onerror=_on_error):
        current_path = Path(current)
        rel_dir = current_path.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        if prefix and IGNORE_FILE in filenames:
            nested = scoped_patterns(_read_ignore_file(current_path / IGNORE_FILE), prefix)
            if nested:
                lines.extend(nested)
                spec = _compile(lines)
                logger.debug("Loaded %d ignore rules from %s%s", len(nested), prefix, IGNORE_FILE)

        # Prune directories before descending further
        kept = []
        for directory in sorted(dirs):
            if directory in SKIP_DIRS or directory.startswith(".") or directory.endswith(".egg-info"):
                continue
            if spec is not None and spec.match_file(f"{prefix}{directory}/"):
                continue
            kept.append(directory)
        dirs[:] = kept

        for filename in filenames:
            if filename.startswith("."):
                continue
            rel = f"{prefix}{filename}"
            if spec is not None and spec.match_file(rel):
                continue
            abs_path = current_path / filename
            if not abs_path.is_file():
                continue
            found.append(ScannedFile(
                path=rel,
                abs_path=abs_path,
                language=registry.detect_language(rel),
            ))

    found.sort(key=lambda f: f.path)
    logger.debug("Scanned %d files under %s", len(found), root)
    return found
