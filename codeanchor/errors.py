"""Error taxonomy for graph building and querying.

Only project-wide failures (:class:`RootUnreadable`,
:class:`NoSupportedFiles`) abort a build. Per-file conditions are raised at
the adapter boundary and contained by the pipeline, which records them on the
file and in the :class:`~codeanchor.models.BuildReport`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class AnchorError(Exception):
    """Base class for all code graph errors."""


# -- per-file, contained by the pipeline --------------------------------

class UnsupportedLanguage(AnchorError):
    """No adapter can parse the file; it is skipped."""

    def __init__(self, path: str, language: str | None = None) -> None:
        self.path = path
        self.language = language
        detail = f" ({language})" if language else ""
        super().__init__(f"unsupported language{detail}: {path}")


class ParseError(AnchorError):
    """The adapter could not produce any tree for the file."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


# -- fatal build errors ---------------------------------------------------

class RootUnreadable(AnchorError):
    """The project root cannot be enumerated."""

    def __init__(self, root: Path, reason: str) -> None:
        self.root = root
        super().__init__(f"cannot read project root {root}: {reason}")


class NoSupportedFiles(AnchorError):
    """Nothing under the root can be indexed."""

    def __init__(self, root: Path) -> None:
        self.root = root
        super().__init__(f"no supported source files under {root}")


class BuildCancelled(AnchorError):
    """A rebuild was abandoned because a newer request superseded it."""


# -- query errors -----------------------------------------------------------

class GraphNotReady(AnchorError):
    """No graph version has been published yet."""

    def __init__(self) -> None:
        super().__init__("no graph has been built yet; call build() first")


class NotFound(AnchorError):
    """Query target does not exist in the graph."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"'{target}' not found in the graph")


class AmbiguousTarget(AnchorError):
    """Query name matches more than one symbol; the caller must pick an id."""

    def __init__(self, target: str, candidates: Sequence[str]) -> None:
        self.target = target
        self.candidates = list(candidates)
        super().__init__(
            f"'{target}' matches {len(self.candidates)} symbols: "
            + ", ".join(self.candidates)
        )


class InvalidPattern(AnchorError):
    """A name pattern given to search does not compile."""

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid name pattern '{pattern}': {reason}")
