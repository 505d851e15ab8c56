"""Session handle: one project root, one atomically swapped current version.

Rebuilds run one at a time behind a lock and construct the next version off
to the side; publication is a single reference assignment. Queries read
whichever version is current when they start and are never blocked by a
rebuild in progress.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from .errors import BuildCancelled, GraphNotReady
from .graph import GraphVersion
from .models import (
    BuildOptions,
    BuildReport,
    ContextResult,
    DependencyClosure,
    FileTreeNode,
    GraphStats,
    SymbolSummary,
)
from .parser import AdapterRegistry, default_registry
from .query import INTENT_EXPLORE, QueryEngine
from .updater import UpdateController

if TYPE_CHECKING:
    from .storage import GraphStore

logger = logging.getLogger(__name__)

EMPTY = "empty"
BUILDING = "building"
PUBLISHED = "published"


class GraphSession:
    """Build, publish and query the code graph of one source tree."""

    def __init__(
        self,
        root: Path,
        options: Optional[BuildOptions] = None,
        registry: Optional[AdapterRegistry] = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.options = options or BuildOptions.from_config()
        self.registry = registry or default_registry()
        self._current: Optional[GraphVersion] = None
        self._state = EMPTY
        self._state_lock = threading.Lock()
        self._build_lock = threading.Lock()
        self._generation = 0
        self._pending = 0
        self.last_report: Optional[BuildReport] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        with self._state_lock:
            return self._state

    @property
    def version(self) -> int:
        current = self._current
        return current.version if current is not None else 0

    def build(self, supersedable: bool = False) -> BuildReport:
        """Rebuild incrementally from the current version and publish the result.

        Requests queue behind a running rebuild. With ``supersedable=True`` the
        rebuild is abandoned (:class:`BuildCancelled`) as soon as a newer
        request arrives; the previously published version stays current.
        """
        with self._state_lock:
            self._generation += 1
            generation = self._generation
            self._pending += 1
            self._state = BUILDING
        try:
            with self._build_lock:
                def superseded() -> bool:
                    return supersedable and self._generation != generation

                if superseded():
                    raise BuildCancelled("rebuild superseded before it started")
                controller = UpdateController(self.root, self.options, self.registry, cancelled=superseded)
                version, report = controller.update(self._current)
                if superseded():
                    raise BuildCancelled("rebuild superseded before publication")
                if version is not self._current:
                    self._current = version
                    logger.info("Published graph version %d for %s", version.version, self.root)
                self.last_report = report
                return report
        finally:
            with self._state_lock:
                self._pending -= 1
                if self._pending == 0:
                    self._state = PUBLISHED if self._current is not None else EMPTY

    def snapshot(self) -> GraphVersion:
        """The current published version; it never changes underneath the caller."""
        current = self._current
        if current is None:
            raise GraphNotReady()
        return current

    def query(self) -> QueryEngine:
        return QueryEngine(self.snapshot(), context_depth=self.options.context_depth)

    # ------------------------------------------------------------------
    # Query delegation
    # ------------------------------------------------------------------

    def search(self, text: str, kind: Optional[str] = None, file: Optional[str] = None,
               limit: Optional[int] = None, exact: bool = False,
               pattern: Optional[str] = None) -> List[SymbolSummary]:
        return self.query().search(text, kind=kind, file=file, limit=limit, exact=exact, pattern=pattern)

    def context(self, target: str, depth: Optional[int] = None, intent: str = INTENT_EXPLORE) -> ContextResult:
        return self.query().context(target, depth, intent=intent)

    def deps(self, target: str) -> DependencyClosure:
        return self.query().deps(target)

    def dependents(self, target: str) -> DependencyClosure:
        return self.query().dependents(target)

    def file_symbols(self, path: str) -> List[SymbolSummary]:
        return self.query().file_symbols(path)

    def stats(self) -> GraphStats:
        return self.query().stats()

    def overview(self, max_depth: Optional[int] = None) -> FileTreeNode:
        return self.query().overview(max_depth)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, store: "GraphStore") -> None:
        store.save_version(self.snapshot())

    @classmethod
    def load(
        cls,
        root: Path,
        store: "GraphStore",
        options: Optional[BuildOptions] = None,
        registry: Optional[AdapterRegistry] = None,
    ) -> "GraphSession":
        """Session seeded with the stored version, if the store holds a compatible one.

        The next :meth:`build` re-hashes files and only reparses those whose
        content changed since the version was saved.
        """
        session = cls(root, options, registry)
        version = store.load_version()
        if version is not None:
            session._current = version
            session._state = PUBLISHED
            logger.info("Loaded graph version %d for %s", version.version, session.root)
        return session
