"""Watch mode: rebuild the graph when source files change."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import SKIP_DIRS
from .errors import AnchorError, BuildCancelled
from .models import BuildReport
from .session import GraphSession

logger = logging.getLogger(__name__)


class CodeChangeHandler(FileSystemEventHandler):
    """Collect changed source paths and fire a debounced callback."""

    def __init__(
        self,
        root: Path,
        extensions: Set[str],
        on_change: Callable[[Set[str]], None],
        debounce_seconds: float = 0.5,
    ) -> None:
        super().__init__()
        self.root = Path(root)
        self.extensions = {ext.lower() for ext in extensions}
        self.on_change = on_change
        self.debounce_seconds = debounce_seconds
        self._pending_files: Set[str] = set()
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def relevant(self, src_path: str) -> bool:
        file_path = Path(src_path)
        if file_path.suffix.lower() not in self.extensions:
            return False
        try:
            parts = file_path.relative_to(self.root).parts
        except ValueError:
            parts = file_path.parts
        # Skip hidden/temp files and skipped directories
        return not any(part.startswith(".") or part in SKIP_DIRS for part in parts)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        changed = {str(p) for p in paths if p and self.relevant(str(p))}
        if not changed:
            return
        with self._lock:
            self._pending_files.update(changed)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            files = set(self._pending_files)
            self._pending_files.clear()
            self._timer = None
        if files:
            self.on_change(files)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_files.clear()


class GraphWatcher:
    """Keep a session's graph current while files change under its root.

    Each debounced burst of changes starts a supersedable rebuild on its own
    thread; a newer burst abandons the in-flight rebuild in favour of itself.
    """

    def __init__(
        self,
        session: GraphSession,
        debounce_seconds: Optional[float] = None,
        on_rebuild: Optional[Callable[[BuildReport], None]] = None,
    ) -> None:
        if debounce_seconds is None:
            from . import config

            debounce_seconds = config.debounce_seconds()
        self.session = session
        self.on_rebuild = on_rebuild
        self.rebuild_count = 0
        self.handler = CodeChangeHandler(
            session.root,
            set(session.registry.extensions),
            self._rebuild_async,
            debounce_seconds=debounce_seconds,
        )
        self._observer: Optional[Observer] = None

    def _rebuild_async(self, files: Set[str]) -> None:
        logger.info("%d file(s) changed; rebuilding", len(files))
        thread = threading.Thread(target=self.rebuild, name="anchor-rebuild", daemon=True)
        thread.start()

    def rebuild(self) -> Optional[BuildReport]:
        try:
            report = self.session.build(supersedable=True)
        except BuildCancelled:
            logger.debug("Rebuild superseded by a newer change")
            return None
        except AnchorError as exc:
            logger.warning("Rebuild failed: %s", exc)
            return None
        self.rebuild_count += 1
        if self.on_rebuild is not None:
            self.on_rebuild(report)
        return report

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.session.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.session.root)

    def stop(self) -> None:
        self.handler.cancel()
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Stopped watching %s after %d rebuild(s)", self.session.root, self.rebuild_count)

    def __enter__(self) -> "GraphWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
