"""Tests for watch mode (debounced change handling and rebuilds)."""

import threading
from pathlib import Path

from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from codeanchor.watcher import CodeChangeHandler, GraphWatcher


def _handler(root: Path, calls: list, debounce: float = 0.05) -> CodeChangeHandler:
    return CodeChangeHandler(root, {".py", ".ts"}, calls.append, debounce_seconds=debounce)


def test_relevant_paths(temp_dir: Path):
    handler = _handler(temp_dir, [])
    assert handler.relevant(str(temp_dir / "pkg" / "app.py"))
    assert handler.relevant(str(temp_dir / "web" / "Main.TS"))
    assert not handler.relevant(str(temp_dir / "notes.md"))
    assert not handler.relevant(str(temp_dir / ".git" / "hook.py"))
    assert not handler.relevant(str(temp_dir / "node_modules" / "x.ts"))
    assert not handler.relevant(str(temp_dir / ".app.py.swp.py"))


def test_bursts_are_debounced(temp_dir: Path):
    calls: list = []
    done = threading.Event()
    handler = CodeChangeHandler(
        temp_dir, {".py"}, lambda files: (calls.append(files), done.set()), debounce_seconds=0.1,
    )
    handler.on_any_event(FileModifiedEvent(str(temp_dir / "a.py")))
    handler.on_any_event(FileModifiedEvent(str(temp_dir / "b.py")))
    handler.on_any_event(FileModifiedEvent(str(temp_dir / "readme.md")))
    handler.on_any_event(DirModifiedEvent(str(temp_dir / "pkg")))

    assert done.wait(timeout=5)
    assert calls == [{str(temp_dir / "a.py"), str(temp_dir / "b.py")}]


def test_moves_report_destination(temp_dir: Path):
    calls: list = []
    handler = _handler(temp_dir, calls, debounce=60)
    handler.on_any_event(FileMovedEvent(str(temp_dir / "old.txt"), str(temp_dir / "new.py")))
    handler.flush()
    assert calls == [{str(temp_dir / "new.py")}]


def test_cancel_drops_pending(temp_dir: Path):
    calls: list = []
    handler = _handler(temp_dir, calls, debounce=60)
    handler.on_any_event(FileModifiedEvent(str(temp_dir / "a.py")))
    handler.cancel()
    handler.flush()
    assert calls == []


def test_watcher_rebuilds_session(write_files, session):
    write_files({"a.py": "def foo():\n    pass\n"})
    reports = []
    watcher = GraphWatcher(session, debounce_seconds=0.05, on_rebuild=reports.append)

    report = watcher.rebuild()
    assert report is not None
    assert report.version == 1
    assert watcher.rebuild_count == 1
    assert reports == [report]

    write_files({"a.py": "def bar():\n    pass\n"})
    watcher.rebuild()
    assert session.version == 2
    assert [r.name for r in session.search("bar")] == ["bar"]


def test_watcher_rebuild_failure_is_contained(session):
    watcher = GraphWatcher(session, debounce_seconds=0.05)
    # Empty project: nothing indexable
    assert watcher.rebuild() is None
    assert watcher.rebuild_count == 0


def test_watcher_start_stop(write_files, session):
    write_files({"a.py": "def foo():\n    pass\n"})
    session.build()
    with GraphWatcher(session, debounce_seconds=0.05) as watcher:
        assert watcher._observer is not None
    assert watcher._observer is None
