"""Tests for incremental rebuilds and per-file failure containment."""

import threading
import time

import pytest

from codeanchor.errors import NoSupportedFiles, RootUnreadable
from codeanchor.lang_python import PythonAdapter
from codeanchor.models import BuildOptions, PARSE_FAILED, PARSE_PARTIAL, REFERENCES
from codeanchor.parser import AdapterRegistry
from codeanchor.session import GraphSession
from codeanchor.updater import REASON_TIMEOUT, REASON_TOO_LARGE, REASON_UNSUPPORTED, build_version


def _targets(version, src, kind=REFERENCES):
    return {e.dst for e in version.out_edges.get(src, ()) if e.kind == kind}


def _graph_state(version):
    return (
        sorted(version.files),
        sorted(version.symbols),
        sorted(version.stubs),
        sorted(version.edges),
    )


class TestRebuild:
    def test_first_build_report(self, write_files, session):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\nfoo()\n",
            "notes.txt": "not source\n",
        })
        report = session.build()
        assert report.version == 1
        assert report.files_processed == 2
        assert report.files_reparsed == 2
        assert report.files_unchanged == 0
        assert report.files_failed == 0
        assert report.failures == []
        assert report.symbol_count == 1
        assert report.edge_count == len(session.snapshot().edges)

    def test_rebuild_without_changes_keeps_version(self, write_files, session):
        write_files({"a.py": "def foo():\n    pass\n"})
        session.build()
        first = session.snapshot()

        report = session.build()
        assert session.snapshot() is first
        assert report.version == 1
        assert report.files_reparsed == 0
        assert report.files_unchanged == 1

    def test_incremental_equals_full_build(self, write_files, session, project_root, build_options):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\n\ndef run():\n    return foo()\n",
            "c.py": "from b import run\nrun()\n",
        })
        session.build()
        write_files({"a.py": "def foo():\n    pass\n\ndef bar():\n    return foo()\n"})
        session.build()
        incremental = session.snapshot()

        fresh, _ = build_version(project_root, options=build_options)
        assert _graph_state(incremental) == _graph_state(fresh)

    def test_only_changed_files_are_reparsed(self, write_files, session):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\nfoo()\n",
            "c.py": "def unrelated():\n    pass\n",
        })
        session.build()
        write_files({"c.py": "def unrelated():\n    return 1\n"})
        report = session.build()
        assert report.version == 2
        assert report.files_reparsed == 1
        assert report.files_unchanged == 2
        assert report.files_reresolved == 1


class TestRename:
    """Renaming a definition re-resolves the files that referred to it."""

    def test_rename_moves_reference_to_stub_and_back(self, write_files, session):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\nfoo()\n",
        })
        session.build()
        assert session.stats().unresolved_references == 0

        write_files({"a.py": "def foo_renamed():\n    pass\n"})
        report = session.build()
        version = session.snapshot()
        assert report.files_reparsed == 1
        assert report.files_reresolved == 2
        assert "function:a.py::foo" not in version.symbols
        assert _targets(version, "file:b.py") == {"external:a::foo"}
        assert session.stats().unresolved_references == 1
        assert version.dangling_edges() == []

        write_files({"a.py": "def foo():\n    pass\n"})
        session.build()
        version = session.snapshot()
        assert _targets(version, "file:b.py") == {"function:a.py::foo"}
        assert "external:a::foo" not in version.stubs
        assert session.stats().unresolved_references == 0

    def test_new_definition_resolves_global_reference(self, write_files, session):
        write_files({"main.py": "def run():\n    return helper()\n"})
        session.build()
        assert _targets(session.snapshot(), "function:main.py::run") == {"external:helper"}

        write_files({"tools.py": "def helper():\n    return 1\n"})
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:main.py::run") == {"function:tools.py::helper"}
        assert "external:helper" not in version.stubs

    def test_aliased_reexport_chain_is_reresolved(self, write_files, session, project_root, build_options):
        write_files({
            "a.py": "def other():\n    pass\n",
            "b.py": "from a import foo as bar\n",
            "c.py": "from b import bar\nbar()\n",
            "d.py": "from c import bar as baz\nbaz()\n",
        })
        session.build()
        assert _targets(session.snapshot(), "file:c.py") == {"external:b::bar"}

        write_files({"a.py": "def other():\n    pass\n\ndef foo():\n    pass\n"})
        report = session.build()
        version = session.snapshot()
        assert report.files_reresolved == 4
        assert _targets(version, "file:c.py") == {"function:a.py::foo"}
        assert _targets(version, "file:d.py") == {"function:a.py::foo"}
        assert session.stats().unresolved_references == 0

        fresh, _ = build_version(project_root, options=build_options)
        assert _graph_state(version) == _graph_state(fresh)

        # And back again when the definition goes away
        write_files({"a.py": "def other():\n    pass\n"})
        session.build()
        fresh, _ = build_version(project_root, options=build_options)
        assert _graph_state(session.snapshot()) == _graph_state(fresh)

    def test_removed_file_drops_its_nodes(self, write_files, session, project_root):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\nfoo()\n",
        })
        session.build()
        (project_root / "a.py").unlink()
        report = session.build()
        version = session.snapshot()

        assert report.files_removed == 1
        assert "a.py" not in version.files
        assert not any(s.file_path == "a.py" for s in version.symbols.values())
        assert _targets(version, "file:b.py") == {"external:a::foo"}
        assert version.stubs["external:a"].kind == "module"
        assert version.dangling_edges() == []


class TestFailures:
    def test_partial_file_is_indexed(self, write_files, session):
        write_files({
            "good.py": "def ok():\n    return 1\n",
            "bad.py": "def before():\n    return 1\n\ndef broken(:\n    pass\n",
        })
        report = session.build()
        version = session.snapshot()
        assert report.files_partial == 1
        assert version.files["bad.py"].parse_status == PARSE_PARTIAL
        assert version.files["bad.py"].error_spans
        assert "function:bad.py::before" in version.symbols

        context = session.context("before")
        assert context.target_parse_status == PARSE_PARTIAL

    def test_oversized_file_is_failed_not_fatal(self, write_files, project_root):
        write_files({
            "small.py": "def ok():\n    return 1\n",
            "huge.py": "x = 1\n" * 200,
        })
        session = GraphSession(project_root, BuildOptions(workers=2, max_file_bytes=500))
        report = session.build()
        version = session.snapshot()

        assert version.files["huge.py"].parse_status == PARSE_FAILED
        assert version.files["huge.py"].symbol_ids == []
        assert [(f.path, f.reason) for f in report.failures] == [("huge.py", REASON_TOO_LARGE)]
        assert report.files_failed == 1
        assert "function:small.py::ok" in version.symbols

    def test_unavailable_language_is_reported(self, write_files, project_root):
        write_files({
            "app.py": "def ok():\n    return 1\n",
            "web/app.js": "export function f() {}\n",
        })
        session = GraphSession(project_root, BuildOptions(workers=2), registry=AdapterRegistry([
            PythonAdapter(), _UnavailableJavaScript(),
        ]))
        report = session.build()
        assert [(f.path, f.reason) for f in report.failures] == [("web/app.js", REASON_UNSUPPORTED)]
        assert "web/app.js" not in session.snapshot().files

    def test_parse_timeout_marks_file_failed(self, write_files, project_root):
        write_files({
            "fast.py": "def ok():\n    return 1\n",
            "slow.py": "# slow\ndef late():\n    return 2\n",
        })
        registry = AdapterRegistry([_SlowPythonAdapter(delay=1.5)])
        session = GraphSession(project_root, BuildOptions(workers=2, parse_timeout=0.2), registry=registry)
        started = time.monotonic()
        report = session.build()
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert [(f.path, f.reason) for f in report.failures] == [("slow.py", REASON_TIMEOUT)]
        assert session.snapshot().files["slow.py"].parse_status == PARSE_FAILED
        assert "function:fast.py::ok" in session.snapshot().symbols

    def test_no_supported_files(self, write_files, session):
        write_files({"README.md": "# nothing here\n"})
        with pytest.raises(NoSupportedFiles):
            session.build()
        assert session.state == "empty"

    def test_missing_root(self, temp_dir):
        with pytest.raises(RootUnreadable):
            GraphSession(temp_dir / "missing", BuildOptions(workers=1)).build()


class _UnavailableJavaScript(PythonAdapter):
    language = "javascript"
    extensions = (".js",)
    grammar_module = "codeanchor_missing_javascript_grammar"


class _SlowPythonAdapter(PythonAdapter):
    """Python adapter that stalls on files containing a marker comment."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.started = threading.Event()

    def parse(self, content: bytes):
        if b"# slow" in content:
            self.started.set()
            time.sleep(self.delay)
        return super().parse(content)
