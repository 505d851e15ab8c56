"""Tests for cross-file name resolution."""

from codeanchor.models import DEPENDS_ON, IMPORTS, REFERENCES


def _targets(version, src, kind=REFERENCES):
    return {e.dst for e in version.out_edges.get(src, ()) if e.kind == kind}


def _edges(version, src, dst, kind=REFERENCES):
    return [e for e in version.out_edges.get(src, ()) if e.kind == kind and e.dst == dst]


class TestPythonResolution:
    def test_imported_function_call(self, write_files, session):
        """b.py importing and calling foo depends on a.py's foo, nothing unresolved."""
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\nfoo()\n",
        })
        session.build()
        version = session.snapshot()

        assert _targets(version, "file:b.py") == {"function:a.py::foo"}
        assert _targets(version, "file:b.py", IMPORTS) == {"file:a.py"}
        assert _targets(version, "file:b.py", DEPENDS_ON) == {"file:a.py"}
        subtypes = {e.subtype for e in _edges(version, "file:b.py", "function:a.py::foo")}
        assert subtypes == {"import", "call"}

        stats = session.stats()
        assert stats.unresolved_references == 0
        assert stats.unresolved_imports == 0
        assert stats.ambiguous_references == 0
        assert stats.resolved_references == 2

        deps = session.deps("b.py")
        assert "function:a.py::foo" in deps.resolved_ids
        assert deps.external_ids == []

    def test_missing_name_becomes_external_stub(self, write_files, session):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import bar\nbar()\n",
        })
        session.build()
        version = session.snapshot()

        stub = version.stubs["external:a::bar"]
        assert stub.name == "bar"
        assert stub.source == "a"
        assert _targets(version, "file:b.py") == {"external:a::bar"}
        # The import record is the one unresolved reference; the call shares it
        assert session.stats().unresolved_references == 1

    def test_unknown_module_counts_as_unresolved_import(self, write_files, session):
        write_files({"app.py": "import requests\n\ndef fetch():\n    return requests.get('x')\n"})
        session.build()
        version = session.snapshot()

        assert version.stubs["external:requests"].kind == "module"
        assert _targets(version, "file:app.py", IMPORTS) == {"external:requests"}
        assert _targets(version, "function:app.py::fetch") == {"external:requests::get"}
        stats = session.stats()
        assert stats.unresolved_imports == 1
        assert stats.unresolved_references == 1

    def test_same_name_from_two_modules_is_ambiguous(self, write_files, session):
        write_files({
            "a.py": "class Config:\n    pass\n",
            "b.py": "class Config:\n    pass\n",
            "c.py": "from a import Config\nfrom b import Config\n\ndef load():\n    return Config()\n",
        })
        session.build()
        version = session.snapshot()

        edges = [e for e in version.out_edges.get("function:c.py::load", ()) if e.kind == REFERENCES]
        assert {e.dst for e in edges} == {"class:a.py::Config", "class:b.py::Config"}
        assert all(e.ambiguous for e in edges)
        assert session.stats().ambiguous_references == 1

    def test_file_definition_wins_over_global(self, write_files, session):
        write_files({
            "a.py": "def helper():\n    return 1\n",
            "b.py": "def helper():\n    return 2\n\ndef run():\n    return helper()\n",
        })
        session.build()
        version = session.snapshot()

        edges = _edges(version, "function:b.py::run", "function:b.py::helper")
        assert len(edges) == 1
        assert edges[0].ambiguous is False
        assert "function:a.py::helper" not in _targets(version, "function:b.py::run")

    def test_nested_function(self, write_files, session):
        write_files({
            "x.py": "def outer():\n    def inner():\n        return 1\n    return inner()\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:x.py::outer") == {"function:x.py::outer.inner"}

    def test_self_method_call(self, write_files, session, sample_python_code):
        write_files({"calc.py": sample_python_code})
        session.build()
        version = session.snapshot()
        assert _targets(version, "method:calc.py::Calculator.multiply") == {"method:calc.py::Calculator.add"}

    def test_module_alias_qualified_call(self, write_files, session):
        write_files({
            "a.py": "def foo():\n    pass\n",
            "b.py": "import a\n\ndef run():\n    return a.foo()\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:b.py::run") == {"function:a.py::foo"}
        assert _targets(version, "file:b.py", IMPORTS) == {"file:a.py"}

    def test_reexport_through_package_init(self, write_files, session):
        write_files({
            "pkg/__init__.py": "from .core import Engine\n",
            "pkg/core.py": "class Engine:\n    def start(self):\n        pass\n",
            "main.py": "from pkg import Engine\n\ndef run():\n    return Engine().start()\n",
        })
        session.build()
        version = session.snapshot()
        targets = _targets(version, "function:main.py::run")
        assert "class:pkg/core.py::Engine" in targets
        assert _targets(version, "file:main.py", IMPORTS) == {"file:pkg/__init__.py"}

    def test_circular_imports_terminate(self, write_files, session):
        write_files({
            "a.py": "from b import g\n\ndef f():\n    return g()\n",
            "b.py": "from a import f\n\ndef g():\n    return f()\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:a.py::f") == {"function:b.py::g"}
        assert _targets(version, "function:b.py::g") == {"function:a.py::f"}
        assert version.dangling_edges() == []

    def test_sample_project(self, sample_session):
        version = sample_session.snapshot()
        main = _targets(version, "function:app.py::main")
        assert "class:settings.py::Config" in main
        assert "class:inventory/stock.py::Config" not in main
        assert "class:inventory/catalog.py::Catalog" in main
        assert "method:inventory/catalog.py::Catalog.add" in main
        assert "function:inventory/catalog.py::find_item" in main
        # Catalog reaches app.py through the package's re-export
        assert "class:inventory/catalog.py::Catalog" in _targets(version, "file:app.py")
        assert "file:inventory/__init__.py" in _targets(version, "file:app.py", IMPORTS)
        # Same-name class resolves to the file's own definition
        assert "class:inventory/stock.py::Config" in _targets(
            version, "method:inventory/stock.py::StockLevel.needs_reorder"
        )
        assert _targets(version, "function:web/render.ts::renderItem") == {
            "function:web/format.js::formatPrice",
            "function:web/format.js::formatSku",
        }
        assert "file:inventory/stock.py" in _targets(version, "file:inventory/catalog.py", DEPENDS_ON)
        assert "file:inventory/catalog.py" in _targets(version, "file:inventory/stock.py", DEPENDS_ON)
        assert version.stubs["external:os"].kind == "module"
        assert version.dangling_edges() == []


class TestOtherLanguageResolution:
    def test_javascript_relative_import(self, write_files, session):
        write_files({
            "src/a.js": "export function foo() { return 1; }\n",
            "src/b.js": "import { foo } from './a';\n\nexport function main() { return foo(); }\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:src/b.js::main") == {"function:src/a.js::foo"}
        assert _targets(version, "file:src/b.js", IMPORTS) == {"file:src/a.js"}

    def test_typescript_resolves_against_javascript(self, write_files, session):
        write_files({
            "lib/util.js": "export function slugify(s) { return s; }\n",
            "app.ts": "import { slugify } from './lib/util';\n\nexport function title(): string { return slugify('x'); }\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:app.ts::title") == {"function:lib/util.js::slugify"}

    def test_go_package_scope_and_selector(self, write_files, session):
        write_files({
            "util/helpers.go": "package util\n\nfunc Helper() int { return 1 }\n",
            "util/other.go": "package util\n\nfunc Use() int { return Helper() }\n",
            "main.go": 'package main\n\nimport "example.com/app/util"\n\nfunc main() { util.Helper() }\n',
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:util/other.go::Use") == {"function:util/helpers.go::Helper"}
        assert _targets(version, "function:main.go::main") == {"function:util/helpers.go::Helper"}

    def test_go_receiver_method(self, write_files, session):
        write_files({
            "server.go": (
                "package server\n\n"
                "type Server struct{}\n\n"
                "func (s *Server) Start() {\n\ts.listen()\n}\n\n"
                "func (s *Server) listen() {}\n"
            ),
        })
        session.build()
        version = session.snapshot()
        assert "method:server.go::Server.listen" in _targets(version, "method:server.go::Server.Start")

    def test_rust_crate_path(self, write_files, session):
        write_files({
            "src/main.rs": "mod util;\nuse crate::util::helper;\n\nfn main() {\n    helper();\n}\n",
            "src/util.rs": "pub fn helper() -> i32 {\n    1\n}\n",
        })
        session.build()
        version = session.snapshot()
        assert _targets(version, "function:src/main.rs::main") == {"function:src/util.rs::helper"}
        assert "file:src/util.rs" in _targets(version, "file:src/main.rs", IMPORTS)
        assert session.stats().unresolved_imports == 0
