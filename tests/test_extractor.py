"""Tests for symbol extraction (definitions, references, imports)."""

import pytest

from codeanchor.extractor import SELF_QUALIFIER, SymbolExtractor, extract_file
from codeanchor.lang_go import GoAdapter
from codeanchor.lang_javascript import JavaScriptAdapter
from codeanchor.lang_python import PythonAdapter
from codeanchor.lang_rust import RustAdapter
from codeanchor.models import PARSE_OK, PARSE_PARTIAL, REF_CALL


def _extract(adapter, source: str):
    outcome, table = extract_file(adapter, source.encode("utf-8"))
    return outcome, table


def _python(source: str):
    return _extract(PythonAdapter(), source)[1]


def _defs(table):
    return {(d.kind, d.qualname) for d in table.definitions}


class TestPythonDefinitions:
    """Definitions, qualified names and scope chains."""

    def test_functions_classes_and_methods(self, sample_python_code: str):
        table = _python(sample_python_code)
        assert _defs(table) == {
            ("function", "hello"),
            ("class", "Calculator"),
            ("method", "Calculator.add"),
            ("method", "Calculator.multiply"),
        }

    def test_signature_and_docstring(self, sample_python_code: str):
        table = _python(sample_python_code)
        hello = next(d for d in table.definitions if d.name == "hello")
        assert hello.signature == "def hello(name: str) -> str"
        assert hello.docstring == "Say hello."
        assert hello.start_line == 3
        assert hello.scope == ()

    def test_method_scope_chain(self, sample_python_code: str):
        table = _python(sample_python_code)
        add = next(d for d in table.definitions if d.name == "add")
        assert add.scope == ("class:Calculator",)

    def test_nested_classes(self):
        table = _python(
            "class Outer:\n"
            "    class Inner:\n"
            "        def method(self):\n"
            "            return 1\n"
        )
        method = next(d for d in table.definitions if d.name == "method")
        assert method.qualname == "Outer.Inner.method"
        assert method.scope == ("class:Outer.Inner", "class:Outer")

    def test_module_and_class_variables(self):
        table = _python(
            "TIMEOUT = 30\n"
            "\n"
            "class Settings:\n"
            "    debug = False\n"
            "\n"
            "    def load(self):\n"
            "        cached = {}\n"
            "        return cached\n"
        )
        defs = _defs(table)
        assert ("variable", "TIMEOUT") in defs
        assert ("variable", "Settings.debug") in defs
        # Function locals are bindings, not symbols
        assert not any(d.name == "cached" for d in table.definitions)

    def test_decorated_definition_spans_decorator(self):
        table = _python("import functools\n\n@functools.lru_cache()\ndef cached():\n    return 1\n")
        cached = next(d for d in table.definitions if d.name == "cached")
        assert cached.start_line == 3


class TestPythonReferences:
    """Which identifiers become references, and how they are qualified."""

    def test_self_calls_carry_owner(self, sample_python_code: str):
        table = _python(sample_python_code)
        calls = [r for r in table.references if r.kind == REF_CALL]
        assert [(r.name, r.qualifier, r.owner) for r in calls] == [
            ("add", SELF_QUALIFIER, "Calculator"),
            ("add", SELF_QUALIFIER, "Calculator"),
        ]
        assert calls[0].scope == ("method:Calculator.multiply", "class:Calculator")

    def test_locals_builtins_and_modules_are_dropped(self):
        table = _python(
            "import os\n"
            "from helpers import compute\n"
            "\n"
            "def run(items):\n"
            "    total = 0\n"
            "    for item in items:\n"
            "        total += compute(item)\n"
            "    print(total)\n"
            "    return os.path.join('a', 'b')\n"
        )
        refs = [(r.name, r.qualifier) for r in table.references]
        assert refs == [("compute", None), ("join", "os.path")]

    def test_local_binding_shadows_module_function(self):
        table = _python(
            "def helper():\n"
            "    return 1\n"
            "\n"
            "def outer():\n"
            "    helper = make()\n"
            "    return helper()\n"
        )
        assert [r.name for r in table.references] == ["make"]

    def test_builtin_defined_in_file_is_kept(self):
        table = _python(
            "def len(x):\n"
            "    return 0\n"
            "\n"
            "def size(items):\n"
            "    return len(items)\n"
        )
        assert [(r.name, r.scope) for r in table.references] == [("len", ("function:size",))]

    def test_type_annotations_are_type_references(self):
        table = _python(
            "from models import User\n"
            "\n"
            "def greet(user: User) -> str:\n"
            "    return user.name\n"
        )
        refs = [(r.name, r.kind, r.qualifier) for r in table.references]
        assert refs == [("User", "type", None), ("name", "use", "user")]


class TestPythonImports:
    def test_import_forms(self):
        table = _python(
            "import os.path\n"
            "import numpy as np\n"
            "from pkg.mod import a, b as c\n"
            "from . import sibling\n"
            "from .base import *\n"
        )
        imports = table.imports
        assert [(i.specifier, i.module_alias) for i in imports[:2]] == [("os.path", "os.path"), ("numpy", "np")]
        assert imports[2].specifier == "pkg.mod"
        assert [(n.name, n.binding) for n in imports[2].names] == [("a", "a"), ("b", "c")]
        assert imports[3].specifier == "."
        assert [n.name for n in imports[3].names] == ["sibling"]
        assert imports[4].specifier == ".base"
        assert imports[4].wildcard is True
        assert imports[4].names == ()


class TestDeterminism:
    def test_same_bytes_same_table(self, sample_python_code: str):
        first = _python(sample_python_code)
        second = SymbolExtractor(PythonAdapter()).extract(
            PythonAdapter().parse(sample_python_code.encode("utf-8")).tree
        )
        assert first.canonical_json() == second.canonical_json()

    def test_partial_file_keeps_valid_definitions(self):
        outcome, table = _extract(
            PythonAdapter(),
            "def before():\n"
            "    return 1\n"
            "\n"
            "def broken(:\n"
            "    pass\n"
            "\n"
            "def after():\n"
            "    return 2\n",
        )
        assert outcome.status == PARSE_PARTIAL
        names = {d.name for d in table.definitions}
        assert "before" in names
        assert "after" in names


class TestOtherLanguages:
    def test_javascript(self):
        outcome, table = _extract(
            JavaScriptAdapter(),
            "import { foo } from './a';\n"
            "\n"
            "export class Widget {\n"
            "  render() {\n"
            "    return foo();\n"
            "  }\n"
            "}\n"
            "\n"
            "export const build = () => new Widget();\n",
        )
        assert outcome.status == PARSE_OK
        defs = _defs(table)
        assert ("class", "Widget") in defs
        assert ("method", "Widget.render") in defs
        assert ("function", "build") in defs
        assert [(i.specifier, [n.name for n in i.names]) for i in table.imports] == [("./a", ["foo"])]
        calls = {r.name for r in table.references if r.kind == REF_CALL}
        assert calls == {"foo", "Widget"}

    def test_go_methods_are_owned_by_receiver_type(self):
        outcome, table = _extract(
            GoAdapter(),
            "package server\n"
            "\n"
            "type Server struct{}\n"
            "\n"
            "func (s *Server) Start() {\n"
            "\ts.listen()\n"
            "}\n"
            "\n"
            "func (s *Server) listen() {}\n",
        )
        assert outcome.status == PARSE_OK
        defs = _defs(table)
        assert ("struct", "Server") in defs
        assert ("method", "Server.Start") in defs
        assert ("method", "Server.listen") in defs
        listen = next(r for r in table.references if r.name == "listen")
        assert listen.qualifier == SELF_QUALIFIER
        assert listen.owner == "Server"

    def test_rust_use_and_mod(self):
        outcome, table = _extract(
            RustAdapter(),
            "mod util;\n"
            "use crate::util::helper;\n"
            "\n"
            "fn main() {\n"
            "    helper();\n"
            "}\n",
        )
        assert outcome.status == PARSE_OK
        assert [(i.specifier, i.module_alias, [n.name for n in i.names]) for i in table.imports] == [
            ("self::util", "util", []),
            ("crate::util", None, ["helper"]),
        ]
        assert ("function", "main") in _defs(table)
        assert [(r.name, r.kind) for r in table.references] == [("helper", REF_CALL)]


@pytest.mark.parametrize("adapter_cls", [PythonAdapter, JavaScriptAdapter, GoAdapter, RustAdapter])
def test_empty_file(adapter_cls):
    outcome, table = _extract(adapter_cls(), "")
    assert outcome.status == PARSE_OK
    assert table.definitions == []
    assert table.references == []
    assert table.imports == []
