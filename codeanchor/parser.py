"""Language adapters built on Tree-sitter.

Each supported language is one :class:`LanguageAdapter` subclass. The
adapter turns raw bytes into an error-tolerant concrete syntax tree and
carries every piece of language knowledge the extractor and resolver need:
which nodes define symbols, which nodes bind local names, how imports are
written and how an import specifier maps onto files in the project.

Adding a language means writing an adapter and registering it with
:func:`default_registry`; the extractor and resolver never change.
"""

from __future__ import annotations

import importlib
import logging
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import ParseError, UnsupportedLanguage
from .models import (
    PARSE_OK,
    PARSE_PARTIAL,
    SELF_NAMES,
    ErrorSpan,
    Import,
)

logger = logging.getLogger(__name__)

SIGNATURE_LIMIT = 240


# ===================================================================
# Results shared with the extractor / resolver
# ===================================================================

@dataclass
class ParseOutcome:
    tree: Any
    status: str
    error_spans: List[ErrorSpan] = field(default_factory=list)


@dataclass
class DefinitionSpec:
    """What an adapter reports for a node that introduces a symbol."""

    kind: str
    name_node: Any
    node: Any
    # Explicit name when the symbol has no name node of its own (impl blocks)
    name: Optional[str] = None
    opens_scope: bool = False
    local: bool = False
    owner: Optional[str] = None
    self_aliases: Tuple[str, ...] = ()
    signature: str = ""
    docstring: str = ""


@dataclass
class ModuleIndex:
    """Read-only view of the project files used to resolve import specifiers."""

    files: Set[str]
    dirs: Dict[str, List[str]]

    @classmethod
    def build(cls, paths: Iterable[str]) -> "ModuleIndex":
        files = set(paths)
        dirs: Dict[str, List[str]] = {}
        for path in sorted(files):
            dirs.setdefault(posixpath.dirname(path), []).append(path)
        return cls(files=files, dirs=dirs)


@dataclass
class ModuleMatch:
    files: List[str] = field(default_factory=list)
    ambiguous: bool = False

    def __bool__(self) -> bool:
        return bool(self.files)


def node_text(node: Any) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def span_key(node: Any) -> Tuple[int, int, str]:
    return (node.start_byte, node.end_byte, node.type)


def collect_error_spans(root: Any) -> List[ErrorSpan]:
    """Localize ERROR and MISSING nodes without descending into them."""
    spans: List[ErrorSpan] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_error or node.is_missing:
            spans.append(ErrorSpan(
                start_line=node.start_point[0] + 1,
                start_col=node.start_point[1],
                end_line=node.end_point[0] + 1,
                end_col=node.end_point[1],
            ))
            continue
        if node.has_error:
            stack.extend(reversed(node.children))
    spans.sort(key=lambda s: (s.start_line, s.start_col, s.end_line, s.end_col))
    return spans


def pattern_identifiers(node: Any, identifier_types: FrozenSet[str], skip_fields: Sequence[str] = ()) -> List[Any]:
    """Identifier nodes bound by a destructuring pattern."""
    found: List[Any] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in identifier_types:
            found.append(current)
            continue
        skipped = set()
        for name in skip_fields:
            child = current.child_by_field_name(name)
            if child is not None:
                skipped.add(span_key(child))
        for child in reversed(current.named_children):
            if span_key(child) not in skipped:
                stack.append(child)
    return found


# ===================================================================
# Abstract Adapter Interface
# ===================================================================

class LanguageAdapter(ABC):
    """Abstract base class for all language adapters."""

    language: str = ""
    # Languages of one family resolve names against each other (JS and TS)
    family: str = ""
    extensions: Tuple[str, ...] = ()

    # -- node vocabulary consulted by the extractor ----------------------
    import_types: FrozenSet[str] = frozenset()
    anonymous_scope_types: FrozenSet[str] = frozenset()
    call_types: FrozenSet[str] = frozenset()
    member_types: FrozenSet[str] = frozenset()
    identifier_types: FrozenSet[str] = frozenset({"identifier"})
    type_identifier_types: FrozenSet[str] = frozenset({"type_identifier"})
    opaque_types: FrozenSet[str] = frozenset({"comment"})
    comment_types: FrozenSet[str] = frozenset({"comment"})
    # Siblings allowed between a doc comment and its item (Rust attributes)
    doc_skip_types: FrozenSet[str] = frozenset()
    builtins: FrozenSet[str] = frozenset()
    self_names: FrozenSet[str] = SELF_NAMES

    # -- resolution behaviour -------------------------------------------
    # Files in the same directory share one namespace (Go packages)
    package_scope: bool = False
    # Qualifiers may be module paths (Rust ``crate::a::b``)
    path_qualifiers: bool = False
    suffix_fallback: bool = True

    @property
    def available(self) -> bool:
        return True

    @property
    def name_family(self) -> str:
        return self.family or self.language

    @abstractmethod
    def parse(self, content: bytes) -> ParseOutcome:
        """Produce a (possibly partial) syntax tree for *content*."""
        ...

    # ------------------------------------------------------------------
    # Extraction hooks
    # ------------------------------------------------------------------

    def definitions(self, node: Any, local: bool) -> List[DefinitionSpec]:
        """Symbols introduced by *node*; *local* is True inside a function body."""
        return []

    def binding_targets(self, node: Any, local: bool) -> List[Any]:
        """Identifier nodes that *node* binds as local names."""
        return []

    def parse_import(self, node: Any) -> List[Import]:
        return []

    def call_function(self, node: Any) -> Optional[Any]:
        return node.child_by_field_name("function")

    def member_parts(self, node: Any) -> Optional[Tuple[Any, Any]]:
        """``(receiver, member)`` children of a member-access node."""
        return None

    def is_reference(self, node: Any) -> bool:
        return True

    def is_type_context(self, node: Any) -> bool:
        return False

    def signature(self, node: Any, body_field: str = "body") -> str:
        body = node.child_by_field_name(body_field)
        text = node.text or b""
        if body is not None:
            text = text[: body.start_byte - node.start_byte]
        else:
            text = text.split(b"\n", 1)[0]
        sig = " ".join(text.decode("utf-8", errors="replace").split()).rstrip("{:").strip()
        return sig[:SIGNATURE_LIMIT]

    def docstring(self, node: Any) -> str:
        """Contiguous comment block directly above *node*."""
        lines: List[str] = []
        expected_row = node.start_point[0]
        sibling = node.prev_sibling
        while sibling is not None and sibling.type in self.comment_types | self.doc_skip_types:
            if sibling.end_point[0] + 1 < expected_row:
                break
            if sibling.type in self.comment_types:
                lines.append(_strip_comment(node_text(sibling)))
            expected_row = sibling.start_point[0]
            sibling = sibling.prev_sibling
        return "\n".join(reversed(lines)).strip()

    # ------------------------------------------------------------------
    # Resolution hooks
    # ------------------------------------------------------------------

    def module_candidates(self, specifier: str, importer: str) -> List[str]:
        """Root-relative paths an import specifier may refer to, best first."""
        return []

    def match_module(self, specifier: str, importer: str, modules: ModuleIndex) -> ModuleMatch:
        candidates = self.module_candidates(specifier, importer)
        for candidate in candidates:
            if candidate in modules.files:
                return ModuleMatch(files=[candidate])
        if not self.suffix_fallback or self.is_relative(specifier):
            return ModuleMatch()
        # Package roots below the project root (src/ layouts)
        hits: List[str] = []
        for candidate in candidates:
            if candidate.startswith(("../", "/")):
                continue
            suffix = "/" + candidate
            hits.extend(path for path in sorted(modules.files) if path.endswith(suffix))
            if hits:
                break
        unique = sorted(set(hits))
        return ModuleMatch(files=unique, ambiguous=len(unique) > 1)

    def is_relative(self, specifier: str) -> bool:
        return False

    def submodule_specifier(self, specifier: str, name: str) -> Optional[str]:
        """Specifier for ``name`` when it is itself a module of *specifier*."""
        return None

    def module_keys(self, path: str) -> List[str]:
        """Names under which other files may import *path*."""
        pure = PurePosixPath(path)
        keys = [pure.stem]
        if pure.parent.name:
            keys.append(pure.parent.name)
        return keys


def _strip_comment(text: str) -> str:
    text = text.strip()
    for marker in ("///", "//!", "//", "#"):
        if text.startswith(marker):
            return text[len(marker):].strip()
    if text.startswith("/*"):
        body = text[2:-2] if text.endswith("*/") else text[2:]
        lines = [line.strip().lstrip("*").strip() for line in body.splitlines()]
        return "\n".join(line for line in lines if line)
    return text


# ===================================================================
# Tree-sitter Adapter
# ===================================================================

class TreeSitterAdapter(LanguageAdapter):
    """Error-tolerant adapter backed by a per-language grammar package.

    Grammars come from the ``tree-sitter-<language>`` wheels, each exposing a
    function that returns the Language capsule. A missing grammar package
    leaves the adapter registered but unavailable, and its files are reported
    as unsupported.
    """

    grammar_module: str = ""
    grammar_function: str = "language"

    def __init__(self) -> None:
        self._language: Any = None
        self._load_language()

    def _load_language(self) -> None:
        try:
            from tree_sitter import Language  # type: ignore[import-untyped]
        except ImportError:
            logger.warning(
                "tree-sitter is not installed -- %s files cannot be parsed. "
                "Install with: pip install tree-sitter",
                self.language,
            )
            return
        try:
            mod = importlib.import_module(self.grammar_module)
            # tree-sitter >=0.22 per-language packages expose a function
            # that returns the Language capsule.
            self._language = Language(getattr(mod, self.grammar_function)())
            logger.debug("Loaded tree-sitter grammar for %s", self.language)
        except ImportError:
            logger.warning(
                "Grammar package '%s' not installed for language '%s'. "
                "Install with: pip install %s",
                self.grammar_module, self.language, self.grammar_module.replace("_", "-"),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Could not load tree-sitter grammar for %s: %s", self.language, exc)

    @property
    def available(self) -> bool:
        return self._language is not None

    def parse(self, content: bytes) -> ParseOutcome:
        if self._language is None:
            raise UnsupportedLanguage("<bytes>", self.language)
        from tree_sitter import Parser as TSParser  # type: ignore[import-untyped]

        # Parsers are not shared between worker threads
        parser = TSParser(self._language)
        tree = parser.parse(content)
        if tree is None or tree.root_node is None:
            raise ParseError("<bytes>", "no syntax tree produced")
        root = tree.root_node
        if root.has_error:
            return ParseOutcome(tree=tree, status=PARSE_PARTIAL, error_spans=collect_error_spans(root))
        return ParseOutcome(tree=tree, status=PARSE_OK)


# ===================================================================
# Registry
# ===================================================================

class AdapterRegistry:
    """Maps language tags and file extensions to adapter instances."""

    def __init__(self, adapters: Optional[Iterable[LanguageAdapter]] = None) -> None:
        self._by_language: Dict[str, LanguageAdapter] = {}
        self._by_extension: Dict[str, LanguageAdapter] = {}
        for adapter in adapters or ():
            self.register(adapter)

    def register(self, adapter: LanguageAdapter) -> None:
        self._by_language[adapter.language] = adapter
        for ext in adapter.extensions:
            self._by_extension[ext.lower()] = adapter

    def get(self, language: str) -> Optional[LanguageAdapter]:
        return self._by_language.get(language)

    def for_path(self, path: str) -> Optional[LanguageAdapter]:
        return self._by_extension.get(PurePosixPath(path).suffix.lower())

    def detect_language(self, path: str) -> Optional[str]:
        adapter = self.for_path(path)
        return adapter.language if adapter is not None else None

    def supports(self, language: Optional[str]) -> bool:
        adapter = self._by_language.get(language or "")
        return adapter is not None and adapter.available

    @property
    def languages(self) -> List[str]:
        return sorted(self._by_language)

    @property
    def extensions(self) -> List[str]:
        return sorted(self._by_extension)


_DEFAULT_REGISTRY: Optional[AdapterRegistry] = None


def default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter, created once per process."""
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        from .lang_go import GoAdapter
        from .lang_javascript import JavaScriptAdapter, TsxAdapter, TypeScriptAdapter
        from .lang_python import PythonAdapter
        from .lang_rust import RustAdapter

        _DEFAULT_REGISTRY = AdapterRegistry([
            PythonAdapter(),
            JavaScriptAdapter(),
            TypeScriptAdapter(),
            TsxAdapter(),
            GoAdapter(),
            RustAdapter(),
        ])
    return _DEFAULT_REGISTRY


def detect_language(path: str) -> Optional[str]:
    """Language tag for *path* by extension, or None when unrecognized."""
    return default_registry().detect_language(path)
