"""Core data models shared by extraction, resolution, storage and queries."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Parse status of a source file
PARSE_OK = "ok"
PARSE_PARTIAL = "partial"
PARSE_FAILED = "failed"

# Edge kinds
DEFINES = "defines"
CONTAINS = "contains"
REFERENCES = "references"
IMPORTS = "imports"
DEPENDS_ON = "depends_on"

# Reference subtypes
REF_CALL = "call"
REF_TYPE = "type"
REF_USE = "use"
REF_IMPORT = "import"

# Outcome of resolving one reference record
RESOLVED = "resolved"
AMBIGUOUS = "ambiguous"
UNRESOLVED = "unresolved"

# Kinds that own members (methods, fields) for qualified lookup
CLASS_LIKE_KINDS = frozenset({
    "class", "struct", "enum", "interface", "trait", "impl", "type",
})

# Kinds that are structural only and never answer a name lookup
UNINDEXED_KINDS = frozenset({"impl"})

FILE_PREFIX = "file:"
EXTERNAL_PREFIX = "external:"

SELF_NAMES = frozenset({"self", "this", "cls", "Self"})


def symbol_id(kind: str, path: str, qualname: str) -> str:
    return f"{kind}:{path}::{qualname}"


def file_id(path: str) -> str:
    return f"{FILE_PREFIX}{path}"


def scope_key(kind: str, qualname: str) -> str:
    """Local (path-free) key of a definition, used in scope chains."""
    return f"{kind}:{qualname}"


def split_scope_key(key: str) -> Tuple[str, str]:
    kind, _, qualname = key.partition(":")
    return kind, qualname


def stub_id(name: str, source: Optional[str] = None) -> str:
    if source:
        return f"{EXTERNAL_PREFIX}{source}::{name}"
    return f"{EXTERNAL_PREFIX}{name}"


# ---------------------------------------------------------------------------
# Extraction records
# ---------------------------------------------------------------------------

@dataclass
class ErrorSpan:
    start_line: int
    start_col: int
    end_line: int
    end_col: int


@dataclass
class Definition:
    kind: str
    name: str
    qualname: str
    scope: Tuple[str, ...]
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    start_byte: int
    end_byte: int
    signature: str = ""
    docstring: str = ""

    @property
    def key(self) -> str:
        return scope_key(self.kind, self.qualname)


@dataclass
class Reference:
    name: str
    kind: str
    scope: Tuple[str, ...]
    line: int
    col: int
    qualifier: Optional[str] = None
    # Qualname of the enclosing type when the qualifier is self/this/cls
    owner: Optional[str] = None


@dataclass
class ImportedName:
    name: str
    alias: Optional[str] = None

    @property
    def binding(self) -> str:
        return self.alias or self.name


@dataclass
class Import:
    specifier: str
    line: int
    names: Tuple[ImportedName, ...] = ()
    module_alias: Optional[str] = None
    wildcard: bool = False


@dataclass
class SymbolTable:
    """Language-neutral result of extracting one file."""

    definitions: List[Definition] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    imports: List[Import] = field(default_factory=list)

    def defined_names(self) -> set:
        return {d.name for d in self.definitions}

    def mentioned_names(self) -> set:
        """Every name this file's references and imports could bind to."""
        names = set()
        for ref in self.references:
            names.add(ref.name)
            if ref.qualifier:
                names.update(_split_path(ref.qualifier))
        for imp in self.imports:
            names.update(_split_path(imp.specifier))
            if imp.module_alias:
                names.add(imp.module_alias)
            for item in imp.names:
                names.add(item.name)
                names.add(item.binding)
        return names

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SymbolTable":
        definitions = [
            Definition(**{**d, "scope": tuple(d["scope"])})
            for d in payload.get("definitions", [])
        ]
        references = [
            Reference(**{**r, "scope": tuple(r["scope"])})
            for r in payload.get("references", [])
        ]
        imports = [
            Import(
                specifier=i["specifier"],
                line=i["line"],
                names=tuple(ImportedName(**n) for n in i.get("names", [])),
                module_alias=i.get("module_alias"),
                wildcard=i.get("wildcard", False),
            )
            for i in payload.get("imports", [])
        ]
        return cls(definitions=definitions, references=references, imports=imports)

    def canonical_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _split_path(text: str) -> List[str]:
    parts = text.replace("::", "/").replace(".", "/").replace("\\", "/").split("/")
    return [p for p in parts if p]


# ---------------------------------------------------------------------------
# Graph nodes and edges
# ---------------------------------------------------------------------------

@dataclass
class SourceFile:
    path: str
    language: str
    content_hash: str
    parse_status: str
    size: int = 0
    symbol_ids: List[str] = field(default_factory=list)
    error_spans: List[ErrorSpan] = field(default_factory=list)

    @property
    def id(self) -> str:
        return file_id(self.path)


@dataclass
class FileFailure:
    path: str
    reason: str
    language: Optional[str] = None
    content_hash: Optional[str] = None


@dataclass
class Symbol:
    id: str
    kind: str
    name: str
    qualname: str
    file_path: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    start_byte: int
    end_byte: int
    parent_id: Optional[str] = None
    signature: str = ""
    docstring: str = ""


@dataclass
class ExternalStub:
    id: str
    name: str
    source: Optional[str] = None
    kind: str = "symbol"


@dataclass
class Edge:
    src: str
    dst: str
    kind: str
    subtype: str = ""
    ambiguous: bool = False
    line: int = 0
    origin: str = ""

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.src, self.dst, self.kind, self.subtype)


@dataclass
class ResolutionSummary:
    resolved: int = 0
    ambiguous: int = 0
    unresolved: int = 0
    unresolved_imports: int = 0


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------

@dataclass
class SymbolSummary:
    id: str
    name: str
    kind: str
    qualname: str
    file_path: str
    start_line: int
    end_line: int
    signature: str = ""
    match: str = ""


@dataclass
class ContextEntry:
    node_id: str
    name: str
    kind: str
    file_path: Optional[str]
    edge_kind: str
    subtype: str
    direction: str
    distance: int
    via: str
    ambiguous: bool = False
    external: bool = False


@dataclass
class ContextResult:
    target: str
    target_kind: str
    target_parse_status: str
    depth: int
    entries: List[ContextEntry] = field(default_factory=list)
    truncated: bool = False
    intent: str = "explore"
    # Test symbols among the target's dependents ("change" intent)
    related_tests: List[SymbolSummary] = field(default_factory=list)
    # Same-kind symbols to model new code on ("create" intent)
    similar: List[SymbolSummary] = field(default_factory=list)

    @property
    def node_ids(self) -> List[str]:
        return [e.node_id for e in self.entries]


@dataclass
class DependencyUnit:
    ids: List[str]
    cyclic: bool = False
    external: bool = False


@dataclass
class DependencyClosure:
    target: str
    direction: str
    units: List[DependencyUnit] = field(default_factory=list)

    @property
    def ids(self) -> List[str]:
        return [node_id for unit in self.units for node_id in unit.ids]

    @property
    def external_ids(self) -> List[str]:
        return [node_id for unit in self.units if unit.external for node_id in unit.ids]

    @property
    def resolved_ids(self) -> List[str]:
        return [node_id for unit in self.units if not unit.external for node_id in unit.ids]


@dataclass
class GraphStats:
    version: int
    file_count: int
    symbol_count: int
    edge_count: int
    files_by_status: Dict[str, int] = field(default_factory=dict)
    symbols_by_kind: Dict[str, int] = field(default_factory=dict)
    edges_by_kind: Dict[str, int] = field(default_factory=dict)
    resolved_references: int = 0
    ambiguous_references: int = 0
    unresolved_references: int = 0
    unresolved_imports: int = 0
    stub_count: int = 0
    languages: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass
class FileTreeNode:
    name: str
    path: str
    is_dir: bool
    symbol_count: int = 0
    language: Optional[str] = None
    parse_status: Optional[str] = None
    children: List["FileTreeNode"] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Build input / output
# ---------------------------------------------------------------------------

@dataclass
class BuildOptions:
    context_depth: int = 2
    import_depth: int = 3
    max_file_bytes: int = 1024 * 1024
    parse_timeout: float = 10.0
    workers: int = 4
    ignore_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config_file: Optional[Path] = None) -> "BuildOptions":
        """Defaults overlaid with the ``[graph]`` section of ``config.toml``."""
        from . import config
        from .config_manager import load_graph_config

        values = load_graph_config(config_file or config.CONFIG_FILE)
        return cls(
            context_depth=int(values.get("context_depth", config.DEFAULT_CONTEXT_DEPTH)),
            import_depth=int(values.get("import_depth", config.DEFAULT_IMPORT_DEPTH)),
            max_file_bytes=int(values.get("max_file_bytes", config.DEFAULT_MAX_FILE_BYTES)),
            parse_timeout=float(values.get("parse_timeout", config.DEFAULT_PARSE_TIMEOUT)),
            workers=int(values.get("workers", config.DEFAULT_WORKERS)),
            ignore_patterns=list(values.get("ignore", [])),
        )


@dataclass
class BuildReport:
    files_processed: int = 0
    files_failed: int = 0
    files_partial: int = 0
    files_reparsed: int = 0
    files_unchanged: int = 0
    files_removed: int = 0
    files_reresolved: int = 0
    symbol_count: int = 0
    edge_count: int = 0
    duration_ms: int = 0
    version: int = 0
    failures: List[FileFailure] = field(default_factory=list)
