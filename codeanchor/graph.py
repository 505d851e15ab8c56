"""Graph versions and the single-writer builder that produces them.

A :class:`GraphVersion` is one complete snapshot of nodes and edges. Nodes
and edges live in flat dicts keyed by string id (edges by
``(src, dst, kind, subtype)``), so reference cycles cost nothing
structurally. Once frozen a version is never mutated; a rebuild copies the
tables into a :class:`GraphBuilder`, edits the copy and freezes a new
version.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import (
    CLASS_LIKE_KINDS,
    CONTAINS,
    DEFINES,
    DEPENDS_ON,
    IMPORTS,
    PARSE_FAILED,
    REFERENCES,
    UNINDEXED_KINDS,
    Edge,
    ExternalStub,
    FileFailure,
    ResolutionSummary,
    SourceFile,
    Symbol,
    SymbolTable,
    file_id,
    split_scope_key,
    symbol_id,
)

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, str, str, str]

RESOLUTION_KINDS = (REFERENCES, IMPORTS)


def member_owner(qualname: str) -> Optional[str]:
    """Last segment of the owner part of a dotted qualname (``A.B.m`` -> ``B``)."""
    if "." not in qualname:
        return None
    owner = qualname.rsplit(".", 1)[0]
    return owner.rsplit(".", 1)[-1]


# ===================================================================
# Definition index
# ===================================================================

class DefinitionIndex:
    """Name lookups over the symbol table, built once per builder state."""

    def __init__(self, symbols: Dict[str, Symbol]) -> None:
        self.symbols = symbols
        self.by_file_name: Dict[Tuple[str, str], List[Symbol]] = defaultdict(list)
        self.by_file_qualname: Dict[Tuple[str, str], List[Symbol]] = defaultdict(list)
        self.children: Dict[Tuple[str, str], List[Symbol]] = defaultdict(list)
        self.top_level: Dict[str, List[Symbol]] = defaultdict(list)
        self.members: Dict[str, List[Symbol]] = defaultdict(list)
        self.members_by_owner: Dict[Tuple[str, str], List[Symbol]] = defaultdict(list)
        self.by_name: Dict[str, List[Symbol]] = defaultdict(list)
        self.class_names: Set[str] = set()

        for sym in sorted(symbols.values(), key=lambda s: s.id):
            self.by_file_qualname[(sym.file_path, sym.qualname)].append(sym)
            if sym.parent_id is not None:
                self.children[(sym.parent_id, sym.name)].append(sym)
            if sym.kind in CLASS_LIKE_KINDS:
                self.class_names.add(sym.name)
            if sym.kind in UNINDEXED_KINDS:
                continue
            self.by_file_name[(sym.file_path, sym.name)].append(sym)
            self.by_name[sym.name].append(sym)
            if sym.parent_id is None and sym.qualname == sym.name:
                self.top_level[sym.name].append(sym)
            parent = symbols.get(sym.parent_id) if sym.parent_id else None
            if (parent is not None and parent.kind in CLASS_LIKE_KINDS) or (
                parent is None and sym.parent_id is None and "." in sym.qualname
            ):
                self.members[sym.name].append(sym)
                owner = member_owner(sym.qualname)
                if owner:
                    self.members_by_owner[(owner, sym.name)].append(sym)

    def file_top_level(self, path: str, name: str) -> List[Symbol]:
        return [s for s in self.by_file_name.get((path, name), ()) if s.parent_id is None and s.qualname == name]


# ===================================================================
# Graph version
# ===================================================================

class GraphVersion:
    """Immutable snapshot of the code graph."""

    def __init__(
        self,
        version: int,
        root: str,
        files: Dict[str, SourceFile],
        tables: Dict[str, SymbolTable],
        failures: Dict[str, FileFailure],
        symbols: Dict[str, Symbol],
        stubs: Dict[str, ExternalStub],
        edges: Dict[EdgeKey, Edge],
        summaries: Dict[str, ResolutionSummary],
        name_index: Optional[Dict[str, Set[str]]] = None,
    ) -> None:
        self.version = version
        self.root = root
        self.files = files
        self.tables = tables
        self.failures = failures
        self.symbols = symbols
        self.stubs = stubs
        self.edges = edges
        self.summaries = summaries

        self.out_edges: Dict[str, List[Edge]] = defaultdict(list)
        self.in_edges: Dict[str, List[Edge]] = defaultdict(list)
        for key in sorted(edges):
            edge = edges[key]
            self.out_edges[edge.src].append(edge)
            self.in_edges[edge.dst].append(edge)

        # Reverse name index: name -> files whose tables mention it
        if name_index is not None:
            self.name_index: Dict[str, Set[str]] = defaultdict(set, name_index)
        else:
            self.name_index = defaultdict(set)
            for path, table in tables.items():
                for name in table.mentioned_names():
                    self.name_index[name].add(path)

        self._definitions: Optional[DefinitionIndex] = None

    @classmethod
    def empty(cls, root: str = "") -> "GraphVersion":
        return cls(0, root, {}, {}, {}, {}, {}, {}, {})

    @property
    def definitions(self) -> DefinitionIndex:
        if self._definitions is None:
            self._definitions = DefinitionIndex(self.symbols)
        return self._definitions

    # ------------------------------------------------------------------
    # Node access
    # ------------------------------------------------------------------

    def has_node(self, node_id: str) -> bool:
        if node_id in self.symbols or node_id in self.stubs:
            return True
        return node_id.startswith("file:") and node_id[5:] in self.files

    def node_name(self, node_id: str) -> str:
        if node_id in self.symbols:
            return self.symbols[node_id].name
        if node_id in self.stubs:
            return self.stubs[node_id].name
        return node_id[5:] if node_id.startswith("file:") else node_id

    def node_kind(self, node_id: str) -> str:
        if node_id in self.symbols:
            return self.symbols[node_id].kind
        if node_id in self.stubs:
            return "external"
        return "file"

    def node_file(self, node_id: str) -> Optional[str]:
        """Root-relative path owning *node_id*; ``None`` for external stubs."""
        sym = self.symbols.get(node_id)
        if sym is not None:
            return sym.file_path
        if node_id.startswith("file:") and node_id[5:] in self.files:
            return node_id[5:]
        return None

    def edges_of_kind(self, kind: str) -> List[Edge]:
        return [self.edges[key] for key in sorted(self.edges) if key[2] == kind]

    def dangling_edges(self) -> List[Edge]:
        return [e for e in self.edges.values() if not (self.has_node(e.src) and self.has_node(e.dst))]

    def parse_failed(self, path: str) -> bool:
        source = self.files.get(path)
        return source is not None and source.parse_status == PARSE_FAILED


# ===================================================================
# Builder
# ===================================================================

class GraphBuilder:
    """Single writer that turns a base version plus file changes into a new version."""

    def __init__(self, base: Optional[GraphVersion] = None, root: str = "") -> None:
        base = base or GraphVersion.empty(root)
        self.root = root or base.root
        self.files: Dict[str, SourceFile] = dict(base.files)
        self.tables: Dict[str, SymbolTable] = dict(base.tables)
        self.failures: Dict[str, FileFailure] = dict(base.failures)
        self.symbols: Dict[str, Symbol] = dict(base.symbols)
        self.stubs: Dict[str, ExternalStub] = dict(base.stubs)
        self.edges: Dict[EdgeKey, Edge] = dict(base.edges)
        self.summaries: Dict[str, ResolutionSummary] = dict(base.summaries)

        self._by_origin: Dict[str, Set[EdgeKey]] = defaultdict(set)
        for key, edge in self.edges.items():
            self._by_origin[edge.origin].add(key)

    # ------------------------------------------------------------------
    # Edge bookkeeping
    # ------------------------------------------------------------------

    def add_edge(self, edge: Edge) -> None:
        existing = self.edges.get(edge.key)
        if existing is not None:
            if edge.ambiguous and not existing.ambiguous:
                self.edges[edge.key] = Edge(
                    existing.src, existing.dst, existing.kind, existing.subtype,
                    True, existing.line, existing.origin,
                )
            return
        self.edges[edge.key] = edge
        self._by_origin[edge.origin].add(edge.key)

    def _drop_edges(self, keys: Iterable[EdgeKey]) -> None:
        for key in list(keys):
            edge = self.edges.pop(key, None)
            if edge is not None:
                self._by_origin[edge.origin].discard(key)

    # ------------------------------------------------------------------
    # Definition pass
    # ------------------------------------------------------------------

    def remove_file(self, path: str) -> None:
        """Drop a file with every node and edge it owns."""
        source = self.files.pop(path, None)
        self.tables.pop(path, None)
        self.failures.pop(path, None)
        self.summaries.pop(path, None)
        if source is not None:
            for sid in source.symbol_ids:
                self.symbols.pop(sid, None)
        self._drop_edges(self._by_origin.pop(path, set()))

    def add_file(self, source: SourceFile, table: SymbolTable) -> None:
        """Insert a parsed file, its symbols and structural edges."""
        path = source.path
        fid = file_id(path)
        owned: List[str] = []
        for definition in table.definitions:
            sid = symbol_id(definition.kind, path, definition.qualname)
            parent_id = None
            if definition.scope:
                parent_kind, parent_qualname = split_scope_key(definition.scope[0])
                parent_id = symbol_id(parent_kind, path, parent_qualname)
            if sid not in owned:
                owned.append(sid)
            # A repeated id (redefinition) replaces the earlier node in place
            self.symbols[sid] = Symbol(
                id=sid,
                kind=definition.kind,
                name=definition.name,
                qualname=definition.qualname,
                file_path=path,
                start_line=definition.start_line,
                start_col=definition.start_col,
                end_line=definition.end_line,
                end_col=definition.end_col,
                start_byte=definition.start_byte,
                end_byte=definition.end_byte,
                parent_id=parent_id,
                signature=definition.signature,
                docstring=definition.docstring,
            )
            if parent_id is None:
                self.add_edge(Edge(fid, sid, DEFINES, origin=path, line=definition.start_line))
            else:
                self.add_edge(Edge(parent_id, sid, CONTAINS, origin=path, line=definition.start_line))
        self.files[path] = SourceFile(
            path=path,
            language=source.language,
            content_hash=source.content_hash,
            parse_status=source.parse_status,
            size=source.size,
            symbol_ids=owned,
            error_spans=list(source.error_spans),
        )
        self.tables[path] = table
        self.failures.pop(path, None)

    def add_failure(self, source: SourceFile, failure: FileFailure) -> None:
        """Record a file that could not be indexed; it owns no symbols."""
        self.files[source.path] = SourceFile(
            path=source.path,
            language=source.language,
            content_hash=source.content_hash,
            parse_status=PARSE_FAILED,
            size=source.size,
        )
        self.tables[source.path] = SymbolTable()
        self.failures[source.path] = failure

    def definition_index(self) -> DefinitionIndex:
        return DefinitionIndex(self.symbols)

    # ------------------------------------------------------------------
    # Resolution pass
    # ------------------------------------------------------------------

    def clear_resolution(self, path: str) -> None:
        """Drop reference and import edges produced by *path*."""
        keys = [k for k in self._by_origin.get(path, ()) if k[2] in RESOLUTION_KINDS]
        self._drop_edges(keys)
        self.summaries.pop(path, None)

    def apply_resolution(self, path: str, edges: Iterable[Edge], stubs: Iterable[ExternalStub],
                         summary: ResolutionSummary) -> None:
        for stub in stubs:
            self.stubs.setdefault(stub.id, stub)
        for edge in edges:
            self.add_edge(edge)
        self.summaries[path] = summary

    def derive_depends_on(self) -> None:
        """Recompute file-level ``depends_on`` from resolved inter-file edges."""
        self._drop_edges([k for k in self.edges if k[2] == DEPENDS_ON])
        derived: Dict[Tuple[str, str], Tuple[bool, int]] = {}
        for key in sorted(self.edges):
            if key[2] not in RESOLUTION_KINDS:
                continue
            edge = self.edges[key]
            src_file = self._file_of(edge.src)
            dst_file = self._file_of(edge.dst)
            if src_file is None or dst_file is None or src_file == dst_file:
                continue
            pair = (src_file, dst_file)
            ambiguous, line = derived.get(pair, (True, edge.line))
            derived[pair] = (ambiguous and edge.ambiguous, line)
        for (src_file, dst_file), (ambiguous, line) in derived.items():
            self.add_edge(Edge(
                file_id(src_file), file_id(dst_file), DEPENDS_ON,
                ambiguous=ambiguous, line=line, origin=src_file,
            ))

    def _file_of(self, node_id: str) -> Optional[str]:
        sym = self.symbols.get(node_id)
        if sym is not None:
            return sym.file_path
        if node_id.startswith("file:") and node_id[5:] in self.files:
            return node_id[5:]
        return None

    def prune(self) -> int:
        """Remove edges with a missing endpoint and stubs nothing points to."""
        def _exists(node_id: str) -> bool:
            return node_id in self.symbols or node_id in self.stubs or self._file_of(node_id) is not None

        dangling = [k for k, e in self.edges.items() if not (_exists(e.src) and _exists(e.dst))]
        if dangling:
            logger.debug("Dropping %d dangling edges", len(dangling))
            self._drop_edges(dangling)
        referenced = {e.dst for e in self.edges.values()}
        orphans = [sid for sid in self.stubs if sid not in referenced]
        for sid in orphans:
            del self.stubs[sid]
        return len(orphans)

    def freeze(self, version: int) -> GraphVersion:
        return GraphVersion(
            version=version,
            root=self.root,
            files=dict(sorted(self.files.items())),
            tables=dict(self.tables),
            failures=dict(sorted(self.failures.items())),
            symbols=dict(self.symbols),
            stubs=dict(self.stubs),
            edges=dict(self.edges),
            summaries=dict(self.summaries),
        )
