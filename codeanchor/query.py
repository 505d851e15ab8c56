"""Read-only queries against one published graph version."""

from __future__ import annotations

import logging
import posixpath
import re
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .errors import AmbiguousTarget, InvalidPattern, NotFound
from .models import (
    DEPENDS_ON,
    IMPORTS,
    PARSE_FAILED,
    PARSE_PARTIAL,
    REFERENCES,
    UNINDEXED_KINDS,
    ContextEntry,
    ContextResult,
    DependencyClosure,
    DependencyUnit,
    Edge,
    FileTreeNode,
    GraphStats,
    Symbol,
    SymbolSummary,
    file_id,
)
from .graph import GraphVersion

logger = logging.getLogger(__name__)

CONTEXT_EDGE_KINDS = (REFERENCES, IMPORTS, DEPENDS_ON)
CLOSURE_EDGE_KINDS = (REFERENCES, IMPORTS)

MATCH_EXACT = "exact"
MATCH_PREFIX = "prefix"
MATCH_SUBSTRING = "substring"
MATCH_PATTERN = "pattern"

OUTGOING = "out"
INCOMING = "in"

INTENT_EXPLORE = "explore"
INTENT_CHANGE = "change"
INTENT_CREATE = "create"
INTENTS = (INTENT_EXPLORE, INTENT_CHANGE, INTENT_CREATE)

RELATED_LIMIT = 5

_TEST_DIRS = frozenset({"test", "tests", "__tests__", "spec"})
_CALLABLE_KINDS = frozenset({"function", "method"})


def is_test_path(path: str) -> bool:
    """Whether *path* looks like test code (test directory or test file name)."""
    parts = path.split("/")
    if any(part in _TEST_DIRS for part in parts[:-1]):
        return True
    filename = parts[-1].lower()
    stem = filename.split(".", 1)[0]
    return (
        stem.startswith("test_")
        or stem.endswith("_test")
        or ".test." in filename
        or ".spec." in filename
    )


def is_test_symbol(sym: Symbol) -> bool:
    name = sym.name.lower()
    if sym.kind in _CALLABLE_KINDS and is_test_path(sym.file_path):
        return True
    return sym.kind in _CALLABLE_KINDS | {"class"} and (name.startswith("test") or name.endswith("_test"))


class NamePattern:
    """Symbol-name filter: ``&``-joined regular expressions, each negated by a leading ``~``.

    Every plain clause must match the whole name and no ``~`` clause may, so
    ``Config.* & .*Manager`` finds names starting with Config and ending with
    Manager, and ``.*Handler & ~Base.*`` leaves out the base classes.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self.required: List[re.Pattern] = []
        self.forbidden: List[re.Pattern] = []
        for clause in source.split("&"):
            clause = clause.strip()
            negated = clause.startswith("~")
            body = clause[1:].strip() if negated else clause
            if not body:
                raise InvalidPattern(source, "empty clause")
            try:
                compiled = re.compile(body)
            except re.error as exc:
                raise InvalidPattern(source, str(exc)) from exc
            if negated:
                self.forbidden.append(compiled)
            else:
                self.required.append(compiled)

    def matches(self, name: str) -> bool:
        if not all(p.fullmatch(name) for p in self.required):
            return False
        return not any(p.fullmatch(name) for p in self.forbidden)


def _summary(sym: Symbol, match: str = "") -> SymbolSummary:
    return SymbolSummary(
        id=sym.id,
        name=sym.name,
        kind=sym.kind,
        qualname=sym.qualname,
        file_path=sym.file_path,
        start_line=sym.start_line,
        end_line=sym.end_line,
        signature=sym.signature,
        match=match,
    )


class QueryEngine:
    """Structural questions answered from a single immutable version."""

    def __init__(self, version: GraphVersion, context_depth: int = 2) -> None:
        self.version = version
        self.context_depth = context_depth

    # ------------------------------------------------------------------
    # Target lookup
    # ------------------------------------------------------------------

    def resolve_target(self, target: str) -> str:
        """Node id for *target*: an id, a file path, ``path::qualname``, a qualname or a unique name."""
        version = self.version
        target = target.strip()
        if version.has_node(target):
            return target
        if target in version.files:
            return file_id(target)

        index = version.definitions
        if "::" in target:
            path, _, qualname = target.partition("::")
            if path in version.files:
                return self._pick(target, index.by_file_qualname.get((path, qualname), ()))

        by_qualname = [s for s in version.symbols.values() if s.qualname == target]
        if by_qualname:
            return self._pick(target, by_qualname)
        return self._pick(target, index.by_name.get(target, ()))

    @staticmethod
    def _pick(target: str, symbols: Iterable[Symbol]) -> str:
        candidates = sorted({s.id for s in symbols if s.kind not in UNINDEXED_KINDS}) or sorted(
            {s.id for s in symbols}
        )
        if not candidates:
            raise NotFound(target)
        if len(candidates) > 1:
            raise AmbiguousTarget(target, candidates)
        return candidates[0]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        text: str,
        kind: Optional[str] = None,
        file: Optional[str] = None,
        limit: Optional[int] = None,
        exact: bool = False,
        pattern: Optional[str] = None,
    ) -> List[SymbolSummary]:
        """Symbols by name: exact matches, then prefix, then substring (case-insensitive).

        Ties are broken by file path, then source position. ``exact=True``
        keeps only exact name matches. A *pattern* (see :class:`NamePattern`)
        filters names before ranking; with a blank *text* it returns every
        symbol it admits. A blank *text* without a pattern yields an empty list.
        """
        needle = (text or "").strip().lower()
        matcher = NamePattern(pattern) if pattern is not None else None
        if not needle and matcher is None:
            return []
        directory = file.rstrip("/") + "/" if file else None
        ranked: List[Tuple[int, str, int, str, Symbol, str]] = []
        for sym in self.version.symbols.values():
            if kind is not None:
                if sym.kind != kind:
                    continue
            elif sym.kind in UNINDEXED_KINDS:
                continue
            if file and sym.file_path != file and not sym.file_path.startswith(directory):
                continue
            if matcher is not None and not matcher.matches(sym.name):
                continue
            name = sym.name.lower()
            if not needle:
                tier, match = 0, MATCH_PATTERN
            elif name == needle:
                tier, match = 0, MATCH_EXACT
            elif exact:
                continue
            elif name.startswith(needle):
                tier, match = 1, MATCH_PREFIX
            elif needle in name:
                tier, match = 2, MATCH_SUBSTRING
            else:
                continue
            ranked.append((tier, sym.file_path, sym.start_byte, sym.id, sym, match))
        ranked.sort(key=lambda row: row[:4])
        if limit is not None:
            ranked = ranked[: max(0, limit)]
        return [_summary(sym, match) for _, _, _, _, sym, match in ranked]

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def _context_neighbors(self, node_id: str) -> List[Tuple[Edge, str, str]]:
        found: List[Tuple[Edge, str, str]] = []
        for edge in self.version.out_edges.get(node_id, ()):
            if edge.kind in CONTEXT_EDGE_KINDS:
                found.append((edge, OUTGOING, edge.dst))
        for edge in self.version.in_edges.get(node_id, ()):
            if edge.kind in CONTEXT_EDGE_KINDS:
                found.append((edge, INCOMING, edge.src))
        return found

    def context(self, target: str, depth: Optional[int] = None, intent: str = INTENT_EXPLORE) -> ContextResult:
        """Breadth-first neighborhood of *target* over references, imports and depends_on.

        The *intent* adds to the neighborhood: ``change`` lists the tests that
        depend on the target, ``create`` lists similar symbols to follow.
        """
        if intent not in INTENTS:
            raise ValueError(f"unknown context intent '{intent}' (expected one of {', '.join(INTENTS)})")
        version = self.version
        depth = self.context_depth if depth is None else max(0, depth)
        start = self.resolve_target(target)

        result = ContextResult(
            target=start,
            target_kind=version.node_kind(start),
            target_parse_status=self._parse_status(start),
            depth=depth,
            intent=intent,
        )
        if intent == INTENT_CHANGE:
            result.related_tests = self.related_tests(start)
        elif intent == INTENT_CREATE:
            result.similar = self.similar(start)
        visited: Set[str] = {start}
        frontier = deque([(start, 0)])
        while frontier:
            node_id, distance = frontier.popleft()
            neighbors = self._context_neighbors(node_id)
            if distance >= depth:
                if any(other not in visited for _, _, other in neighbors):
                    result.truncated = True
                continue
            for edge, direction, other in neighbors:
                if other in visited:
                    continue
                visited.add(other)
                result.entries.append(ContextEntry(
                    node_id=other,
                    name=version.node_name(other),
                    kind=version.node_kind(other),
                    file_path=version.node_file(other),
                    edge_kind=edge.kind,
                    subtype=edge.subtype,
                    direction=direction,
                    distance=distance + 1,
                    via=node_id,
                    ambiguous=edge.ambiguous,
                    external=other in version.stubs,
                ))
                frontier.append((other, distance + 1))
        return result

    def related_tests(self, target: str) -> List[SymbolSummary]:
        """Test functions and classes that transitively depend on *target*, nearest first."""
        found: List[SymbolSummary] = []
        for unit in self.dependents(target).units:
            for node_id in unit.ids:
                sym = self.version.symbols.get(node_id)
                if sym is not None and is_test_symbol(sym):
                    found.append(_summary(sym))
                    if len(found) >= RELATED_LIMIT:
                        return found
        return found

    def similar(self, target: str) -> List[SymbolSummary]:
        """Other symbols of the target's kind, same directory first.

        Files and external stubs have no peers; test code only matches test code.
        """
        ref = self.version.symbols.get(self.resolve_target(target))
        if ref is None:
            return []
        directory = posixpath.dirname(ref.file_path)
        want_tests = is_test_symbol(ref)
        peers = [
            sym for sym in self.version.symbols.values()
            if sym.kind == ref.kind and sym.name != ref.name and is_test_symbol(sym) == want_tests
        ]
        peers.sort(key=lambda s: (posixpath.dirname(s.file_path) != directory, s.file_path, s.start_byte, s.id))
        return [_summary(sym) for sym in peers[:RELATED_LIMIT]]

    def _parse_status(self, node_id: str) -> str:
        path = self.version.node_file(node_id)
        if path is None:
            return "external"
        return self.version.files[path].parse_status

    # ------------------------------------------------------------------
    # Dependency closures
    # ------------------------------------------------------------------

    def deps(self, target: str) -> DependencyClosure:
        """Everything *target* transitively references or imports, dependencies first."""
        start = self.resolve_target(target)
        units = self._condensed(start, self._outgoing)
        return DependencyClosure(target=start, direction="deps", units=units)

    def dependents(self, target: str) -> DependencyClosure:
        """Everything that transitively references or imports *target*, nearest first."""
        start = self.resolve_target(target)
        units = self._condensed(start, self._incoming)
        units.reverse()
        return DependencyClosure(target=start, direction="dependents", units=units)

    def _outgoing(self, node_id: str) -> List[str]:
        return sorted({e.dst for e in self.version.out_edges.get(node_id, ()) if e.kind in CLOSURE_EDGE_KINDS})

    def _incoming(self, node_id: str) -> List[str]:
        return sorted({e.src for e in self.version.in_edges.get(node_id, ()) if e.kind in CLOSURE_EDGE_KINDS})

    def _condensed(self, start: str, neighbors: Callable[[str], List[str]]) -> List[DependencyUnit]:
        """Strongly connected components reachable from *start*, sinks first.

        Iterative Tarjan; each component becomes one unit. The start node's
        own unit is dropped unless it sits on a cycle.
        """
        index_of: Dict[str, int] = {}
        low: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        components: List[List[str]] = []
        counter = 0

        def _visit(node_id: str) -> None:
            nonlocal counter
            index_of[node_id] = low[node_id] = counter
            counter += 1
            stack.append(node_id)
            on_stack.add(node_id)

        _visit(start)
        work = [(start, iter(neighbors(start)))]
        while work:
            node_id, pending = work[-1]
            descended = False
            for nxt in pending:
                if nxt not in index_of:
                    _visit(nxt)
                    work.append((nxt, iter(neighbors(nxt))))
                    descended = True
                    break
                if nxt in on_stack:
                    low[node_id] = min(low[node_id], index_of[nxt])
            if descended:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node_id])
            if low[node_id] == index_of[node_id]:
                component: List[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node_id:
                        break
                components.append(sorted(component))

        units: List[DependencyUnit] = []
        for component in components:
            cyclic = len(component) > 1 or component[0] in neighbors(component[0])
            if component == [start] and not cyclic:
                continue
            units.append(DependencyUnit(
                ids=component,
                cyclic=cyclic,
                external=all(node_id in self.version.stubs for node_id in component),
            ))
        return units

    # ------------------------------------------------------------------
    # File-level views
    # ------------------------------------------------------------------

    def file_symbols(self, path: str) -> List[SymbolSummary]:
        """Every symbol defined in *path*, in source order."""
        source = self.version.files.get(path)
        if source is None:
            raise NotFound(path)
        symbols = [self.version.symbols[sid] for sid in source.symbol_ids if sid in self.version.symbols]
        symbols.sort(key=lambda s: (s.start_byte, s.end_byte, s.id))
        return [_summary(sym) for sym in symbols]

    def stats(self) -> GraphStats:
        version = self.version
        result = GraphStats(
            version=version.version,
            file_count=len(version.files),
            symbol_count=len(version.symbols),
            edge_count=len(version.edges),
            stub_count=len(version.stubs),
        )
        for source in version.files.values():
            result.files_by_status[source.parse_status] = result.files_by_status.get(source.parse_status, 0) + 1
            lang = result.languages.setdefault(
                source.language, {"files": 0, "symbols": 0, PARSE_PARTIAL: 0, PARSE_FAILED: 0}
            )
            lang["files"] += 1
            lang["symbols"] += len(source.symbol_ids)
            if source.parse_status in (PARSE_PARTIAL, PARSE_FAILED):
                lang[source.parse_status] += 1
        for sym in version.symbols.values():
            result.symbols_by_kind[sym.kind] = result.symbols_by_kind.get(sym.kind, 0) + 1
        for edge in version.edges.values():
            result.edges_by_kind[edge.kind] = result.edges_by_kind.get(edge.kind, 0) + 1
        for summary in version.summaries.values():
            result.resolved_references += summary.resolved
            result.ambiguous_references += summary.ambiguous
            result.unresolved_references += summary.unresolved
            result.unresolved_imports += summary.unresolved_imports
        return result

    def overview(self, max_depth: Optional[int] = None) -> FileTreeNode:
        """Directory tree of indexed files with per-file symbol counts.

        Directory counts are the sum of their contents. With *max_depth*,
        directories deeper than that keep their counts but list no children.
        """
        version = self.version
        root_name = posixpath.basename(version.root.rstrip("/")) or "."
        tree = FileTreeNode(name=root_name, path="", is_dir=True)
        dirs: Dict[str, FileTreeNode] = {"": tree}

        for path in sorted(version.files):
            source = version.files[path]
            parts = path.split("/")
            parent = tree
            for depth, part in enumerate(parts[:-1], start=1):
                dir_path = "/".join(parts[:depth])
                node = dirs.get(dir_path)
                if node is None:
                    node = FileTreeNode(name=part, path=dir_path, is_dir=True)
                    dirs[dir_path] = node
                    parent.children.append(node)
                parent = node
            count = len(source.symbol_ids)
            parent.children.append(FileTreeNode(
                name=parts[-1],
                path=path,
                is_dir=False,
                symbol_count=count,
                language=source.language,
                parse_status=source.parse_status,
            ))
            for depth in range(len(parts) - 1, -1, -1):
                dirs["/".join(parts[:depth])].symbol_count += count

        def _finish(node: FileTreeNode, depth: int) -> None:
            node.children.sort(key=lambda child: (not child.is_dir, child.name))
            if max_depth is not None and depth >= max_depth:
                node.children = []
                return
            for child in node.children:
                if child.is_dir:
                    _finish(child, depth + 1)

        _finish(tree, 0)
        return tree
