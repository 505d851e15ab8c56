"""Resolution pass: bind reference and import records to definitions.

Every file is resolved independently against read-only indexes, so files
fan out over a thread pool. Each worker returns a :class:`FileResolution`
(edges, stubs, counters) and the caller merges the results into the
builder in path order.

Unqualified lookup precedence, first step with any match wins:

1. enclosing scopes of the reference, innermost first, within the file
2. file-level symbols of the file (and, for package-scoped languages, of
   its sibling files)
3. bindings introduced by the file's imports: named imports, then
   wildcard imports, following re-exports up to ``import_depth`` hops
4. top-level symbols of every other file of the same language family

A step that yields more than one candidate produces edges to all of them
flagged ``ambiguous``. No candidate at all produces an external stub.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .graph import DefinitionIndex
from .models import (
    CLASS_LIKE_KINDS,
    IMPORTS,
    REF_IMPORT,
    REFERENCES,
    Edge,
    ExternalStub,
    Import,
    Reference,
    ResolutionSummary,
    Symbol,
    SymbolTable,
    file_id,
    split_scope_key,
    stub_id,
    symbol_id,
)
from .parser import AdapterRegistry, LanguageAdapter, ModuleIndex, ModuleMatch

logger = logging.getLogger(__name__)

_LOCAL_SCOPE_KINDS = frozenset({"function", "method"})
_QUALIFIER_SPLIT = re.compile(r"::|\.")


@dataclass
class FileResolution:
    path: str
    edges: List[Edge] = field(default_factory=list)
    stubs: List[ExternalStub] = field(default_factory=list)
    summary: ResolutionSummary = field(default_factory=ResolutionSummary)


@dataclass
class _Binding:
    """What a name bound by an import statement points to."""

    targets: List[str] = field(default_factory=list)
    # Module files when the bound name is itself a module
    module_files: List[str] = field(default_factory=list)
    specifier: str = ""
    unresolved: bool = False


@dataclass
class _ModuleRef:
    specifier: str
    files: List[str]


class _Outcome:
    __slots__ = ("targets", "stub", "counted")

    def __init__(self, targets: Sequence[str] = (), stub: Optional[ExternalStub] = None,
                 counted: bool = True) -> None:
        self.targets = list(targets)
        self.stub = stub
        self.counted = counted


def _segments(qualifier: str) -> List[str]:
    return [part for part in _QUALIFIER_SPLIT.split(qualifier) if part]


def _ids(symbols: Iterable[Symbol]) -> List[str]:
    return sorted({s.id for s in symbols})


class Resolver:
    """Resolve the reference and import records of files in one graph state."""

    def __init__(
        self,
        index: DefinitionIndex,
        tables: Dict[str, SymbolTable],
        languages: Dict[str, str],
        registry: AdapterRegistry,
        import_depth: int = 3,
    ) -> None:
        self.index = index
        self.tables = tables
        self.languages = languages
        self.registry = registry
        self.import_depth = import_depth
        self.modules = ModuleIndex.build(languages)
        self._match_cache: Dict[Tuple[str, str], ModuleMatch] = {}
        self._families = {
            path: self._family_of(language) for path, language in languages.items()
        }

    def _family_of(self, language: str) -> str:
        adapter = self.registry.get(language)
        return adapter.name_family if adapter is not None else language

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    def resolve_files(self, paths: Sequence[str], workers: int = 1) -> List[FileResolution]:
        paths = sorted(paths)
        if workers <= 1 or len(paths) <= 1:
            return [self.resolve_file(path) for path in paths]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.resolve_file, paths))

    def resolve_file(self, path: str) -> FileResolution:
        result = FileResolution(path=path)
        table = self.tables.get(path)
        adapter = self.registry.get(self.languages.get(path, ""))
        if table is None or adapter is None:
            return result
        state = _FileState(self, adapter, path, result)
        for imp in table.imports:
            state.resolve_import(imp)
        for ref in table.references:
            state.resolve_reference(ref)
        logger.debug(
            "Resolved %s: %d resolved, %d ambiguous, %d unresolved, %d unresolved imports",
            path, result.summary.resolved, result.summary.ambiguous,
            result.summary.unresolved, result.summary.unresolved_imports,
        )
        return result

    # ------------------------------------------------------------------
    # Shared lookups
    # ------------------------------------------------------------------

    def match_module(self, adapter: LanguageAdapter, specifier: str, importer: str) -> ModuleMatch:
        key = (specifier, importer if adapter.is_relative(specifier) or adapter.path_qualifiers else "")
        cached = self._match_cache.get(key)
        if cached is None:
            cached = adapter.match_module(specifier, importer, self.modules)
            self._match_cache[key] = cached
        return cached

    def same_family(self, symbols: Iterable[Symbol], family: str) -> List[Symbol]:
        return [s for s in symbols if self._families.get(s.file_path) == family]

    def resolve_in_module(
        self,
        adapter: LanguageAdapter,
        files: Sequence[str],
        name: str,
        hops: Optional[int] = None,
        visited: Optional[Set[Tuple[str, str]]] = None,
    ) -> List[str]:
        """Ids *name* denotes inside the module made of *files*.

        Top-level definitions win; otherwise re-exports (named, aliased and
        wildcard imports inside the module) are followed for at most
        ``import_depth`` hops, never revisiting a (file, name) pair.
        """
        hops = self.import_depth if hops is None else hops
        visited = set() if visited is None else visited
        found: List[Symbol] = []
        for path in files:
            found.extend(self.index.file_top_level(path, name))
        if found:
            return _ids(found)
        if hops <= 0:
            return []

        targets: List[str] = []
        for path in files:
            if (path, name) in visited:
                continue
            visited.add((path, name))
            table = self.tables.get(path)
            if table is None:
                continue
            for imp in table.imports:
                if imp.module_alias == name:
                    match = self.match_module(adapter, imp.specifier, path)
                    targets.extend(file_id(f) for f in match.files)
                for item in imp.names:
                    if item.binding != name:
                        continue
                    match = self.match_module(adapter, imp.specifier, path)
                    targets.extend(self.resolve_in_module(adapter, match.files, item.name, hops - 1, visited))
                if imp.wildcard:
                    match = self.match_module(adapter, imp.specifier, path)
                    targets.extend(self.resolve_in_module(adapter, match.files, name, hops - 1, visited))
        return sorted(set(targets))

    def members_of(self, symbols: Iterable[Symbol], name: str) -> List[Symbol]:
        """Members called *name* of the given class-like symbols."""
        found: List[Symbol] = []
        for sym in symbols:
            hits = self.index.children.get((sym.id, name)) or self.index.members_by_owner.get((sym.name, name), ())
            found.extend(hits)
        return found


class _FileState:
    """Per-file resolution state: import bindings and emitted edges."""

    def __init__(self, resolver: Resolver, adapter: LanguageAdapter, path: str,
                 result: FileResolution) -> None:
        self.resolver = resolver
        self.index = resolver.index
        self.adapter = adapter
        self.path = path
        self.fid = file_id(path)
        self.family = adapter.name_family
        self.result = result
        self.bindings: Dict[str, _Binding] = {}
        self.module_aliases: Dict[str, _ModuleRef] = {}
        self.wildcards: List[_ModuleRef] = []
        self._edges: Dict[Tuple[str, str, str, str], Edge] = {}
        self._stubs: Dict[str, ExternalStub] = {}

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(self, src: str, dst: str, kind: str, subtype: str, ambiguous: bool, line: int) -> None:
        edge = Edge(src, dst, kind, subtype, ambiguous, line, self.path)
        existing = self._edges.get(edge.key)
        if existing is None:
            self._edges[edge.key] = edge
            self.result.edges.append(edge)
        elif ambiguous and not existing.ambiguous:
            existing.ambiguous = True

    def _stub(self, name: str, source: Optional[str], kind: str = "symbol") -> ExternalStub:
        sid = stub_id(name, source)
        stub = self._stubs.get(sid)
        if stub is None:
            stub = ExternalStub(id=sid, name=name, source=source, kind=kind)
            self._stubs[sid] = stub
            self.result.stubs.append(stub)
        return stub

    def _record(self, src: str, outcome: _Outcome, subtype: str, line: int, kind: str = REFERENCES) -> None:
        summary = self.result.summary
        if outcome.targets:
            ambiguous = len(outcome.targets) > 1
            for target in outcome.targets:
                self._emit(src, target, kind, subtype, ambiguous, line)
            if outcome.counted:
                if ambiguous:
                    summary.ambiguous += 1
                else:
                    summary.resolved += 1
            return
        if outcome.stub is not None:
            self._emit(src, outcome.stub.id, kind, subtype, False, line)
        if outcome.counted:
            summary.unresolved += 1

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def resolve_import(self, imp: Import) -> None:
        resolver = self.resolver
        match = resolver.match_module(self.adapter, imp.specifier, self.path)
        module = _ModuleRef(imp.specifier, list(match.files))
        for path in match.files:
            self._emit(self.fid, file_id(path), IMPORTS, "", match.ambiguous, imp.line)

        submodule_hits = 0
        for item in imp.names:
            targets = resolver.resolve_in_module(self.adapter, module.files, item.name) if module.files else []
            module_files: List[str] = []
            if not targets:
                sub = self.adapter.submodule_specifier(imp.specifier, item.name)
                if sub:
                    sub_match = resolver.match_module(self.adapter, sub, self.path)
                    if sub_match:
                        module_files = list(sub_match.files)
                        targets = [file_id(f) for f in module_files]
                        submodule_hits += 1
                        for path in module_files:
                            self._emit(self.fid, file_id(path), IMPORTS, "", sub_match.ambiguous, imp.line)
            elif all(t.startswith("file:") for t in targets):
                module_files = [t[5:] for t in targets]

            binding = self.bindings.setdefault(item.binding, _Binding(specifier=imp.specifier))
            if targets:
                previous = [] if binding.unresolved else binding.targets
                binding.targets = sorted(set(previous) | set(targets))
                binding.module_files = sorted(set(binding.module_files) | set(module_files))
                binding.unresolved = False
                self._record(self.fid, _Outcome(targets), REF_IMPORT, imp.line)
            else:
                stub = self._stub(item.name, imp.specifier)
                if not binding.targets:
                    binding.targets = [stub.id]
                    binding.unresolved = True
                self._record(self.fid, _Outcome(stub=stub), REF_IMPORT, imp.line)

        if not match and not (imp.names and submodule_hits == len(imp.names)):
            stub = self._stub(imp.specifier, None, kind="module")
            self._emit(self.fid, stub.id, IMPORTS, "", False, imp.line)
            self.result.summary.unresolved_imports += 1

        if imp.module_alias:
            self.module_aliases[imp.module_alias] = module
        if imp.wildcard:
            self.wildcards.append(module)

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def _source_of(self, ref: Reference) -> str:
        if ref.scope:
            kind, qualname = split_scope_key(ref.scope[0])
            return symbol_id(kind, self.path, qualname)
        return self.fid

    def resolve_reference(self, ref: Reference) -> None:
        if ref.qualifier:
            outcome = self._qualified(ref)
        else:
            outcome = self._unqualified(ref)
        self._record(self._source_of(ref), outcome, ref.kind, ref.line)

    def _unqualified(self, ref: Reference) -> _Outcome:
        name = ref.name
        index = self.index

        # 1. enclosing scopes, innermost first
        passed_local = False
        for key in ref.scope:
            kind, qualname = split_scope_key(key)
            if kind in CLASS_LIKE_KINDS and passed_local:
                # Class bodies are not visible from their methods
                continue
            found = index.children.get((symbol_id(kind, self.path, qualname), name), ())
            if found:
                return _Outcome(_ids(found))
            if kind in _LOCAL_SCOPE_KINDS:
                passed_local = True

        # 2. file level
        found = index.file_top_level(self.path, name)
        if not found and self.adapter.package_scope:
            directory = self.path.rpartition("/")[0]
            found = [
                s for s in self.resolver.same_family(index.top_level.get(name, ()), self.family)
                if s.file_path.rpartition("/")[0] == directory
            ]
        if found:
            return _Outcome(_ids(found))

        # 3. imports
        binding = self.bindings.get(name)
        if binding is not None:
            if binding.unresolved:
                # Already counted once on the import record
                return _Outcome(stub=self._stub(name, binding.specifier), counted=False)
            return _Outcome(binding.targets)
        wildcard_hits: List[str] = []
        for module in self.wildcards:
            if module.files:
                wildcard_hits.extend(self.resolver.resolve_in_module(self.adapter, module.files, name))
        if wildcard_hits:
            return _Outcome(sorted(set(wildcard_hits)))

        # 4. global
        found = [
            s for s in self.resolver.same_family(index.top_level.get(name, ()), self.family)
            if s.file_path != self.path
        ]
        if found:
            return _Outcome(_ids(found))

        source = self.wildcards[0].specifier if len(self.wildcards) == 1 and not self.wildcards[0].files else None
        return _Outcome(stub=self._stub(name, source))

    def _qualified(self, ref: Reference) -> _Outcome:
        name = ref.name
        qualifier = ref.qualifier or ""
        index = self.index
        resolver = self.resolver

        if qualifier == "self":
            return self._self_member(ref)

        # Module alias, longest dotted prefix first
        segments = _segments(qualifier)
        for size in range(len(segments), 0, -1):
            alias = self._join(qualifier, segments[:size])
            module = self.module_aliases.get(alias)
            if module is None:
                continue
            return self._in_module(module.specifier, module.files, segments[size:], name)

        # Name bound by a named import
        binding = self.bindings.get(segments[0]) if segments else None
        if binding is not None:
            rest = segments[1:]
            if binding.unresolved:
                return _Outcome(stub=self._stub(name, ".".join([binding.specifier] + segments)), counted=False)
            if binding.module_files:
                return self._in_module(binding.specifier, binding.module_files, rest, name)
            found = resolver.members_of(self._class_like(binding.targets), name)
            if found:
                return _Outcome(_ids(found))

        last = segments[-1] if segments else ""
        builtin_root = bool(segments) and segments[0] in self.adapter.builtins and segments[0] not in index.by_name

        # In-tree type name
        if last in index.class_names:
            found = resolver.same_family(index.members_by_owner.get((last, name), ()), self.family)
            if found:
                return _Outcome(_ids(found))

        # Module path (``crate::a::b::f``)
        if self.adapter.path_qualifiers and not builtin_root:
            match = resolver.match_module(self.adapter, qualifier, self.path)
            if match:
                targets = resolver.resolve_in_module(self.adapter, match.files, name)
                if targets:
                    return _Outcome(targets)
                return _Outcome(stub=self._stub(name, qualifier))

        if builtin_root:
            return _Outcome(stub=self._stub(name, qualifier))

        # Unknown receiver: any member with that name
        found = resolver.same_family(index.members.get(name, ()), self.family)
        if found:
            return _Outcome(_ids(found))
        return _Outcome(stub=self._stub(name, None))

    def _self_member(self, ref: Reference) -> _Outcome:
        index = self.index
        resolver = self.resolver
        name = ref.name
        owner = ref.owner
        if owner:
            found = index.by_file_qualname.get((self.path, f"{owner}.{name}"), ())
            if found:
                return _Outcome(_ids(found))
            owner_name = owner.rsplit(".", 1)[-1]
            found = resolver.same_family(index.members_by_owner.get((owner_name, name), ()), self.family)
            if found:
                return _Outcome(_ids(found))
        found = resolver.same_family(index.members.get(name, ()), self.family)
        if found:
            return _Outcome(_ids(found))
        return _Outcome(stub=self._stub(name, owner))

    def _in_module(self, specifier: str, files: List[str], rest: List[str], name: str) -> _Outcome:
        """Resolve ``<module>.<rest...>.<name>`` starting from a module's files."""
        resolver = self.resolver
        source = ".".join([specifier] + rest) if rest else specifier
        if not files:
            return _Outcome(stub=self._stub(name, source))
        for segment in rest:
            sub = self.adapter.submodule_specifier(specifier, segment)
            match = resolver.match_module(self.adapter, sub, self.path) if sub else ModuleMatch()
            if match:
                specifier, files = sub, list(match.files)
                continue
            owners = self._class_like(resolver.resolve_in_module(self.adapter, files, segment))
            found = resolver.members_of(owners, name)
            if found:
                return _Outcome(_ids(found))
            return _Outcome(stub=self._stub(name, source))
        targets = resolver.resolve_in_module(self.adapter, files, name)
        if targets:
            return _Outcome(targets)
        return _Outcome(stub=self._stub(name, source))

    def _class_like(self, node_ids: Iterable[str]) -> List[Symbol]:
        symbols = (self.index.symbols.get(node_id) for node_id in node_ids)
        return [sym for sym in symbols if sym is not None and sym.kind in CLASS_LIKE_KINDS]

    @staticmethod
    def _join(qualifier: str, segments: List[str]) -> str:
        separator = "::" if "::" in qualifier else "."
        return separator.join(segments)
