"""Incremental update controller.

One call to :meth:`UpdateController.update` turns a published base version
(or nothing) plus the current state of the source tree into a new version:

1. scan the root and hash every supported file
2. classify files as unchanged, changed, added or removed
3. parse and extract changed/added files in parallel, under a size and a
   time guard
4. replace the nodes of changed files and drop those of removed files
5. re-resolve every affected file (changed files, files mentioning a name
   defined before or after the change or re-exported under another
   binding, files that pointed into removed nodes)
6. recompute ``depends_on``, prune orphaned stubs and freeze

Unchanged files are never reparsed: their symbol tables travel with the
version. Cancellation is checked between phases; a cancelled update raises
:class:`~codeanchor.errors.BuildCancelled` and nothing is published.
"""

from __future__ import annotations

import hashlib
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import BuildCancelled, NoSupportedFiles, ParseError, UnsupportedLanguage
from .extractor import extract_file
from .graph import GraphBuilder, GraphVersion
from .models import (
    PARSE_FAILED,
    PARSE_PARTIAL,
    BuildOptions,
    BuildReport,
    FileFailure,
    SourceFile,
    SymbolTable,
    file_id,
)
from .parser import AdapterRegistry, ModuleIndex, ParseOutcome, default_registry
from .resolver import Resolver
from .scanner import ScannedFile, scan

logger = logging.getLogger(__name__)

REASON_UNSUPPORTED = "unsupported language"
REASON_TOO_LARGE = "file too large"
REASON_TIMEOUT = "parse timeout"
REASON_UNREADABLE = "unreadable"

_POLL_SECONDS = 0.05


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


@dataclass
class _Candidate:
    path: str
    language: str
    content_hash: str
    size: int
    content: Optional[bytes] = None
    failure: Optional[str] = None


@dataclass
class _Parsed:
    path: str
    outcome: Optional[ParseOutcome] = None
    table: Optional[SymbolTable] = None
    failure: Optional[str] = None


class UpdateController:
    """Compute the next graph version for one project root."""

    def __init__(
        self,
        root: Path,
        options: Optional[BuildOptions] = None,
        registry: Optional[AdapterRegistry] = None,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.root = Path(root)
        self.options = options or BuildOptions()
        self.registry = registry or default_registry()
        self._cancelled = cancelled or (lambda: False)

    def _checkpoint(self, phase: str) -> None:
        if self._cancelled():
            logger.info("Rebuild superseded during %s; discarding partial work", phase)
            raise BuildCancelled(f"rebuild superseded during {phase}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def update(self, base: Optional[GraphVersion] = None) -> Tuple[GraphVersion, BuildReport]:
        started = time.perf_counter()
        report = BuildReport()

        scanned = scan(self.root, self.options.ignore_patterns, self.registry)
        candidates, unsupported = self._hash_files(scanned)
        if not candidates:
            raise NoSupportedFiles(self.root)
        self._checkpoint("scan")

        base_files = base.files if base is not None else {}
        current = {c.path: c for c in candidates}
        removed = sorted(p for p in base_files if p not in current)
        changed: List[_Candidate] = []
        for cand in candidates:
            previous = base_files.get(cand.path)
            if previous is not None and previous.content_hash == cand.content_hash \
                    and previous.language == cand.language:
                report.files_unchanged += 1
            else:
                changed.append(cand)
        logger.info(
            "Scanned %s: %d files (%d changed, %d unchanged, %d removed)",
            self.root, len(candidates), len(changed), report.files_unchanged, len(removed),
        )

        if base is not None and not changed and not removed:
            self._finish(report, base, unsupported, started)
            logger.info("No changes; keeping graph version %d", base.version)
            return base, report

        parsed = self._parse_all([c for c in changed if c.failure is None])
        self._checkpoint("parse")

        affected = self._affected(base, changed, removed, parsed)

        builder = GraphBuilder(base, root=str(self.root))
        for path in removed:
            builder.remove_file(path)
        for cand in changed:
            builder.remove_file(cand.path)
            source = SourceFile(
                path=cand.path,
                language=cand.language,
                content_hash=cand.content_hash,
                parse_status=PARSE_FAILED,
                size=cand.size,
            )
            result = parsed.get(cand.path)
            failure = cand.failure or (result.failure if result is not None else REASON_UNREADABLE)
            if result is not None and result.outcome is not None and result.table is not None:
                source.parse_status = result.outcome.status
                source.error_spans = list(result.outcome.error_spans)
                builder.add_file(source, result.table)
            else:
                builder.add_failure(source, FileFailure(
                    path=cand.path, reason=failure, language=cand.language,
                    content_hash=cand.content_hash,
                ))
        self._checkpoint("definition pass")

        resolvable = sorted(
            p for p in affected
            if p in builder.files and builder.files[p].parse_status != PARSE_FAILED
        )
        resolver = Resolver(
            builder.definition_index(),
            builder.tables,
            {path: source.language for path, source in builder.files.items()},
            self.registry,
            import_depth=self.options.import_depth,
        )
        for path in affected:
            builder.clear_resolution(path)
        for resolution in resolver.resolve_files(resolvable, workers=self.options.workers):
            builder.apply_resolution(resolution.path, resolution.edges, resolution.stubs, resolution.summary)
        self._checkpoint("resolution pass")

        builder.derive_depends_on()
        pruned = builder.prune()
        version = builder.freeze((base.version if base is not None else 0) + 1)

        report.files_reparsed = len(changed)
        report.files_removed = len(removed)
        report.files_reresolved = len(resolvable)
        self._finish(report, version, unsupported, started)
        logger.info(
            "Built graph version %d: %d files, %d symbols, %d edges "
            "(%d reparsed, %d re-resolved, %d stubs pruned) in %d ms",
            version.version, report.files_processed, report.symbol_count, report.edge_count,
            report.files_reparsed, report.files_reresolved, pruned, report.duration_ms,
        )
        return version, report

    def _finish(self, report: BuildReport, version: GraphVersion, unsupported: List[FileFailure],
                started: float) -> None:
        report.version = version.version
        report.files_processed = len(version.files)
        report.files_partial = sum(1 for f in version.files.values() if f.parse_status == PARSE_PARTIAL)
        report.failures = list(version.failures.values()) + unsupported
        report.failures.sort(key=lambda f: f.path)
        report.files_failed = len(report.failures)
        report.symbol_count = len(version.symbols)
        report.edge_count = len(version.edges)
        report.duration_ms = int((time.perf_counter() - started) * 1000)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _hash_files(self, scanned: List[ScannedFile]) -> Tuple[List[_Candidate], List[FileFailure]]:
        candidates: List[_Candidate] = []
        unsupported: List[FileFailure] = []
        for item in scanned:
            if item.language is None:
                # Not source code in any known language
                continue
            if not self.registry.supports(item.language):
                unsupported.append(FileFailure(item.path, REASON_UNSUPPORTED, item.language))
                continue
            try:
                content = item.abs_path.read_bytes()
            except OSError as exc:
                logger.warning("Could not read %s: %s", item.path, exc)
                unsupported.append(FileFailure(item.path, REASON_UNREADABLE, item.language))
                continue
            cand = _Candidate(
                path=item.path,
                language=item.language,
                content_hash=content_hash(content),
                size=len(content),
            )
            if cand.size > self.options.max_file_bytes:
                cand.failure = REASON_TOO_LARGE
                logger.warning("Skipping %s: %d bytes exceeds %d", item.path, cand.size, self.options.max_file_bytes)
            else:
                cand.content = content
            candidates.append(cand)
        return candidates, unsupported

    def _parse_one(self, cand: _Candidate, started: Dict[str, float]) -> _Parsed:
        started[cand.path] = time.monotonic()
        adapter = self.registry.get(cand.language)
        if adapter is None or cand.content is None:
            return _Parsed(cand.path, failure=REASON_UNSUPPORTED)
        try:
            outcome, table = extract_file(adapter, cand.content)
        except UnsupportedLanguage:
            return _Parsed(cand.path, failure=REASON_UNSUPPORTED)
        except ParseError as exc:
            logger.warning("Could not parse %s: %s", cand.path, exc.reason)
            return _Parsed(cand.path, failure=exc.reason)
        except (RecursionError, ValueError, UnicodeError) as exc:
            logger.warning("Extraction failed for %s: %s", cand.path, exc)
            return _Parsed(cand.path, failure=f"extraction error: {exc}")
        return _Parsed(cand.path, outcome=outcome, table=table)

    def _parse_all(self, todo: List[_Candidate]) -> Dict[str, _Parsed]:
        """Parse files on a worker pool; a parse over the time guard is abandoned."""
        results: Dict[str, _Parsed] = {}
        if not todo:
            return results
        started: Dict[str, float] = {}
        timeout = self.options.parse_timeout
        pool = ThreadPoolExecutor(max_workers=max(1, self.options.workers), thread_name_prefix="anchor-parse")
        futures: Dict[Future, str] = {pool.submit(self._parse_one, cand, started): cand.path for cand in todo}
        pending: Set[Future] = set(futures)
        abandoned = False
        try:
            while pending:
                done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    path = futures[future]
                    results[path] = future.result()
                now = time.monotonic()
                for future in list(pending):
                    path = futures[future]
                    began = started.get(path)
                    if began is not None and timeout > 0 and now - began > timeout:
                        logger.warning("Parse of %s exceeded %.1fs; marking failed", path, timeout)
                        results[path] = _Parsed(path, failure=REASON_TIMEOUT)
                        future.cancel()
                        pending.discard(future)
                        abandoned = True
                if self._cancelled():
                    break
        finally:
            # Abandoned parses finish in the background; their results are dropped
            pool.shutdown(wait=not (pending or abandoned), cancel_futures=True)
        for cand in todo:
            results.setdefault(cand.path, _Parsed(cand.path, failure=REASON_TIMEOUT))
        logger.debug("Parsed %d files", len(todo))
        return results

    def _affected(
        self,
        base: Optional[GraphVersion],
        changed: List[_Candidate],
        removed: List[str],
        parsed: Dict[str, _Parsed],
    ) -> Set[str]:
        """Files whose reference/import edges must be recomputed."""
        affected: Set[str] = {c.path for c in changed}
        if base is None:
            return affected

        names: Set[str] = set()
        touched = [c.path for c in changed] + removed
        for path in touched:
            old_table = base.tables.get(path)
            if old_table is not None:
                names.update(old_table.defined_names())
            result = parsed.get(path)
            if result is not None and result.table is not None:
                names.update(result.table.defined_names())
            adapter = self.registry.for_path(path)
            if adapter is not None and (path not in base.files or path in removed):
                names.update(adapter.module_keys(path))

        for name in names:
            affected.update(base.name_index.get(name, ()))

        # Follow re-exports: an affected file may hand a changed name on under
        # another binding, so importers of that binding are affected as well
        tables = dict(base.tables)
        for path, result in parsed.items():
            if result.table is not None:
                tables[path] = result.table
        modules = ModuleIndex.build(set(base.files) | {c.path for c in changed})
        sources = set(touched) | affected
        frontier = set(affected)
        for _ in range(max(0, self.options.import_depth)):
            exported: Set[str] = set()
            for path in sorted(frontier):
                exported.update(self._reexported(path, tables.get(path), sources, names, modules))
            names.update(exported)
            reached: Set[str] = set()
            for name in exported:
                reached.update(base.name_index.get(name, ()))
            frontier = reached - affected
            if not frontier:
                break
            affected.update(frontier)
            sources.update(frontier)

        for path in touched:
            old_file = base.files.get(path)
            if old_file is None:
                continue
            for node_id in [file_id(path)] + list(old_file.symbol_ids):
                for edge in base.in_edges.get(node_id, ()):
                    affected.add(edge.origin)

        affected.difference_update(removed)
        logger.debug("%d files affected by %d changed and %d removed", len(affected), len(changed), len(removed))
        return affected

    def _reexported(
        self,
        path: str,
        table: Optional[SymbolTable],
        sources: Set[str],
        names: Set[str],
        modules: ModuleIndex,
    ) -> Set[str]:
        """Bindings *path* takes from a file in *sources* or for a name in *names*."""
        adapter = self.registry.for_path(path)
        if table is None or adapter is None:
            return set()
        bindings: Set[str] = set()
        for imp in table.imports:
            match = adapter.match_module(imp.specifier, path, modules)
            from_source = any(f in sources for f in match.files)
            if from_source and imp.module_alias:
                bindings.add(imp.module_alias)
            for item in imp.names:
                if from_source or item.name in names:
                    bindings.add(item.binding)
        return bindings


def build_version(
    root: Path,
    base: Optional[GraphVersion] = None,
    options: Optional[BuildOptions] = None,
    registry: Optional[AdapterRegistry] = None,
) -> Tuple[GraphVersion, BuildReport]:
    """One-shot convenience wrapper around :class:`UpdateController`."""
    return UpdateController(root, options, registry).update(base)
