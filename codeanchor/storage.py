"""Persistence layer for built graph versions.

One SQLite database per project root holds the latest build record: schema
version, per-file state (hash, status, error spans, symbol table), failures,
symbols, stubs, edges, resolution summaries and the reverse name index.
Loading it and re-hashing the tree is enough to decide, file by file, what
an incremental rebuild has to redo.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Set

from .config import MEMORY_DIR, SCHEMA_VERSION, ensure_base_dirs
from .graph import GraphVersion
from .models import (
    Edge,
    ErrorSpan,
    ExternalStub,
    FileFailure,
    ResolutionSummary,
    SourceFile,
    Symbol,
    SymbolTable,
)

logger = logging.getLogger(__name__)

DB_NAME = "graph.db"


def project_dir_for(root: Path) -> Path:
    """Storage directory for *root*: ``<memory dir>/<name>-<hash of path>``."""
    root = Path(root).resolve()
    digest = hashlib.sha1(str(root).encode("utf-8")).hexdigest()[:12]
    return MEMORY_DIR / f"{root.name or 'root'}-{digest}"


# ===================================================================
# ProjectManager  (project storage directories)
# ===================================================================

class ProjectManager:
    """Manage the per-project storage directories under the memory dir."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, root: Path) -> Path:
        path = project_dir_for(root)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def open_store(self, root: Path) -> "GraphStore":
        return GraphStore(self.project_dir(root))

    def delete_project(self, root: Path) -> bool:
        path = project_dir_for(root)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True


# ===================================================================
# GraphStore  (SQLite)
# ===================================================================

class GraphStore:
    """SQLite build record for one project."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = Path(project_dir)
        self.project_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.project_dir / DB_NAME
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "GraphStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS files (
                path          TEXT PRIMARY KEY,
                language      TEXT NOT NULL,
                content_hash  TEXT NOT NULL,
                parse_status  TEXT NOT NULL,
                size          INTEGER NOT NULL,
                symbol_ids    TEXT NOT NULL,
                error_spans   TEXT NOT NULL,
                symbol_table  TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS failures (
                path         TEXT PRIMARY KEY,
                reason       TEXT NOT NULL,
                language     TEXT,
                content_hash TEXT
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS symbols (
                id         TEXT PRIMARY KEY,
                kind       TEXT NOT NULL,
                name       TEXT NOT NULL,
                qualname   TEXT NOT NULL,
                file_path  TEXT NOT NULL,
                start_line INTEGER NOT NULL,
                start_col  INTEGER NOT NULL,
                end_line   INTEGER NOT NULL,
                end_col    INTEGER NOT NULL,
                start_byte INTEGER NOT NULL,
                end_byte   INTEGER NOT NULL,
                parent_id  TEXT,
                signature  TEXT,
                docstring  TEXT
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS stubs (
                id     TEXT PRIMARY KEY,
                name   TEXT NOT NULL,
                source TEXT,
                kind   TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS edges (
                src       TEXT NOT NULL,
                dst       TEXT NOT NULL,
                kind      TEXT NOT NULL,
                subtype   TEXT NOT NULL,
                ambiguous INTEGER NOT NULL,
                line      INTEGER NOT NULL,
                origin    TEXT NOT NULL,
                PRIMARY KEY (src, dst, kind, subtype)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS name_index (
                name TEXT NOT NULL,
                path TEXT NOT NULL,
                PRIMARY KEY (name, path)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS summaries (
                path               TEXT PRIMARY KEY,
                resolved           INTEGER NOT NULL,
                ambiguous          INTEGER NOT NULL,
                unresolved         INTEGER NOT NULL,
                unresolved_imports INTEGER NOT NULL
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_edges_dst ON edges(dst)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_symbols_name ON symbols(name)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def schema_version(self) -> Optional[int]:
        value = self.get_meta("schema_version")
        return int(value) if value is not None else None

    def clear(self) -> None:
        with self.conn:
            for table in ("meta", "files", "failures", "symbols", "stubs", "edges", "name_index", "summaries"):
                self.conn.execute(f"DELETE FROM {table}")

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_version(self, version: GraphVersion) -> None:
        """Replace the stored build record with *version* in one transaction."""
        with self.conn:
            cur = self.conn.cursor()
            for table in ("meta", "files", "failures", "symbols", "stubs", "edges", "name_index", "summaries"):
                cur.execute(f"DELETE FROM {table}")
            cur.executemany(
                "INSERT INTO meta (key, value) VALUES (?, ?)",
                [
                    ("schema_version", str(SCHEMA_VERSION)),
                    ("version", str(version.version)),
                    ("root", version.root),
                ],
            )
            cur.executemany(
                """
                INSERT INTO files (
                    path, language, content_hash, parse_status, size,
                    symbol_ids, error_spans, symbol_table
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        f.path,
                        f.language,
                        f.content_hash,
                        f.parse_status,
                        f.size,
                        json.dumps(f.symbol_ids),
                        json.dumps([asdict(span) for span in f.error_spans]),
                        version.tables.get(f.path, SymbolTable()).canonical_json(),
                    )
                    for f in version.files.values()
                ],
            )
            cur.executemany(
                "INSERT INTO failures (path, reason, language, content_hash) VALUES (?, ?, ?, ?)",
                [(f.path, f.reason, f.language, f.content_hash) for f in version.failures.values()],
            )
            cur.executemany(
                """
                INSERT INTO symbols (
                    id, kind, name, qualname, file_path, start_line, start_col,
                    end_line, end_col, start_byte, end_byte, parent_id, signature, docstring
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        s.id, s.kind, s.name, s.qualname, s.file_path, s.start_line, s.start_col,
                        s.end_line, s.end_col, s.start_byte, s.end_byte, s.parent_id,
                        s.signature, s.docstring,
                    )
                    for s in version.symbols.values()
                ],
            )
            cur.executemany(
                "INSERT INTO stubs (id, name, source, kind) VALUES (?, ?, ?, ?)",
                [(s.id, s.name, s.source, s.kind) for s in version.stubs.values()],
            )
            cur.executemany(
                """
                INSERT INTO edges (src, dst, kind, subtype, ambiguous, line, origin)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (e.src, e.dst, e.kind, e.subtype, int(e.ambiguous), e.line, e.origin)
                    for e in version.edges.values()
                ],
            )
            cur.executemany(
                "INSERT INTO name_index (name, path) VALUES (?, ?)",
                [(name, path) for name, paths in version.name_index.items() for path in sorted(paths)],
            )
            cur.executemany(
                """
                INSERT INTO summaries (path, resolved, ambiguous, unresolved, unresolved_imports)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (path, s.resolved, s.ambiguous, s.unresolved, s.unresolved_imports)
                    for path, s in version.summaries.items()
                ],
            )
        logger.info(
            "Saved graph version %d (%d files, %d symbols, %d edges) to %s",
            version.version, len(version.files), len(version.symbols), len(version.edges), self.db_path,
        )

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load_version(self) -> Optional[GraphVersion]:
        """The stored version, or ``None`` when absent or written by another schema."""
        stored_schema = self.schema_version()
        if stored_schema is None:
            return None
        if stored_schema != SCHEMA_VERSION:
            logger.warning(
                "Stored graph schema %d does not match %d; a full rebuild is needed",
                stored_schema, SCHEMA_VERSION,
            )
            return None

        files: Dict[str, SourceFile] = {}
        tables: Dict[str, SymbolTable] = {}
        for row in self.conn.execute("SELECT * FROM files ORDER BY path"):
            files[row["path"]] = SourceFile(
                path=row["path"],
                language=row["language"],
                content_hash=row["content_hash"],
                parse_status=row["parse_status"],
                size=row["size"],
                symbol_ids=json.loads(row["symbol_ids"]),
                error_spans=[ErrorSpan(**span) for span in json.loads(row["error_spans"])],
            )
            tables[row["path"]] = SymbolTable.from_dict(json.loads(row["symbol_table"]))

        failures = {
            row["path"]: FileFailure(row["path"], row["reason"], row["language"], row["content_hash"])
            for row in self.conn.execute("SELECT * FROM failures ORDER BY path")
        }
        symbols = {
            row["id"]: Symbol(
                id=row["id"],
                kind=row["kind"],
                name=row["name"],
                qualname=row["qualname"],
                file_path=row["file_path"],
                start_line=row["start_line"],
                start_col=row["start_col"],
                end_line=row["end_line"],
                end_col=row["end_col"],
                start_byte=row["start_byte"],
                end_byte=row["end_byte"],
                parent_id=row["parent_id"],
                signature=row["signature"] or "",
                docstring=row["docstring"] or "",
            )
            for row in self.conn.execute("SELECT * FROM symbols")
        }
        stubs = {
            row["id"]: ExternalStub(row["id"], row["name"], row["source"], row["kind"])
            for row in self.conn.execute("SELECT * FROM stubs")
        }
        edges = {}
        for row in self.conn.execute("SELECT * FROM edges"):
            edge = Edge(
                src=row["src"],
                dst=row["dst"],
                kind=row["kind"],
                subtype=row["subtype"],
                ambiguous=bool(row["ambiguous"]),
                line=row["line"],
                origin=row["origin"],
            )
            edges[edge.key] = edge
        name_index: Dict[str, Set[str]] = {}
        for row in self.conn.execute("SELECT name, path FROM name_index"):
            name_index.setdefault(row["name"], set()).add(row["path"])
        summaries = {
            row["path"]: ResolutionSummary(
                row["resolved"], row["ambiguous"], row["unresolved"], row["unresolved_imports"],
            )
            for row in self.conn.execute("SELECT * FROM summaries")
        }

        version = GraphVersion(
            version=int(self.get_meta("version") or 0),
            root=self.get_meta("root") or "",
            files=files,
            tables=tables,
            failures=failures,
            symbols=symbols,
            stubs=stubs,
            edges=edges,
            summaries=summaries,
            name_index=name_index,
        )
        logger.info("Loaded graph version %d from %s", version.version, self.db_path)
        return version
