"""Read-only access layer over the persisted code property graph.

Architecture:
- **SQLite**, opened read-only, holds the graph (``nodes``, ``edges``,
  ``sources``) plus optional precomputed tables (``sources_fts``,
  ``metrics``, ``dashboard_hotspots``, ``findings``).
- A small :class:`ConnectionPool` bounds concurrent access: at most
  ``max_open`` connections exist at once and at most ``max_idle`` are kept
  around between requests. Callers beyond the limit wait for a connection.

Optional tables are detected once when the store is opened and recorded in
:class:`Capabilities`; callers branch on those flags instead of catching
query failures.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import QueryTimeoutError, StoreError, StoreUnavailableError
from .models import (
    CALL_EDGE,
    FUNCTION_KIND,
    SEARCHABLE_KINDS,
    Deadline,
    FunctionMetrics,
    Node,
    Package,
    SearchResult,
    Stats,
)

logger = logging.getLogger(__name__)

MAX_OPEN_CONNECTIONS = 10
MAX_IDLE_CONNECTIONS = 5

# Neighbour lookups return at most this many ids per node
NEIGHBOR_LIMIT = 20

# SQLite VM instructions between deadline checks
PROGRESS_STEPS = 1000

OPTIONAL_TABLES = {
    "fts": "sources_fts",
    "metrics": "metrics",
    "hotspots": "dashboard_hotspots",
    "findings": "findings",
}

REQUIRED_TABLES = ("nodes", "edges", "sources")

# Columns the content search reads from the full-text index
FTS_COLUMNS = ("file", "content")

_NODE_COLUMNS = """
    id, kind, name,
    COALESCE(file, '') AS file,
    COALESCE(line, 0) AS line,
    COALESCE(package, '') AS package,
    COALESCE(type_info, '') AS type_info
"""

_SEARCH_COLUMNS = """
    n.id AS id, n.kind AS kind, n.name AS name,
    COALESCE(n.package, '') AS package,
    COALESCE(n.file, '') AS file,
    COALESCE(n.line, 0) AS line
"""

_KIND_PLACEHOLDERS = ", ".join("?" * len(SEARCHABLE_KINDS))


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _fts_phrase(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        kind=row["kind"],
        name=row["name"],
        file=row["file"],
        line=row["line"],
        package=row["package"],
        type_info=row["type_info"],
    )


def _row_to_search_result(row: sqlite3.Row) -> SearchResult:
    return SearchResult(
        id=row["id"],
        kind=row["kind"],
        name=row["name"],
        package=row["package"],
        file=row["file"],
        line=row["line"],
    )


# ===================================================================
# ConnectionPool
# ===================================================================

class ConnectionPool:
    """Bounded pool of read-only SQLite connections."""

    def __init__(
        self,
        db_path: Path,
        max_open: int = MAX_OPEN_CONNECTIONS,
        max_idle: int = MAX_IDLE_CONNECTIONS,
    ) -> None:
        self.db_path = db_path
        self.max_open = max_open
        self.max_idle = max_idle
        self._uri = db_path.resolve().as_uri() + "?mode=ro"
        self._slots = threading.BoundedSemaphore(max_open)
        self._idle: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StoreError("graph store is closed")

        # Blocks while max_open connections are checked out
        self._slots.acquire()
        try:
            with self._lock:
                conn = self._idle.pop() if self._idle else None
            if conn is None:
                conn = self._connect()
        except sqlite3.Error as exc:
            self._slots.release()
            raise StoreUnavailableError(f"cannot open {self.db_path}: {exc}") from exc
        except BaseException:
            self._slots.release()
            raise

        try:
            yield conn
        finally:
            self._release(conn)

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            keep = not self._closed and len(self._idle) < self.max_idle
            if keep:
                self._idle.append(conn)
        if not keep:
            conn.close()
        self._slots.release()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()


# ===================================================================
# GraphStore
# ===================================================================

@dataclass(frozen=True)
class Capabilities:
    """Which optional tables the opened database provides."""

    fts: bool = False
    metrics: bool = False
    hotspots: bool = False
    findings: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "fts": self.fts,
            "metrics": self.metrics,
            "hotspots": self.hotspots,
            "findings": self.findings,
        }


class GraphStore:
    """Read-only query interface over a CPG database.

    Safe to share between threads; every call borrows a pooled connection
    for its duration only. Each query method accepts an optional
    :class:`~cpg_explorer.models.Deadline`; once it expires the running
    statement is interrupted and :class:`QueryTimeoutError` is raised.
    """

    def __init__(
        self,
        db_path: Path | str,
        max_open: int = MAX_OPEN_CONNECTIONS,
        max_idle: int = MAX_IDLE_CONNECTIONS,
    ) -> None:
        self.db_path = Path(db_path)
        if not self.db_path.is_file():
            raise StoreUnavailableError(f"graph database not found: {self.db_path}")
        self._pool = ConnectionPool(self.db_path, max_open=max_open, max_idle=max_idle)
        self.capabilities = self._probe_capabilities()

    def close(self) -> None:
        self._pool.close()

    def __enter__(self) -> "GraphStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _probe_capabilities(self) -> Capabilities:
        with self._pool.connection() as conn:
            try:
                tables = {
                    row[0]
                    for row in conn.execute(
                        "SELECT name FROM sqlite_master WHERE type IN ('table', 'view')"
                    )
                }
            except sqlite3.DatabaseError as exc:
                raise StoreUnavailableError(
                    f"cannot read graph database {self.db_path}: {exc}"
                ) from exc

            for table in REQUIRED_TABLES:
                if table not in tables:
                    logger.warning("Required table '%s' is missing from %s", table, self.db_path)

            flags: Dict[str, bool] = {}
            for flag, table in OPTIONAL_TABLES.items():
                if table not in tables:
                    logger.info("Optional table '%s' not present; using fallback", table)
                    flags[flag] = False
                    continue
                # A virtual table can be listed while its module is not loaded
                try:
                    conn.execute(f"SELECT 1 FROM {table} LIMIT 0").fetchall()
                except sqlite3.OperationalError as exc:
                    logger.info("Optional table '%s' is unusable (%s); using fallback", table, exc)
                    flags[flag] = False
                    continue
                if flag == "fts":
                    columns = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
                    missing = [c for c in FTS_COLUMNS if c not in columns]
                    if missing:
                        logger.info(
                            "Optional table '%s' lacks column(s) %s; using fallback",
                            table, ", ".join(missing),
                        )
                        flags[flag] = False
                        continue
                flags[flag] = True

        return Capabilities(**flags)

    @contextmanager
    def _connection(self, deadline: Optional[Deadline]) -> Iterator[sqlite3.Connection]:
        with self._pool.connection() as conn:
            if deadline is not None:
                deadline.check()
                conn.set_progress_handler(lambda: 1 if deadline.expired else 0, PROGRESS_STEPS)
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                if deadline is not None and deadline.expired:
                    raise QueryTimeoutError("query interrupted: request deadline exceeded") from exc
                raise StoreError(str(exc)) from exc
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
            finally:
                if deadline is not None:
                    conn.set_progress_handler(None, 0)

    def _fetchall(self, sql: str, params: tuple = (), deadline: Optional[Deadline] = None) -> List[sqlite3.Row]:
        with self._connection(deadline) as conn:
            return conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple = (), deadline: Optional[Deadline] = None) -> Optional[sqlite3.Row]:
        with self._connection(deadline) as conn:
            return conn.execute(sql, params).fetchone()

    # ------------------------------------------------------------------
    # Nodes and neighbours
    # ------------------------------------------------------------------

    def get_node(self, node_id: str, deadline: Optional[Deadline] = None) -> Optional[Node]:
        row = self._fetchone(f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,), deadline)
        return _row_to_node(row) if row is not None else None

    def callees(self, node_id: str, deadline: Optional[Deadline] = None) -> List[str]:
        """Distinct functions called by *node_id*, at most ``NEIGHBOR_LIMIT``."""
        rows = self._fetchall(
            """
            SELECT DISTINCT e.target AS id
            FROM edges e
            JOIN nodes n ON e.target = n.id
            WHERE e.source = ? AND e.kind = ? AND n.kind = ?
            ORDER BY e.target
            LIMIT ?
            """,
            (node_id, CALL_EDGE, FUNCTION_KIND, NEIGHBOR_LIMIT),
            deadline,
        )
        return [row["id"] for row in rows]

    def callers(self, node_id: str, deadline: Optional[Deadline] = None) -> List[str]:
        """Distinct functions calling *node_id*, at most ``NEIGHBOR_LIMIT``."""
        rows = self._fetchall(
            """
            SELECT DISTINCT e.source AS id
            FROM edges e
            JOIN nodes n ON e.source = n.id
            WHERE e.target = ? AND e.kind = ? AND n.kind = ?
            ORDER BY e.source
            LIMIT ?
            """,
            (node_id, CALL_EDGE, FUNCTION_KIND, NEIGHBOR_LIMIT),
            deadline,
        )
        return [row["id"] for row in rows]

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def stats(self, deadline: Optional[Deadline] = None) -> Stats:
        queries = {
            "total_nodes": ("SELECT COUNT(*) FROM nodes", ()),
            "total_edges": ("SELECT COUNT(*) FROM edges", ()),
            "total_functions": ("SELECT COUNT(*) FROM nodes WHERE kind = ?", (FUNCTION_KIND,)),
            "total_packages": ("SELECT COUNT(DISTINCT package) FROM nodes WHERE package != ''", ()),
            "total_files": ("SELECT COUNT(DISTINCT file) FROM nodes WHERE file != ''", ()),
        }
        counts: Dict[str, int] = {}
        with self._connection(deadline) as conn:
            for key, (sql, params) in queries.items():
                counts[key] = conn.execute(sql, params).fetchone()[0] or 0
        return Stats(**counts)

    def packages(self, limit: int = 200, deadline: Optional[Deadline] = None) -> List[Package]:
        rows = self._fetchall(
            """
            SELECT
                package,
                COUNT(DISTINCT NULLIF(file, '')) AS file_count,
                COUNT(CASE WHEN kind = ? THEN 1 END) AS func_count
            FROM nodes
            WHERE package != ''
            GROUP BY package
            ORDER BY func_count DESC, package
            LIMIT ?
            """,
            (FUNCTION_KIND, limit),
            deadline,
        )
        return [
            Package(name=row["package"], file_count=row["file_count"], func_count=row["func_count"])
            for row in rows
        ]

    def package_names(self, limit: int = 200, deadline: Optional[Deadline] = None) -> List[str]:
        """Distinct non-empty packages that contain at least one function."""
        rows = self._fetchall(
            """
            SELECT DISTINCT package
            FROM nodes
            WHERE package != '' AND kind = ?
            ORDER BY package
            LIMIT ?
            """,
            (FUNCTION_KIND, limit),
            deadline,
        )
        return [row["package"] for row in rows]

    def package_edges(self, limit: int = 500, deadline: Optional[Deadline] = None) -> List[tuple]:
        """Raw ``(source_package, target_package)`` pairs of cross-package calls."""
        rows = self._fetchall(
            """
            SELECT DISTINCT src.package AS source_pkg, tgt.package AS target_pkg
            FROM edges e
            JOIN nodes src ON e.source = src.id
            JOIN nodes tgt ON e.target = tgt.id
            WHERE e.kind = ?
                AND src.kind = ? AND tgt.kind = ?
                AND src.package != ''
                AND tgt.package != ''
                AND src.package != tgt.package
            ORDER BY source_pkg, target_pkg
            LIMIT ?
            """,
            (CALL_EDGE, FUNCTION_KIND, FUNCTION_KIND, limit),
            deadline,
        )
        return [(row["source_pkg"], row["target_pkg"]) for row in rows]

    def functions_in_package(
        self, package: str, limit: int = 100, deadline: Optional[Deadline] = None
    ) -> List[Node]:
        rows = self._fetchall(
            f"""
            SELECT {_NODE_COLUMNS}
            FROM nodes
            WHERE package = ? AND kind = ?
            ORDER BY name, id
            LIMIT ?
            """,
            (package, FUNCTION_KIND, limit),
            deadline,
        )
        return [_row_to_node(row) for row in rows]

    # ------------------------------------------------------------------
    # Source text
    # ------------------------------------------------------------------

    def source_for_function(self, node_id: str, deadline: Optional[Deadline] = None) -> str:
        row = self._fetchone(
            """
            SELECT COALESCE(s.content, '') AS content
            FROM sources s
            JOIN nodes n ON s.file = n.file
            WHERE n.id = ?
            LIMIT 1
            """,
            (node_id,),
            deadline,
        )
        return row["content"] if row is not None else ""

    def source_for_file(self, file: str, deadline: Optional[Deadline] = None) -> str:
        row = self._fetchone(
            "SELECT COALESCE(content, '') AS content FROM sources WHERE file = ? LIMIT 1",
            (file,),
            deadline,
        )
        return row["content"] if row is not None else ""

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_names(self, query: str, limit: int, deadline: Optional[Deadline] = None) -> List[SearchResult]:
        """Substring match on node names ranked exact < prefix < substring, then by length."""
        escaped = _like_escape(query)
        rows = self._fetchall(
            f"""
            SELECT {_SEARCH_COLUMNS}
            FROM nodes n
            WHERE n.name LIKE ? ESCAPE '\\' AND n.kind IN ({_KIND_PLACEHOLDERS})
            ORDER BY
                CASE WHEN n.name = ? THEN 0
                     WHEN n.name LIKE ? ESCAPE '\\' THEN 1
                     ELSE 2
                END,
                length(n.name),
                n.name,
                n.id
            LIMIT ?
            """,
            (f"%{escaped}%", *SEARCHABLE_KINDS, query, f"{escaped}%", limit),
            deadline,
        )
        return [_row_to_search_result(row) for row in rows]

    def search_content_fts(self, query: str, limit: int, deadline: Optional[Deadline] = None) -> List[SearchResult]:
        """Functions in files whose text matches *query* in the full-text index."""
        rows = self._fetchall(
            f"""
            SELECT DISTINCT {_SEARCH_COLUMNS}
            FROM sources_fts
            JOIN nodes n ON n.file = sources_fts.file
            WHERE sources_fts MATCH ? AND n.kind IN ({_KIND_PLACEHOLDERS})
            ORDER BY file, line, id
            LIMIT ?
            """,
            (_fts_phrase(query), *SEARCHABLE_KINDS, limit),
            deadline,
        )
        return [_row_to_search_result(row) for row in rows]

    def search_content_scan(self, query: str, limit: int, deadline: Optional[Deadline] = None) -> List[SearchResult]:
        """Same as :meth:`search_content_fts` using a plain substring scan."""
        rows = self._fetchall(
            f"""
            SELECT DISTINCT {_SEARCH_COLUMNS}
            FROM sources s
            JOIN nodes n ON n.file = s.file
            WHERE s.content LIKE ? ESCAPE '\\' AND n.kind IN ({_KIND_PLACEHOLDERS})
            ORDER BY file, line, id
            LIMIT ?
            """,
            (f"%{_like_escape(query)}%", *SEARCHABLE_KINDS, limit),
            deadline,
        )
        return [_row_to_search_result(row) for row in rows]

    # ------------------------------------------------------------------
    # Metrics, hotspots, findings (optional tables)
    # ------------------------------------------------------------------

    def function_metrics(self, node_id: str, deadline: Optional[Deadline] = None) -> FunctionMetrics:
        if not self.capabilities.metrics:
            return FunctionMetrics(function_id=node_id)
        row = self._fetchone(
            """
            SELECT
                COALESCE(cyclomatic_complexity, 0) AS cyclomatic_complexity,
                COALESCE(loc, 0) AS loc,
                COALESCE(num_params, 0) AS num_params,
                COALESCE(fan_in, 0) AS fan_in,
                COALESCE(fan_out, 0) AS fan_out
            FROM metrics
            WHERE function_id = ?
            LIMIT 1
            """,
            (node_id,),
            deadline,
        )
        if row is None:
            return FunctionMetrics(function_id=node_id)
        return FunctionMetrics(function_id=node_id, **dict(row))

    def precomputed_hotspots(self, limit: int, deadline: Optional[Deadline] = None) -> List[sqlite3.Row]:
        """Top rows of ``dashboard_hotspots``; empty when the table is absent."""
        if not self.capabilities.hotspots:
            return []
        return self._fetchall(
            """
            SELECT
                h.node_id AS id,
                COALESCE(n.name, h.node_id) AS name,
                COALESCE(n.package, '') AS package,
                COALESCE(n.file, '') AS file,
                COALESCE(n.line, 0) AS line,
                COALESCE(h.complexity, 0) AS complexity,
                COALESCE(h.loc, 0) AS loc,
                COALESCE(h.fan_in, 0) AS fan_in,
                COALESCE(h.fan_out, 0) AS fan_out,
                COALESCE(h.score, 0) AS score
            FROM dashboard_hotspots h
            LEFT JOIN nodes n ON n.id = h.node_id
            ORDER BY score DESC, name, id
            LIMIT ?
            """,
            (limit,),
            deadline,
        )

    def computed_hotspots(self, limit: int, deadline: Optional[Deadline] = None) -> List[sqlite3.Row]:
        """Top functions by live-computed score; empty when ``metrics`` is absent.

        Same score expression and ordering as ``dashboard_hotspots``.
        """
        if not self.capabilities.metrics:
            return []
        return self._fetchall(
            """
            SELECT
                n.id AS id,
                n.name AS name,
                COALESCE(n.package, '') AS package,
                COALESCE(n.file, '') AS file,
                COALESCE(n.line, 0) AS line,
                COALESCE(m.cyclomatic_complexity, 0) AS complexity,
                COALESCE(m.loc, 0) AS loc,
                COALESCE(m.fan_in, 0) AS fan_in,
                COALESCE(m.fan_out, 0) AS fan_out
            FROM nodes n
            JOIN metrics m ON m.function_id = n.id
            WHERE n.kind = ?
            ORDER BY
                COALESCE(m.cyclomatic_complexity, 0) * 2
                    + COALESCE(m.fan_in, 0)
                    + COALESCE(m.fan_out, 0) DESC,
                n.name,
                n.id
            LIMIT ?
            """,
            (FUNCTION_KIND, limit),
            deadline,
        )

    def findings(self, node_id: str, deadline: Optional[Deadline] = None) -> List[sqlite3.Row]:
        """Findings attached to *node_id* in id order; empty when the table is absent."""
        if not self.capabilities.findings:
            return []
        return self._fetchall(
            """
            SELECT
                id,
                COALESCE(node_id, '') AS node_id,
                COALESCE(category, '') AS category,
                COALESCE(severity, '') AS severity,
                COALESCE(message, '') AS message
            FROM findings
            WHERE node_id = ?
            ORDER BY id
            """,
            (node_id,),
            deadline,
        )
