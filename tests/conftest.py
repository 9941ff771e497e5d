"""Pytest configuration and fixtures for CPG Explorer tests.

The fixtures build small SQLite code property graphs on disk. The sample
graph looks like this (all ``call`` edges between functions)::

    api.Handle ──> core.Run ──> util.Format <─┐ (self-loop)
                     ^              ^    └────┘
    core.Main ───────┘              │
        └──────> util.Helper ───────┘
"""

import sqlite3
from pathlib import Path
from typing import Generator

import pytest

from cpg_explorer.engine import ExplorerEngine
from cpg_explorer.storage import GraphStore

NODES = [
    # id, kind, name, file, line, package, type_info
    ("core.Main", "function", "Main", "core/main.go", 10, "core", "func()"),
    ("core.Run", "function", "Run", "core/main.go", 20, "core", "func() error"),
    ("core.Config", "type", "Config", "core/config.go", 3, "core", None),
    ("util.Helper", "function", "Helper", "util/helper.go", 5, "util", None),
    ("util.Format", "function", "Format", "util/helper.go", 15, "util", "func(string) string"),
    ("api.Handle", "function", "Handle", "api/handler.go", 3, "api", None),
    ("search.Foo", "function", "Foo", "search/foo.go", 1, "search", None),
    ("search.FooBar", "function", "FooBar", "search/foo.go", 5, "search", None),
    ("search.BarFoo", "method", "BarFoo", "search/foo.go", 9, "search", None),
    ("pkg.FooPkg", "package", "FooPkg", None, None, None, None),
    ("orphan", "function", "orphan", None, None, None, None),
]

EDGES = [
    ("core.Main", "core.Run", "call"),
    ("core.Main", "core.Run", "call"),  # stored twice
    ("core.Main", "util.Helper", "call"),
    ("core.Main", "core.Config", "call"),  # not a function target
    ("core.Main", "ghost", "call"),  # dangling in storage
    ("core.Main", "util.Format", "ref"),  # not a call
    ("core.Run", "util.Format", "call"),
    ("util.Helper", "util.Format", "call"),
    ("util.Format", "util.Format", "call"),
    ("api.Handle", "core.Run", "call"),
]

SOURCES = [
    ("core/main.go", "package core\n\nfunc Main() { Run() }\n\nfunc Run() error { return nil }\n"),
    ("util/helper.go", "package util\n\nfunc Helper() string { return fmt.Sprintf(\"%d\", 1) }\n"),
    ("api/handler.go", "package api\n\nfunc Handle() { core.Run() }\n"),
    ("search/foo.go", "package search\n"),
]

METRICS = [
    # function_id, cyclomatic_complexity, loc, num_params, fan_in, fan_out
    ("core.Main", 5, 40, 0, 2, 3),
    ("core.Run", 3, 12, 0, 2, 1),
    ("util.Helper", 1, 4, 0, 1, 1),
    ("util.Format", 2, 6, 1, 2, 0),
    ("api.Handle", 1, 3, 2, 0, 2),
    ("search.Foo", None, None, None, None, None),
]

FINDINGS = [
    (1, "core.Main", "style", "low", "long function"),
    (2, "core.Main", "security", "critical", "command injection"),
    (3, "core.Main", "style", "info", "missing comment"),
    (4, "core.Main", "bug", "HIGH", "ignored error"),
    (5, "core.Main", "perf", "medium", "allocation in loop"),
    (6, "util.Format", "bug", "low", "unused result"),
]


def _score(cc, fan_in, fan_out):
    return (cc or 0) * 2 + (fan_in or 0) + (fan_out or 0)


def _create_fts(conn: sqlite3.Connection) -> bool:
    for module in ("fts5", "fts4"):
        try:
            conn.execute(f"CREATE VIRTUAL TABLE sources_fts USING {module}(file, content)")
        except sqlite3.OperationalError:
            continue
        conn.executemany("INSERT INTO sources_fts (file, content) VALUES (?, ?)", SOURCES)
        return True
    return False


def build_cpg_db(
    path: Path,
    fts: bool = True,
    metrics: bool = True,
    hotspots: bool = True,
    findings: bool = True,
    nodes=NODES,
    edges=EDGES,
) -> Path:
    """Write a sample CPG database to *path* with the chosen optional tables."""
    conn = sqlite3.connect(str(path))
    cur = conn.cursor()
    cur.execute(
        "CREATE TABLE nodes (id TEXT PRIMARY KEY, kind TEXT, name TEXT, file TEXT,"
        " line INTEGER, package TEXT, type_info TEXT)"
    )
    cur.execute("CREATE TABLE edges (source TEXT, target TEXT, kind TEXT)")
    cur.execute("CREATE TABLE sources (file TEXT, content TEXT)")
    cur.executemany("INSERT INTO nodes VALUES (?, ?, ?, ?, ?, ?, ?)", nodes)
    cur.executemany("INSERT INTO edges VALUES (?, ?, ?)", edges)
    cur.executemany("INSERT INTO sources VALUES (?, ?)", SOURCES)

    if fts:
        _create_fts(conn)
    if metrics:
        cur.execute(
            "CREATE TABLE metrics (function_id TEXT, cyclomatic_complexity INTEGER, loc INTEGER,"
            " num_params INTEGER, fan_in INTEGER, fan_out INTEGER)"
        )
        cur.executemany("INSERT INTO metrics VALUES (?, ?, ?, ?, ?, ?)", METRICS)
    if hotspots:
        cur.execute(
            "CREATE TABLE dashboard_hotspots (node_id TEXT, complexity INTEGER, loc INTEGER,"
            " fan_in INTEGER, fan_out INTEGER, score INTEGER)"
        )
        cur.executemany(
            "INSERT INTO dashboard_hotspots VALUES (?, ?, ?, ?, ?, ?)",
            [(fid, cc, loc, fi, fo, _score(cc, fi, fo)) for fid, cc, loc, _, fi, fo in METRICS],
        )
    if findings:
        cur.execute(
            "CREATE TABLE findings (id INTEGER PRIMARY KEY, node_id TEXT, category TEXT,"
            " severity TEXT, message TEXT)"
        )
        cur.executemany("INSERT INTO findings VALUES (?, ?, ?, ?, ?)", FINDINGS)

    conn.commit()
    conn.close()
    return path


@pytest.fixture
def cpg_db_path(tmp_path: Path) -> Path:
    """Sample database with every optional table."""
    return build_cpg_db(tmp_path / "cpg.db")


@pytest.fixture
def minimal_db_path(tmp_path: Path) -> Path:
    """Sample database with only nodes, edges and sources."""
    return build_cpg_db(
        tmp_path / "minimal.db", fts=False, metrics=False, hotspots=False, findings=False
    )


@pytest.fixture
def store(cpg_db_path: Path) -> Generator[GraphStore, None, None]:
    s = GraphStore(cpg_db_path)
    yield s
    s.close()


@pytest.fixture
def minimal_store(minimal_db_path: Path) -> Generator[GraphStore, None, None]:
    s = GraphStore(minimal_db_path)
    yield s
    s.close()


@pytest.fixture
def engine(store: GraphStore) -> ExplorerEngine:
    return ExplorerEngine(store)


@pytest.fixture
def minimal_engine(minimal_store: GraphStore) -> ExplorerEngine:
    return ExplorerEngine(minimal_store)


@pytest.fixture
def wide_db_path(tmp_path: Path) -> Path:
    """Three-level fan-out tree: a hub calling 20 functions, each calling 20 more."""
    nodes = [("hub", "function", "hub", "hub.go", 1, "hub", None)]
    edges = []
    for i in range(20):
        mid = f"mid{i:02d}"
        nodes.append((mid, "function", mid, f"mid/{mid}.go", 1, "mid", None))
        edges.append(("hub", mid, "call"))
        for j in range(20):
            leaf = f"leaf{i:02d}_{j:02d}"
            nodes.append((leaf, "function", leaf, f"leaf/{leaf}.go", 1, "leaf", None))
            edges.append((mid, leaf, "call"))
            edges.append((leaf, "hub", "call"))
    return build_cpg_db(
        tmp_path / "wide.db",
        fts=False, metrics=False, hotspots=False, findings=False,
        nodes=nodes, edges=edges,
    )


@pytest.fixture
def cpg_db_factory(tmp_path: Path):
    """Build extra sample databases: ``cpg_db_factory("x.db", hotspots=False)``."""

    def _build(name: str, **options) -> Path:
        return build_cpg_db(tmp_path / name, **options)

    return _build
