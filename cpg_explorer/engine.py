"""Query engine: one method per read operation exposed to clients.

The engine owns a :class:`GraphStore` handed to it at construction and
keeps no state between calls. Input validation happens here, before any
store access.

``limit`` and ``depth`` follow a single rule everywhere: a missing, zero
or negative value takes the operation's default, and a value above the
operation's maximum is capped at that maximum.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidRequestError
from .hotspots import DEFAULT_HOTSPOT_LIMIT, HotspotScorer, order_findings
from .models import (
    Deadline,
    Finding,
    FunctionMetrics,
    Graph,
    Hotspot,
    Node,
    Package,
    SearchResult,
    Stats,
)
from .rollup import MAX_PACKAGES, PackageRollup
from .search import DEFAULT_CONTENT_LIMIT, DEFAULT_NAME_LIMIT, RankedSearch
from .storage import GraphStore
from .traversal import CALLEES, CallGraphTraversal

logger = logging.getLogger(__name__)

MAX_NAME_LIMIT = 500
MAX_CONTENT_LIMIT = 200
MAX_HOTSPOT_LIMIT = 200
PACKAGE_FUNCTION_LIMIT = 100


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise InvalidRequestError(f"{name} parameter required")
    return value


class ExplorerEngine:
    """Read-only operations over a code property graph."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store
        self._traversal = CallGraphTraversal(store)
        self._rollup = PackageRollup(store)
        self._search = RankedSearch(store)
        self._hotspots = HotspotScorer(store)

    @classmethod
    def open(cls, db_path: Path | str) -> "ExplorerEngine":
        logger.info("Opening graph database: %s", db_path)
        return cls(GraphStore(db_path))

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "ExplorerEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, str]:
        return {"status": "ok"}

    def stats(self, deadline: Optional[Deadline] = None) -> Stats:
        return self.store.stats(deadline=deadline)

    def capabilities(self) -> Dict[str, bool]:
        return self.store.capabilities.to_dict()

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def packages(self, deadline: Optional[Deadline] = None) -> List[Package]:
        return self.store.packages(limit=MAX_PACKAGES, deadline=deadline)

    def package_graph(self, deadline: Optional[Deadline] = None) -> Graph:
        return self._rollup.run(deadline=deadline)

    def functions_in_package(self, package: str, deadline: Optional[Deadline] = None) -> List[Node]:
        package = _require(package, "package name")
        return self.store.functions_in_package(package, limit=PACKAGE_FUNCTION_LIMIT, deadline=deadline)

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def call_graph(
        self,
        function_id: str,
        depth: Optional[int] = None,
        direction: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Graph:
        function_id = _require(function_id, "id")
        return self._traversal.run(function_id, depth=depth, direction=direction or CALLEES, deadline=deadline)

    def source_for_function(self, function_id: str, deadline: Optional[Deadline] = None) -> str:
        function_id = _require(function_id, "id")
        return self.store.source_for_function(function_id, deadline=deadline)

    def source_for_file(self, file: str, deadline: Optional[Deadline] = None) -> str:
        file = _require(file, "file")
        return self.store.source_for_file(file, deadline=deadline)

    def function_metrics(self, function_id: str, deadline: Optional[Deadline] = None) -> FunctionMetrics:
        function_id = _require(function_id, "id")
        return self.store.function_metrics(function_id, deadline=deadline)

    def findings(self, function_id: str, deadline: Optional[Deadline] = None) -> List[Finding]:
        function_id = _require(function_id, "id")
        return order_findings(self.store, function_id, deadline=deadline)

    # ------------------------------------------------------------------
    # Search and ranking
    # ------------------------------------------------------------------

    def search(
        self, query: str, limit: Optional[int] = None, deadline: Optional[Deadline] = None
    ) -> List[SearchResult]:
        limit = clamp_limit(limit, DEFAULT_NAME_LIMIT, MAX_NAME_LIMIT)
        return self._search.search_names(query, limit, deadline=deadline)

    def code_search(
        self, query: str, limit: Optional[int] = None, deadline: Optional[Deadline] = None
    ) -> List[SearchResult]:
        limit = clamp_limit(limit, DEFAULT_CONTENT_LIMIT, MAX_CONTENT_LIMIT)
        return self._search.search_content(query, limit, deadline=deadline)

    def hotspots(self, limit: Optional[int] = None, deadline: Optional[Deadline] = None) -> List[Hotspot]:
        limit = clamp_limit(limit, DEFAULT_HOTSPOT_LIMIT, MAX_HOTSPOT_LIMIT)
        return self._hotspots.top(limit, deadline=deadline)
