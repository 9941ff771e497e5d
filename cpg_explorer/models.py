"""Value types returned by the exploration engine.

All of these are request-scoped copies of stored rows. ``to_dict`` renders
the camelCase JSON shape consumed by the web client.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import QueryTimeoutError

FUNCTION_KIND = "function"
PACKAGE_KIND = "package"
CALL_EDGE = "call"
DEPENDS_EDGE = "depends"

# Node kinds covered by name and content search
SEARCHABLE_KINDS = ("function", "type", "method")


@dataclass(frozen=True)
class Node:
    id: str
    kind: str
    name: str
    file: str = ""
    line: int = 0
    package: str = ""
    type_info: str = ""
    props: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "kind": self.kind, "name": self.name}
        if self.file:
            payload["file"] = self.file
        if self.line:
            payload["line"] = self.line
        if self.package:
            payload["package"] = self.package
        if self.type_info:
            payload["typeInfo"] = self.type_info
        if self.props:
            payload["props"] = dict(self.props)
        return payload


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "target": self.target, "kind": self.kind}


@dataclass(frozen=True)
class Graph:
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


class GraphBuilder:
    """Accumulates nodes and edges in insertion order, dropping duplicates."""

    def __init__(self) -> None:
        self._nodes: List[Node] = []
        self._edges: List[Edge] = []
        self._node_ids: Set[str] = set()
        self._edge_keys: Set[Tuple[str, str, str]] = set()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._node_ids

    def add_node(self, node: Node) -> bool:
        if node.id in self._node_ids:
            return False
        self._node_ids.add(node.id)
        self._nodes.append(node)
        return True

    def add_edge(self, source: str, target: str, kind: str) -> bool:
        key = (source, target, kind)
        if key in self._edge_keys:
            return False
        self._edge_keys.add(key)
        self._edges.append(Edge(source, target, kind))
        return True

    def build(self) -> Graph:
        return Graph(nodes=tuple(self._nodes), edges=tuple(self._edges))


@dataclass(frozen=True)
class FrontierItem:
    """One entry of the BFS queue: a node id and its distance from the seed."""

    id: str
    level: int


@dataclass(frozen=True)
class Package:
    name: str
    file_count: int
    func_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "fileCount": self.file_count, "funcCount": self.func_count}


@dataclass(frozen=True)
class SearchResult:
    id: str
    kind: str
    name: str
    package: str = ""
    file: str = ""
    line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "kind": self.kind, "name": self.name}
        if self.package:
            payload["package"] = self.package
        if self.file:
            payload["file"] = self.file
        if self.line:
            payload["line"] = self.line
        return payload


@dataclass(frozen=True)
class FunctionMetrics:
    function_id: str
    cyclomatic_complexity: int = 0
    loc: int = 0
    num_params: int = 0
    fan_in: int = 0
    fan_out: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "functionId": self.function_id,
            "cyclomaticComplexity": self.cyclomatic_complexity,
            "loc": self.loc,
            "numParams": self.num_params,
            "fanIn": self.fan_in,
            "fanOut": self.fan_out,
        }


@dataclass(frozen=True)
class Hotspot:
    id: str
    name: str
    package: str
    file: str
    line: int
    complexity: int
    loc: int
    fan_in: int
    fan_out: int
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "package": self.package,
            "file": self.file,
            "line": self.line,
            "complexity": self.complexity,
            "loc": self.loc,
            "fanIn": self.fan_in,
            "fanOut": self.fan_out,
            "score": self.score,
        }


@dataclass(frozen=True)
class Finding:
    id: int
    node_id: str
    category: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nodeId": self.node_id,
            "category": self.category,
            "severity": self.severity,
            "message": self.message,
        }


@dataclass(frozen=True)
class Stats:
    total_nodes: int = 0
    total_edges: int = 0
    total_functions: int = 0
    total_packages: int = 0
    total_files: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalNodes": self.total_nodes,
            "totalEdges": self.total_edges,
            "totalFunctions": self.total_functions,
            "totalPackages": self.total_packages,
            "totalFiles": self.total_files,
        }


class Deadline:
    """Cancellation token with an optional expiry.

    ``timeout=None`` never expires on its own but can still be cancelled.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._expires_at = time.monotonic() + timeout if timeout else None
        self._cancelled = False

    @classmethod
    def none(cls) -> "Deadline":
        return cls(None)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def expired(self) -> bool:
        if self._cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self) -> None:
        if self.expired:
            raise QueryTimeoutError("request deadline exceeded")
