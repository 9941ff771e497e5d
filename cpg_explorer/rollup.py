"""Package-level rollup of the function call graph."""

from __future__ import annotations

from typing import Optional, Set

from .models import DEPENDS_EDGE, PACKAGE_KIND, Deadline, Graph, GraphBuilder, Node
from .storage import GraphStore

MAX_PACKAGES = 200
MAX_RAW_EDGES = 500


class PackageRollup:
    """Collapse function-to-function calls into package dependencies."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def run(self, deadline: Optional[Deadline] = None) -> Graph:
        graph = GraphBuilder()
        packages: Set[str] = set()
        for name in self.store.package_names(limit=MAX_PACKAGES, deadline=deadline):
            if name and name not in packages:
                packages.add(name)
                graph.add_node(Node(id=name, kind=PACKAGE_KIND, name=name))

        seen: Set[str] = set()
        for source, target in self.store.package_edges(limit=MAX_RAW_EDGES, deadline=deadline):
            key = f"{source}->{target}"
            if key in seen or source == target:
                continue
            # Only edges between packages in the node set survive
            if source in packages and target in packages:
                seen.add(key)
                graph.add_edge(source, target, DEPENDS_EDGE)

        return graph.build()
