"""Bounded breadth-first call-graph construction."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Set

from .errors import InvalidRequestError
from .models import CALL_EDGE, Deadline, FrontierItem, Graph, GraphBuilder
from .storage import GraphStore

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 2
MAX_DEPTH = 5
MAX_NODES = 60

CALLEES = "callees"
CALLERS = "callers"
DIRECTIONS = (CALLEES, CALLERS)


def clamp_depth(depth: Optional[int]) -> int:
    """Non-positive or missing depth means the default; anything deeper is capped."""
    if depth is None or depth <= 0:
        return DEFAULT_DEPTH
    return min(depth, MAX_DEPTH)


class CallGraphTraversal:
    """Expand the callee or caller graph around a seed function.

    The walk is level-ordered from the seed and stops once ``MAX_NODES``
    nodes are collected. Every included node contributes one edge per
    neighbour, including neighbours that end up outside the node list
    (past the depth boundary or the node cap), so the returned graph may
    contain edges whose far endpoint is not among its nodes.
    """

    def __init__(self, store: GraphStore, max_nodes: int = MAX_NODES) -> None:
        self.store = store
        self.max_nodes = max_nodes

    def run(
        self,
        seed_id: str,
        depth: Optional[int] = None,
        direction: str = CALLEES,
        deadline: Optional[Deadline] = None,
    ) -> Graph:
        if direction not in DIRECTIONS:
            raise InvalidRequestError(
                f"direction must be one of {', '.join(DIRECTIONS)}, got '{direction}'"
            )
        depth = clamp_depth(depth)
        fetch_neighbors: Callable[..., List[str]] = (
            self.store.callees if direction == CALLEES else self.store.callers
        )

        graph = GraphBuilder()
        visited: Set[str] = set()
        queue: Deque[FrontierItem] = deque([FrontierItem(seed_id, 0)])

        while queue and len(graph) < self.max_nodes:
            if deadline is not None:
                deadline.check()

            current = queue.popleft()
            if current.id in visited:
                continue
            visited.add(current.id)

            node = self.store.get_node(current.id, deadline=deadline)
            if node is None:
                continue
            graph.add_node(node)

            for neighbor in fetch_neighbors(current.id, deadline=deadline):
                if direction == CALLEES:
                    graph.add_edge(current.id, neighbor, CALL_EDGE)
                else:
                    graph.add_edge(neighbor, current.id, CALL_EDGE)
                if current.level < depth and neighbor not in visited:
                    queue.append(FrontierItem(neighbor, current.level + 1))

        result = graph.build()
        logger.debug(
            "%s traversal from %s (depth %d): %d nodes, %d edges",
            direction, seed_id, depth, len(result.nodes), len(result.edges),
        )
        return result
