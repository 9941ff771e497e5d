"""Hotspot ranking and findings ordering."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from .models import Deadline, Finding, Hotspot
from .storage import GraphStore

logger = logging.getLogger(__name__)

DEFAULT_HOTSPOT_LIMIT = 20

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def hotspot_score(complexity: int, fan_in: int, fan_out: int) -> int:
    """Composite risk score: complexity counts double, coupling counts once."""
    return (complexity or 0) * 2 + (fan_in or 0) + (fan_out or 0)


def _hotspot_from_row(row: sqlite3.Row, score: int) -> Hotspot:
    return Hotspot(
        id=row["id"],
        name=row["name"],
        package=row["package"],
        file=row["file"],
        line=row["line"],
        complexity=row["complexity"],
        loc=row["loc"],
        fan_in=row["fan_in"],
        fan_out=row["fan_out"],
        score=score,
    )


class HotspotScorer:
    """Rank functions by :func:`hotspot_score`, highest first.

    Reads ``dashboard_hotspots`` when present. Otherwise the score is
    computed from ``metrics``; both paths order by score descending, then
    name, then id. Without either table the ranking is empty.
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def top(self, limit: Optional[int] = None, deadline: Optional[Deadline] = None) -> List[Hotspot]:
        if limit is None or limit <= 0:
            limit = DEFAULT_HOTSPOT_LIMIT

        capabilities = self.store.capabilities
        if capabilities.hotspots:
            rows = self.store.precomputed_hotspots(limit, deadline=deadline)
            return [_hotspot_from_row(row, row["score"]) for row in rows]

        if not capabilities.metrics:
            logger.info("No hotspot or metrics table available; returning no hotspots")
            return []

        return self.compute(limit, deadline=deadline)

    def compute(self, limit: int, deadline: Optional[Deadline] = None) -> List[Hotspot]:
        """Rank functions from ``metrics``; the store orders and limits the rows."""
        return [
            _hotspot_from_row(row, hotspot_score(row["complexity"], row["fan_in"], row["fan_out"]))
            for row in self.store.computed_hotspots(limit, deadline=deadline)
        ]


def severity_rank(severity: str) -> int:
    """critical < high < medium < low < anything else."""
    return SEVERITY_ORDER.get((severity or "").lower(), len(SEVERITY_ORDER))


def order_findings(store: GraphStore, node_id: str, deadline: Optional[Deadline] = None) -> List[Finding]:
    findings = [
        Finding(
            id=row["id"],
            node_id=row["node_id"],
            category=row["category"],
            severity=row["severity"],
            message=row["message"],
        )
        for row in store.findings(node_id, deadline=deadline)
    ]
    return sorted(findings, key=lambda f: (severity_rank(f.severity), f.id))
