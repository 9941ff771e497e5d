"""Ranked name search and full-text source search."""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from .models import Deadline, SearchResult
from .storage import GraphStore

logger = logging.getLogger(__name__)

DEFAULT_NAME_LIMIT = 50
DEFAULT_CONTENT_LIMIT = 30


def _dedupe(results: List[SearchResult]) -> List[SearchResult]:
    seen: Set[str] = set()
    unique: List[SearchResult] = []
    for result in results:
        if result.id not in seen:
            seen.add(result.id)
            unique.append(result)
    return unique


class RankedSearch:
    """Search over node names and indexed source text.

    Name matches rank exact first, then prefix, then any other substring,
    shorter names first within a tier. Content search uses the full-text
    index when the database has one and a substring scan otherwise.
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def search_names(
        self, query: str, limit: Optional[int] = None, deadline: Optional[Deadline] = None
    ) -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            return []
        if limit is None or limit <= 0:
            limit = DEFAULT_NAME_LIMIT
        return self.store.search_names(query, limit, deadline=deadline)

    def search_content(
        self, query: str, limit: Optional[int] = None, deadline: Optional[Deadline] = None
    ) -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            return []
        if limit is None or limit <= 0:
            limit = DEFAULT_CONTENT_LIMIT

        if self.store.capabilities.fts:
            results = self.store.search_content_fts(query, limit, deadline=deadline)
        else:
            logger.debug("No full-text index; scanning source text for %r", query)
            results = self.store.search_content_scan(query, limit, deadline=deadline)
        return _dedupe(results)[:limit]
