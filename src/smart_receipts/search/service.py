"""Server-side smart search: vector similarity with text matching as fallback."""

from __future__ import annotations

import logging
from typing import Optional

from smart_receipts.db.repository import Database
from smart_receipts.embeddings.client import Embedder
from smart_receipts.models.search import SearchResponse
from smart_receipts.search.tiers import SearchChain, SearchQuery, TextSearchTier, VectorSearchTier

DEFAULT_LIMIT = 5
DEFAULT_THRESHOLD = 0.3

logger = logging.getLogger(__name__)


class SmartSearchService:
    def __init__(self, database: Database, embedder: Optional[Embedder]) -> None:
        self._chain = SearchChain([VectorSearchTier(database, embedder), TextSearchTier(database)])

    def search(
        self,
        query: Optional[str],
        user_id: Optional[str],
        *,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> SearchResponse:
        """Run the tier chain for one user.

        Raises ``ValueError`` when the query or user id is missing and
        ``SearchFailedError`` when no tier could answer.
        """

        if not query or not query.strip() or not user_id:
            raise ValueError("Missing query or userId")
        response = self._chain.run(
            SearchQuery(query=query.strip(), user_id=user_id, limit=max(limit, 0), threshold=threshold)
        )
        logger.info(
            "Smart search answered by %s tier results=%s fallback=%s",
            response.tier,
            len(response.results),
            response.fallback,
            extra={"user_id": user_id},
        )
        return response


__all__ = ["DEFAULT_LIMIT", "DEFAULT_THRESHOLD", "SmartSearchService"]
