"""Ordered search tiers and the chain that degrades from one to the next."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence

from smart_receipts.db.receipts import match_receipts_simple, text_search
from smart_receipts.db.repository import Database
from smart_receipts.embeddings.client import Embedder, EmbeddingError
from smart_receipts.metrics import SEARCH_REQUESTS
from smart_receipts.models.receipt import ReceiptRow
from smart_receipts.models.search import RankedResult, SearchResponse

TEXT_MATCH_SCORE = 0.7
LOCAL_SEARCH_FIELDS = (
    "product_description",
    "brand_name",
    "model_number",
    "store_name",
    "purchase_location",
    "extracted_text",
)

logger = logging.getLogger(__name__)


class SearchError(Exception):
    """One tier could not answer; ``reason`` is the human readable cause."""

    def __init__(self, reason: str, detail: Optional[str] = None) -> None:
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail


class SearchFailedError(RuntimeError):
    """Every tier in the chain failed."""

    def __init__(self, failures: Sequence["TierResult"]) -> None:
        self.failures = list(failures)
        reasons = ", ".join(f"{item.tier}: {item.error}" for item in self.failures)
        super().__init__(f"Search failed ({reasons})" if reasons else "Search failed")


@dataclass(frozen=True)
class SearchQuery:
    query: str
    user_id: str
    limit: int = 5
    threshold: float = 0.3


@dataclass
class TierResult:
    tier: str
    results: List[RankedResult] = field(default_factory=list)
    error: Optional[SearchError] = None
    fallback: bool = False
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, tier: str, error: SearchError) -> "TierResult":
        return cls(tier=tier, error=error)


class SearchTier(Protocol):
    name: str
    label: str
    accepts_empty: bool

    def search(self, query: SearchQuery) -> TierResult:
        ...


class VectorSearchTier:
    """Embed the query and rank the user's embedded rows by cosine similarity."""

    name = "vector"
    label = "vector search"
    accepts_empty = False

    def __init__(self, database: Database, embedder: Optional[Embedder]) -> None:
        self._database = database
        self._embedder = embedder

    def search(self, query: SearchQuery) -> TierResult:
        if self._embedder is None:
            return TierResult.failed(self.name, SearchError("embedding generation failure", "not configured"))
        try:
            vector = self._embedder.embed(query.query)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed: %s", exc)
            return TierResult.failed(self.name, SearchError("embedding generation failure", str(exc)))
        try:
            matches = match_receipts_simple(
                self._database, vector, query.threshold, query.limit, query.user_id
            )
        except Exception as exc:  # noqa: BLE001 - degrade to the next tier
            logger.warning("Vector search failed: %s", exc)
            return TierResult.failed(self.name, SearchError("vector search failure", str(exc)))
        return TierResult(
            tier=self.name,
            results=[RankedResult.from_row(row, similarity) for row, similarity in matches],
        )


class TextSearchTier:
    """Substring search in the record store."""

    name = "text"
    label = "text search"
    accepts_empty = True

    def __init__(self, database: Database) -> None:
        self._database = database

    def search(self, query: SearchQuery) -> TierResult:
        try:
            rows = text_search(self._database, query.user_id, query.query, query.limit)
        except Exception as exc:  # noqa: BLE001 - degrade to the next tier
            logger.warning("Text search failed: %s", exc)
            return TierResult.failed(self.name, SearchError("text search failure", str(exc)))
        return TierResult(
            tier=self.name,
            results=[RankedResult.from_row(row, TEXT_MATCH_SCORE) for row in rows],
        )


def local_matches(rows: Sequence[ReceiptRow], query: str, limit: int) -> List[ReceiptRow]:
    """Case-insensitive substring match over rows already held in memory."""

    needle = query.casefold()
    matched: List[ReceiptRow] = []
    for row in rows:
        for field_name in LOCAL_SEARCH_FIELDS:
            value = getattr(row, field_name)
            if value and needle in value.casefold():
                matched.append(row)
                break
        if len(matched) >= limit:
            break
    return matched


class LocalSearchTier:
    """Search the receipts a client has already loaded."""

    name = "local"
    label = "local search"
    accepts_empty = True

    def __init__(self, rows_provider: Callable[[], Optional[Sequence[ReceiptRow]]]) -> None:
        self._rows_provider = rows_provider

    def search(self, query: SearchQuery) -> TierResult:
        rows = self._rows_provider()
        if not rows:
            return TierResult.failed(self.name, SearchError("local search failure", "no receipts loaded"))
        return TierResult(
            tier=self.name,
            results=[
                RankedResult.from_row(row, TEXT_MATCH_SCORE)
                for row in local_matches(rows, query.query, query.limit)
            ],
        )


class SearchChain:
    """Try each tier in order and tag the answer with the tier that produced it.

    A tier that fails, or returns nothing while ``accepts_empty`` is false,
    hands over to the next tier. Answers from any tier after the first are
    flagged as fallbacks with a ``"Used <tier> due to <reason>"`` message.
    An empty answer that was passed over is still returned if every later
    tier fails.
    """

    def __init__(self, tiers: Sequence[SearchTier]) -> None:
        if not tiers:
            raise ValueError("SearchChain requires at least one tier")
        self._tiers = list(tiers)

    def run(self, query: SearchQuery) -> SearchResponse:
        failures: List[TierResult] = []
        passed_over: Optional[tuple[SearchTier, TierResult, List[TierResult]]] = None
        for tier in self._tiers:
            result = tier.search(query)
            if not result.ok:
                failures.append(result)
                continue
            if not result.results and not tier.accepts_empty:
                if passed_over is None:
                    passed_over = (tier, result, list(failures))
                failures.append(TierResult.failed(tier.name, SearchError(f"no {tier.label} matches")))
                continue
            return self._respond(tier, result, failures)

        if passed_over is not None:
            return self._respond(*passed_over)
        raise SearchFailedError(failures)

    @staticmethod
    def _respond(tier: SearchTier, result: TierResult, failures: List[TierResult]) -> SearchResponse:
        SEARCH_REQUESTS.labels(tier=result.tier).inc()
        if not failures:
            return SearchResponse(
                results=result.results,
                fallback=result.fallback,
                message=result.message,
                tier=result.tier,
            )
        reason = failures[-1].error.reason if failures[-1].error else "an earlier failure"
        return SearchResponse(
            results=result.results,
            fallback=True,
            message=result.message or f"Used {tier.label} due to {reason}",
            tier=result.tier,
        )


__all__ = [
    "TEXT_MATCH_SCORE",
    "LOCAL_SEARCH_FIELDS",
    "SearchError",
    "SearchFailedError",
    "SearchQuery",
    "TierResult",
    "SearchTier",
    "VectorSearchTier",
    "TextSearchTier",
    "LocalSearchTier",
    "SearchChain",
    "local_matches",
]
