"""Tests for search tier ordering and fallback tagging."""

from __future__ import annotations

from datetime import datetime

import pytest

from smart_receipts.models.receipt import ReceiptRow
from smart_receipts.models.search import RankedResult
from smart_receipts.search.tiers import (
    LocalSearchTier,
    SearchChain,
    SearchError,
    SearchFailedError,
    SearchQuery,
    TierResult,
    local_matches,
)


def _row(row_id: str, **values) -> ReceiptRow:
    now = datetime(2024, 6, 1, 10, 0, 0)
    return ReceiptRow(id=row_id, user_id="user-1", created_at=now, updated_at=now, **values)


class StubTier:
    def __init__(self, name, *, results=None, error=None, accepts_empty=True):
        self.name = name
        self.label = f"{name} search"
        self.accepts_empty = accepts_empty
        self._results = results or []
        self._error = error
        self.calls = 0

    def search(self, query):
        self.calls += 1
        if self._error:
            return TierResult.failed(self.name, SearchError(self._error))
        return TierResult(tier=self.name, results=list(self._results))


HIT = RankedResult.from_row(_row("r1", product_description="Drill", brand_name="Bosch"), 0.9)
QUERY = SearchQuery(query="drill", user_id="user-1")


def test_first_tier_answer_is_not_a_fallback():
    second = StubTier("text", results=[HIT])
    chain = SearchChain([StubTier("vector", results=[HIT], accepts_empty=False), second])

    response = chain.run(QUERY)

    assert response.fallback is False
    assert response.message is None
    assert response.tier == "vector"
    assert second.calls == 0


def test_failed_tier_falls_through_with_message():
    chain = SearchChain(
        [StubTier("vector", error="embedding generation failure", accepts_empty=False), StubTier("text", results=[HIT])]
    )

    response = chain.run(QUERY)

    assert response.fallback is True
    assert response.tier == "text"
    assert response.message == "Used text search due to embedding generation failure"
    assert [result.id for result in response.results] == ["r1"]


def test_empty_vector_result_still_falls_back_to_text():
    chain = SearchChain([StubTier("vector", accepts_empty=False), StubTier("text")])

    response = chain.run(QUERY)

    assert response.results == []
    assert response.fallback is True
    assert response.tier == "text"
    assert response.message == "Used text search due to no vector search matches"


def test_passed_over_empty_answer_returned_when_later_tiers_fail():
    chain = SearchChain([StubTier("vector", accepts_empty=False), StubTier("text", error="text search failure")])

    response = chain.run(QUERY)

    assert response.results == []
    assert response.tier == "vector"
    assert response.fallback is False


def test_every_tier_failing_raises():
    chain = SearchChain(
        [StubTier("remote", error="search service unavailable"), LocalSearchTier(lambda: None)]
    )

    with pytest.raises(SearchFailedError) as excinfo:
        chain.run(QUERY)

    assert [item.tier for item in excinfo.value.failures] == ["remote", "local"]


def test_chain_requires_tiers():
    with pytest.raises(ValueError):
        SearchChain([])


def test_local_tier_searches_loaded_rows():
    rows = [
        _row("a", product_description="Lawn Mower", brand_name="Honda"),
        _row("b", product_description="Cordless Drill", brand_name="Makita"),
        _row("c", product_description="Hammer Drill", brand_name="Bosch"),
    ]
    chain = SearchChain([StubTier("remote", error="search service unavailable"), LocalSearchTier(lambda: rows)])

    response = chain.run(SearchQuery(query="DRILL", user_id="user-1", limit=1))

    assert response.fallback is True
    assert response.tier == "local"
    assert response.message == "Used local search due to search service unavailable"
    assert [result.id for result in response.results] == ["b"]
    assert response.results[0].relevance_score == 0.7


def test_local_matches_checks_extracted_text():
    rows = [_row("a", product_description="Receipt", extracted_text="SERIAL 123 warranty card")]

    assert [row.id for row in local_matches(rows, "warranty card", 5)] == ["a"]
    assert local_matches(rows, "blender", 5) == []


def test_ranked_result_uses_placeholders_and_aliases():
    result = RankedResult.from_row(_row("x"), 0.42)

    payload = result.model_dump(mode="json", by_alias=True)
    assert payload["title"] == "Unknown Product"
    assert payload["brand"] == "Unknown Brand"
    assert payload["warrantyPeriod"] == "Unknown"
    assert payload["relevanceScore"] == 0.42
    assert "purchaseDate" in payload
