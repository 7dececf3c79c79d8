"""Tests for the HTTP client and its offline search fallback."""

from __future__ import annotations

import json

import httpx
import pytest

from smart_receipts.client import NotSignedInError, SmartReceiptsClient
from smart_receipts.models.receipt import GroupReceiptView, ReceiptUpdate

TIMESTAMP = "2024-03-02T10:00:00"


def _row(row_id: str, **values):
    row = {
        "id": row_id,
        "user_id": "user-1",
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    }
    row.update(values)
    return row


GROUPED = [
    {
        "type": "group",
        "id": "group-1",
        "receipts": [
            _row("r1", product_description="Samsung TV", brand_name="Samsung", amount=399.99,
                 is_group_receipt=True, receipt_group_id="group-1"),
            _row("r2", product_description="Soundbar", brand_name="Vizio", amount=99.99,
                 is_group_receipt=True, receipt_group_id="group-1"),
        ],
        "store_name": "Costco",
        "receipt_total": 499.98,
        "product_count": 2,
        "created_at": TIMESTAMP,
    },
    {"type": "single", **_row("r3", product_description="Cordless Drill", brand_name="DeWalt", amount=129.0)},
]


class FakeApi:
    def __init__(self, *, search_status: int = 200) -> None:
        self.search_status = search_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == "/receipts":
            return httpx.Response(200, json=GROUPED)
        if path == "/search":
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={"error": "unavailable"})
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"id": "r3", "title": "Cordless Drill", "brand": "DeWalt",
                         "warrantyPeriod": "3 years", "relevanceScore": 0.91}
                    ],
                    "fallback": False,
                    "tier": "vector",
                },
            )
        if request.method == "POST" and path == "/receipts":
            return httpx.Response(422, json={"detail": "Brand name is required"})
        if request.method == "DELETE":
            return httpx.Response(404, json={"detail": "Receipt missing not found"})
        if request.method == "PATCH":
            body = json.loads(request.content)
            return httpx.Response(200, json=_row("r3", **body))
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture()
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture()
def receipts_client(api):
    client = SmartReceiptsClient("http://api.test", api_token="secret", transport=httpx.MockTransport(api))
    client.sign_in("user-1")
    yield client
    client.close()


def test_calls_require_sign_in(api):
    with SmartReceiptsClient("http://api.test", transport=httpx.MockTransport(api)) as client:
        with pytest.raises(NotSignedInError):
            client.load_receipts()


def test_load_receipts_flattens_groups(receipts_client, api):
    views = receipts_client.load_receipts()

    assert isinstance(views[0], GroupReceiptView)
    assert [row.id for row in receipts_client.cached_rows] == ["r1", "r2", "r3"]
    assert api.requests[0].headers["Authorization"] == "Bearer secret"
    assert api.requests[0].url.params["user_id"] == "user-1"


def test_summary_and_library_use_cached_rows(receipts_client, api):
    summary = receipts_client.summary()
    ordered = receipts_client.library(sort_key="value-desc")

    assert summary.total_receipts == 3
    assert summary.total_value == pytest.approx(628.98)
    assert [row.id for row in ordered] == ["r1", "r3", "r2"]
    assert len(api.requests) == 1


def test_search_passes_through_remote_answer(receipts_client):
    response = receipts_client.search("drill")

    assert response.tier == "vector"
    assert response.fallback is False
    assert response.results[0].relevance_score == 0.91


def test_search_falls_back_to_loaded_rows(api):
    api.search_status = 503
    with SmartReceiptsClient("http://api.test", transport=httpx.MockTransport(api)) as client:
        client.sign_in("user-1")
        client.load_receipts()

        response = client.search("soundbar")

    assert response.tier == "local"
    assert response.fallback is True
    assert response.message == "Used local search due to search service unavailable"
    assert [result.id for result in response.results] == ["r2"]


def test_empty_query_returns_empty_response(receipts_client, api):
    response = receipts_client.search("   ")

    assert response.results == []
    assert api.requests == []


def test_auth_changes_clear_cache(receipts_client):
    receipts_client.load_receipts()
    receipts_client.sign_in("user-1", access_token="refreshed")
    assert receipts_client.cached_rows is not None

    receipts_client.sign_in("user-2")
    assert receipts_client.cached_rows is None

    receipts_client.load_receipts()
    receipts_client.sign_out()
    assert receipts_client.cached_rows is None


def test_save_error_keeps_validation_kind(receipts_client):
    result = receipts_client.save_receipt({"product_description": "TV"})

    assert result.success is False
    assert result.error_kind == "validation"
    assert result.error == "Brand name is required"


def test_delete_maps_errors(receipts_client):
    assert receipts_client.delete_receipt().error_kind == "validation"

    result = receipts_client.delete_receipt(row_id="missing")
    assert result.error_kind == "not_found"


def test_update_invalidates_cache(receipts_client, api):
    receipts_client.load_receipts()

    result = receipts_client.update_receipt("r3", ReceiptUpdate(brand_name="Makita"))

    assert result.receipt.brand_name == "Makita"
    assert receipts_client.cached_rows is None
    assert json.loads(api.requests[-1].content) == {"brand_name": "Makita"}
