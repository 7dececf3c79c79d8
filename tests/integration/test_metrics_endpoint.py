"""Integration tests for metrics endpoint."""

from __future__ import annotations

from tests.integration.utils import save_receipt


def test_metrics_endpoint_available(client, single_receipt):
    save_receipt(client, single_receipt)

    response = client.get("/metrics")
    assert response.status_code == 200
    body = response.content.decode()
    assert "smart_receipts_http_requests_total" in body
    assert 'smart_receipts_rows_saved_total{shape="single"}' in body
