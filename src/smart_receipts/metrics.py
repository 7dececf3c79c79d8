"""Prometheus metrics definitions for Smart Receipts."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "smart_receipts_http_requests_total",
    "Total number of HTTP requests processed by the Smart Receipts API",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "smart_receipts_http_request_duration_seconds",
    "Latency of HTTP requests processed by the Smart Receipts API",
    ["method", "path"],
)

RECEIPTS_SAVED = Counter(
    "smart_receipts_rows_saved_total",
    "Number of receipt rows persisted by receipt shape",
    ["shape"],
)

EMBEDDING_JOBS = Counter(
    "smart_receipts_embedding_jobs_total",
    "Number of embedding generation jobs by status",
    ["status"],
)

SEARCH_REQUESTS = Counter(
    "smart_receipts_search_requests_total",
    "Number of smart searches answered by tier",
    ["tier"],
)

__all__ = [
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "RECEIPTS_SAVED",
    "EMBEDDING_JOBS",
    "SEARCH_REQUESTS",
]
