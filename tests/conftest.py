"""Shared pytest fixtures for the Smart Receipts test suite."""

from __future__ import annotations

from typing import Any, Dict, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from smart_receipts.config import get_settings
from smart_receipts.db.repository import Database, get_database, reset_repository_state
from smart_receipts.server.app import create_app

_ENV_OVERRIDES = (
    "SMART_RECEIPTS_API_TOKEN",
    "SMART_RECEIPTS_EMBEDDING_BASE_URL",
    "SMART_RECEIPTS_EMBEDDING_API_KEY",
    "SMART_RECEIPTS_EMBEDDING_LOCAL_FALLBACK",
    "SMART_RECEIPTS_EMBEDDING_BACKFILL_ENABLED",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Ensure each test uses an isolated SQLite database and image bucket."""

    monkeypatch.setenv("SMART_RECEIPTS_DATABASE_PATH", str(tmp_path / "test_receipts.db"))
    monkeypatch.setenv("SMART_RECEIPTS_STORAGE_PATH", str(tmp_path / "images"))
    monkeypatch.setenv("SMART_RECEIPTS_SIGNING_SECRET", "test-signing-secret")
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_repository_state()
    yield
    reset_repository_state()
    get_settings.cache_clear()


@pytest.fixture()
def hashing_embeddings(monkeypatch):
    """Enable the offline feature-hashing embedder."""

    monkeypatch.setenv("SMART_RECEIPTS_EMBEDDING_LOCAL_FALLBACK", "true")
    get_settings.cache_clear()


@pytest.fixture()
def database() -> Database:
    return get_database()


@pytest.fixture()
def app() -> Generator[FastAPI, None, None]:
    """Create a new FastAPI app instance for each test and reset overrides."""

    application = create_app()
    yield application
    queue = getattr(application.state, "embedding_queue", None)
    if queue is not None:
        queue.stop()
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> TestClient:
    """Return a test client bound to the FastAPI app."""

    return TestClient(app)


@pytest.fixture()
def single_receipt() -> Dict[str, Any]:
    return {
        "product_description": "Dell XPS 13 Laptop",
        "brand_name": "Dell",
        "model_number": "XPS9310",
        "store_name": "Best Buy",
        "purchase_location": "Seattle, WA",
        "purchase_date": "2024-01-15",
        "country": "United States",
        "amount": 1299.99,
        "warranty_period": "2 years",
    }


@pytest.fixture()
def multi_receipt() -> Dict[str, Any]:
    return {
        "store_name": "Costco",
        "purchase_location": "Portland, OR",
        "purchase_date": "2024-03-02",
        "country": "United States",
        "total_amount": 549.98,
        "products": [
            {
                "product_description": "Samsung 55in TV",
                "brand_name": "Samsung",
                "model_number": "UN55",
                "amount": 399.99,
                "warranty_period": "1 year",
            },
            {
                "product_description": "Soundbar",
                "brand_name": "Vizio",
                "amount": 99.99,
                "warranty_period": "6 months",
            },
            {
                "product_description": "HDMI Cable Pack",
                "brand_name": "Amazon Basics",
                "amount": 49.99,
                "warranty_period": "lifetime",
            },
        ],
    }
