"""Tests for embedding providers and the embedder factory."""

from __future__ import annotations

import json

import httpx
import numpy as np
import pytest

from smart_receipts.config import Settings
from smart_receipts.embeddings.client import (
    DEFAULT_OPENAI_BASE_URL,
    EmbeddingError,
    FallbackEmbedder,
    HashingEmbedder,
    OpenAIEmbeddingClient,
    build_embedder,
)
from smart_receipts.embeddings.content import build_receipt_content


def _client(handler, dimensions: int = 3) -> OpenAIEmbeddingClient:
    return OpenAIEmbeddingClient(
        base_url="https://embeddings.test/v1",
        model="text-embedding-3-small",
        dimensions=dimensions,
        api_key="sk-test-key-123456",
        transport=httpx.MockTransport(handler),
    )


def test_openai_client_posts_model_input_and_dimensions():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    vector = _client(handler).embed("Dell laptop")

    assert vector == pytest.approx([0.1, 0.2, 0.3])
    assert captured["url"] == "https://embeddings.test/v1/embeddings"
    assert captured["auth"] == "Bearer sk-test-key-123456"
    assert captured["body"] == {"model": "text-embedding-3-small", "input": "Dell laptop", "dimensions": 3}


def test_openai_client_wraps_http_errors():
    client = _client(lambda request: httpx.Response(503, json={"error": "down"}))

    with pytest.raises(EmbeddingError, match="503"):
        client.embed("anything")


def test_openai_client_rejects_wrong_dimensions():
    client = _client(lambda request: httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]}))

    with pytest.raises(EmbeddingError, match="dimensions"):
        client.embed("anything")


def test_openai_client_rejects_missing_data():
    client = _client(lambda request: httpx.Response(200, json={"data": []}))

    with pytest.raises(EmbeddingError):
        client.embed("anything")


def test_hashing_embedder_is_deterministic_and_normalized():
    embedder = HashingEmbedder(64)

    first = embedder.embed("Samsung TV Costco")
    second = embedder.embed("samsung tv costco")

    assert len(first) == 64
    assert first == second
    assert np.linalg.norm(first) == pytest.approx(1.0, rel=1e-5)


def test_hashing_embedder_requires_tokens():
    with pytest.raises(EmbeddingError):
        HashingEmbedder(16).embed("!!! ---")


def test_fallback_embedder_uses_next_provider():
    failing = _client(lambda request: httpx.Response(500))
    embedder = FallbackEmbedder([failing, HashingEmbedder(3)])

    assert len(embedder.embed("receipt")) == 3


def test_fallback_embedder_raises_when_all_fail():
    failing = _client(lambda request: httpx.Response(500))

    with pytest.raises(EmbeddingError, match="All embedding providers failed"):
        FallbackEmbedder([failing]).embed("receipt")


def test_build_embedder_variants():
    assert build_embedder(Settings()) is None

    remote = build_embedder(Settings(embedding_api_key="sk-abcdefghijkl"))
    assert isinstance(remote, OpenAIEmbeddingClient)
    assert remote._endpoint == f"{DEFAULT_OPENAI_BASE_URL}/embeddings"

    local = build_embedder(Settings(embedding_local_fallback=True))
    assert isinstance(local, HashingEmbedder)

    both = build_embedder(
        Settings(embedding_base_url="http://localhost:8080/v1", embedding_local_fallback=True)
    )
    assert isinstance(both, FallbackEmbedder)


def test_receipt_content_joins_non_empty_fields():
    row = {
        "product_description": " Cordless Drill ",
        "brand_name": "DeWalt",
        "model_number": None,
        "store_name": "",
        "purchase_location": "Austin, TX",
        "warranty_period": "3 years",
        "amount": 129.0,
    }

    assert build_receipt_content(row) == "Cordless Drill DeWalt Austin, TX 3 years"
    assert build_receipt_content({}) == ""
