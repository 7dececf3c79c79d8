"""Embedding providers: OpenAI-compatible HTTP client plus a local hashing fallback."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import List, Optional, Protocol, Sequence

import httpx
import numpy as np

from smart_receipts.config import Settings, get_settings

EMBEDDING_TIMEOUT = 30.0
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when no embedding could be produced for a piece of text."""


class Embedder(Protocol):
    name: str

    def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingClient:
    """Call an OpenAI-compatible ``/embeddings`` endpoint."""

    name = "openai"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        dimensions: int,
        api_key: Optional[str] = None,
        timeout: float = EMBEDDING_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._endpoint = base_url.rstrip("/")
        if not self._endpoint.endswith("/embeddings"):
            self._endpoint = f"{self._endpoint}/embeddings"
        self._model = model
        self._dimensions = int(dimensions)
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def embed(self, text: str) -> List[float]:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        payload = {"model": self._model, "input": text, "dimensions": self._dimensions}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(
                f"Embedding request failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        data = body.get("data") if isinstance(body, dict) else None
        if not data or not isinstance(data, list):
            raise EmbeddingError("Embedding response did not include data.")
        vector = data[0].get("embedding") if isinstance(data[0], dict) else None
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError("Embedding response did not include a vector.")
        if len(vector) != self._dimensions:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimensions}"
            )
        return [float(value) for value in vector]


class HashingEmbedder:
    """Deterministic feature-hashing embedder that runs without network access."""

    name = "hashing"

    def __init__(self, dimensions: int, *, seed: bytes = b"smart-receipts") -> None:
        self.dimensions = int(dimensions)
        self._seed = seed

    def embed(self, text: str) -> List[float]:
        tokens = self._tokenize(text)
        if not tokens:
            raise EmbeddingError("No tokens to embed")
        vector = np.zeros(self.dimensions, dtype=np.float32)
        for token, freq in tokens.items():
            token_seed = hashlib.sha256(self._seed + token.encode("utf-8")).digest()
            bucket = int.from_bytes(token_seed[:4], "big") % self.dimensions
            sign = 1.0 if (token_seed[4] & 1) == 0 else -1.0
            vector[bucket] += sign * freq
        norm = np.linalg.norm(vector)
        if norm:
            vector /= norm
        return vector.tolist()

    @staticmethod
    def _tokenize(text: str) -> dict[str, float]:
        tokens = re.findall(r"[a-z0-9]+", text.lower())
        counts: dict[str, float] = {}
        for token in tokens:
            counts[token] = counts.get(token, 0.0) + 1.0
        return counts


class FallbackEmbedder:
    """Try each embedder in order and return the first vector produced."""

    name = "fallback"

    def __init__(self, embedders: Sequence[Embedder]) -> None:
        if not embedders:
            raise ValueError("At least one embedder is required")
        self._embedders = list(embedders)

    def embed(self, text: str) -> List[float]:
        failures: List[str] = []
        for embedder in self._embedders:
            try:
                return embedder.embed(text)
            except EmbeddingError as exc:
                logger.warning("Embedder %s failed: %s", embedder.name, exc)
                failures.append(f"{embedder.name}: {exc}")
        raise EmbeddingError("All embedding providers failed (" + "; ".join(failures) + ")")


def build_embedder(settings: Optional[Settings] = None) -> Embedder | None:
    """Create the configured embedder chain, or ``None`` when embeddings are disabled."""

    settings = settings or get_settings()
    embedders: List[Embedder] = []

    base_url = settings.embedding_base_url
    if not base_url and settings.embedding_api_key:
        base_url = DEFAULT_OPENAI_BASE_URL
    if base_url:
        embedders.append(
            OpenAIEmbeddingClient(
                base_url=base_url,
                model=settings.embedding_model,
                dimensions=settings.embedding_dimensions,
                api_key=settings.embedding_api_key,
            )
        )
    if settings.embedding_local_fallback:
        embedders.append(HashingEmbedder(settings.embedding_dimensions))

    if not embedders:
        logger.debug("No embedding provider configured; smart search will use text matching.")
        return None
    if len(embedders) == 1:
        return embedders[0]
    return FallbackEmbedder(embedders)


__all__ = [
    "EMBEDDING_TIMEOUT",
    "DEFAULT_OPENAI_BASE_URL",
    "EmbeddingError",
    "Embedder",
    "OpenAIEmbeddingClient",
    "HashingEmbedder",
    "FallbackEmbedder",
    "build_embedder",
]
