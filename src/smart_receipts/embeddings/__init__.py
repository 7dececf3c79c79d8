"""Receipt embedding generation, storage and background indexing."""

from smart_receipts.embeddings.client import (
    EmbeddingError,
    FallbackEmbedder,
    HashingEmbedder,
    OpenAIEmbeddingClient,
    build_embedder,
)
from smart_receipts.embeddings.content import build_receipt_content
from smart_receipts.embeddings.indexer import EmbeddingIndexer
from smart_receipts.embeddings.queue import EmbeddingQueue

__all__ = [
    "EmbeddingError",
    "FallbackEmbedder",
    "HashingEmbedder",
    "OpenAIEmbeddingClient",
    "build_embedder",
    "build_receipt_content",
    "EmbeddingIndexer",
    "EmbeddingQueue",
]
