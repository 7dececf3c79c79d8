"""Dependency definitions for the Smart Receipts API server."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from smart_receipts.config import Settings, get_settings
from smart_receipts.db.repository import Database, get_database
from smart_receipts.duplicates import DuplicateDetector
from smart_receipts.embeddings.client import Embedder, build_embedder
from smart_receipts.embeddings.indexer import EmbeddingIndexer
from smart_receipts.embeddings.queue import EmbeddingQueue
from smart_receipts.ingest.service import ReceiptGroupingService
from smart_receipts.search.service import SmartSearchService
from smart_receipts.storage.images import ImageStorage


def get_database_dependency() -> Database:
    return get_database()


def get_image_storage(settings: Settings = Depends(get_settings)) -> ImageStorage:
    return ImageStorage.from_settings(settings)


def get_embedder(settings: Settings = Depends(get_settings)) -> Optional[Embedder]:
    return build_embedder(settings)


def get_embedding_indexer(
    database: Database = Depends(get_database_dependency),
    embedder: Optional[Embedder] = Depends(get_embedder),
) -> EmbeddingIndexer:
    return EmbeddingIndexer(database, embedder)


def get_embedding_queue(
    request: Request,
    settings: Settings = Depends(get_settings),
    indexer: EmbeddingIndexer = Depends(get_embedding_indexer),
) -> Optional[EmbeddingQueue]:
    """Return the app-wide embedding queue, creating it on first use."""

    if not settings.embedding_queue_enabled or not indexer.enabled:
        return None
    state = request.app.state
    queue = getattr(state, "embedding_queue", None)
    if queue is None:
        queue = EmbeddingQueue(indexer)
        state.embedding_queue = queue
    return queue


def get_grouping_service(
    database: Database = Depends(get_database_dependency),
    storage: ImageStorage = Depends(get_image_storage),
    queue: Optional[EmbeddingQueue] = Depends(get_embedding_queue),
) -> ReceiptGroupingService:
    return ReceiptGroupingService(database, storage=storage, embedding_queue=queue)


def get_search_service(
    database: Database = Depends(get_database_dependency),
    embedder: Optional[Embedder] = Depends(get_embedder),
) -> SmartSearchService:
    return SmartSearchService(database, embedder)


def get_duplicate_detector(
    database: Database = Depends(get_database_dependency),
    settings: Settings = Depends(get_settings),
) -> DuplicateDetector:
    return DuplicateDetector(database, threshold=settings.duplicate_threshold)


def require_api_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Ensure requests carry the configured API token when required."""

    token = settings.api_token
    if not token:
        return

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.split("Bearer ")[-1].strip() == token:
        return

    if request.headers.get("X-API-Key") == token:
        return

    if request.query_params.get("api_token") == token:
        return

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
