"""Generate and store receipt embeddings, one row at a time or in backfill batches."""

from __future__ import annotations

import logging
from typing import List, Optional

from smart_receipts.db.receipts import (
    count_embedding_status,
    fetch_receipt_embedding_source,
    list_rows_missing_embedding,
    store_receipt_embedding,
)
from smart_receipts.db.repository import Database
from smart_receipts.embeddings.client import Embedder, EmbeddingError
from smart_receipts.embeddings.content import build_receipt_content
from smart_receipts.metrics import EMBEDDING_JOBS
from smart_receipts.models.search import BackfillItemResult, BackfillResult, EmbeddingStatus

logger = logging.getLogger(__name__)


class EmbeddingIndexer:
    """Attach embedding vectors to receipt rows."""

    def __init__(self, database: Database, embedder: Optional[Embedder]) -> None:
        self._database = database
        self._embedder = embedder

    @property
    def enabled(self) -> bool:
        return self._embedder is not None

    def embed(self, content: str) -> List[float]:
        if self._embedder is None:
            raise EmbeddingError("Embedding generation is not configured")
        return self._embedder.embed(content)

    def generate_for_row(self, row_id: str) -> bool:
        """Embed one row; returns False when the row has nothing to embed."""

        row = fetch_receipt_embedding_source(self._database, row_id)
        content = build_receipt_content(row)
        if not content:
            logger.info("Skipping embedding for receipt without content", extra={"receipt_id": row_id})
            EMBEDDING_JOBS.labels(status="skipped").inc()
            return False
        try:
            vector = self.embed(content)
            store_receipt_embedding(self._database, row_id, vector)
        except Exception:
            EMBEDDING_JOBS.labels(status="failed").inc()
            raise
        EMBEDDING_JOBS.labels(status="succeeded").inc()
        logger.debug("Stored embedding", extra={"receipt_id": row_id})
        return True

    def generate_for_content(self, content: str, receipt_id: Optional[str] = None) -> List[float]:
        """Embed arbitrary text, optionally storing the vector on a receipt row."""

        if not content or not content.strip():
            raise ValueError("Content is required")
        vector = self.embed(content)
        if receipt_id:
            store_receipt_embedding(self._database, receipt_id, vector)
        return vector

    def backfill(self, *, user_id: Optional[str] = None, batch_size: int = 5) -> BackfillResult:
        """Embed up to ``batch_size`` rows that are still missing a vector."""

        rows = list_rows_missing_embedding(self._database, user_id=user_id, limit=max(batch_size, 0))
        if not rows:
            return BackfillResult(message="No receipts need embedding updates")

        results: List[BackfillItemResult] = []
        for row in rows:
            content = build_receipt_content(row)
            if not content:
                results.append(BackfillItemResult(id=row.id, success=False, error="No content to embed"))
                continue
            try:
                vector = self.embed(content)
                store_receipt_embedding(self._database, row.id, vector)
            except Exception as exc:  # noqa: BLE001 - every row failure is reported in the batch
                logger.warning("Backfill failed for receipt %s: %s", row.id, exc)
                EMBEDDING_JOBS.labels(status="failed").inc()
                results.append(BackfillItemResult(id=row.id, success=False, error=str(exc)))
                continue
            EMBEDDING_JOBS.labels(status="succeeded").inc()
            results.append(BackfillItemResult(id=row.id, success=True))

        total, embedded = count_embedding_status(self._database, user_id=user_id)
        successful = sum(1 for item in results if item.success)
        return BackfillResult(
            processed=len(results),
            successful=successful,
            errors=len(results) - successful,
            remaining=total - embedded,
            results=results,
        )

    def status(self, *, user_id: Optional[str] = None) -> EmbeddingStatus:
        total, embedded = count_embedding_status(self._database, user_id=user_id)
        percentage = round(embedded / total * 100, 2) if total else 0.0
        return EmbeddingStatus(
            total_receipts=total,
            receipts_with_embeddings=embedded,
            receipts_without_embeddings=total - embedded,
            percentage_complete=percentage,
        )


__all__ = ["EmbeddingIndexer"]
