"""Background queue that embeds newly saved receipts off the request path."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterable, Optional

from smart_receipts.embeddings.indexer import EmbeddingIndexer

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[str, BaseException], None]

_STOP = object()


def log_embedding_failure(row_id: str, exc: BaseException) -> None:
    logger.warning(
        "Embedding generation failed for receipt %s: %s",
        row_id,
        exc,
        extra={"receipt_id": row_id},
    )


class EmbeddingQueue:
    """Feed receipt ids to an indexer on a daemon thread.

    ``submit`` only enqueues. Failures are handed to ``on_error`` and dropped,
    so a broken embedding provider never reaches the caller that saved the row.
    """

    def __init__(
        self,
        indexer: EmbeddingIndexer,
        *,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._indexer = indexer
        self._on_error = on_error or log_embedding_failure
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Spawn the worker loop in a daemon thread."""

        with self._lock:
            if self.running:
                return
            logger.info("Starting embedding queue")
            self._thread = threading.Thread(
                target=self._run_loop,
                name="receipt-embedding-queue",
                daemon=True,
            )
            self._thread.start()

    def submit(self, row_id: str) -> None:
        self.start()
        self._queue.put(row_id)

    def submit_many(self, row_ids: Iterable[str]) -> None:
        for row_id in row_ids:
            self.submit(row_id)

    def join(self) -> None:
        """Block until every submitted row has been processed."""

        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Drain outstanding work, then stop the worker thread."""

        with self._lock:
            thread = self._thread
            if thread is None:
                return
            logger.info("Stopping embedding queue")
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
            self._thread = None

    def _run_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                row_id = str(item)
                try:
                    self._indexer.generate_for_row(row_id)
                except Exception as exc:  # noqa: BLE001 - routed to the error channel
                    self._handle_error(row_id, exc)
            finally:
                self._queue.task_done()

    def _handle_error(self, row_id: str, exc: BaseException) -> None:
        try:
            self._on_error(row_id, exc)
        except Exception:  # pragma: no cover - error handler must not kill the worker
            logger.exception("Embedding error handler failed for receipt %s", row_id)


__all__ = ["EmbeddingQueue", "ErrorHandler", "log_embedding_failure"]
