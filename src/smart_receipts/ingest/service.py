"""Persist extracted receipts as line-item rows and rebuild grouped purchases."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from smart_receipts.db.receipts import (
    delete_receipt_rows,
    image_paths_in_use,
    insert_receipt_rows,
    list_receipt_rows,
    update_receipt_row,
)
from smart_receipts.db.repository import Database
from smart_receipts.embeddings.queue import EmbeddingQueue
from smart_receipts.metrics import RECEIPTS_SAVED
from smart_receipts.models.receipt import (
    GroupReceiptView,
    MultiProductInput,
    ReceiptDeleteResult,
    ReceiptRow,
    ReceiptSaveResult,
    ReceiptUpdate,
    ReceiptUpdateResult,
    SingleProductInput,
    SingleReceiptView,
)
from smart_receipts.storage.images import ImageStorage

DEFAULT_PROCESSING_METHOD = "gpt_structured"
REQUIRED_UPDATE_FIELDS = {
    "product_description": "Product description",
    "brand_name": "Brand name",
    "warranty_period": "Warranty period",
    "country": "Country",
}
OPTIONAL_UPDATE_FIELDS = ("model_number", "store_name", "purchase_location", "extended_warranty")

logger = logging.getLogger(__name__)


class ReceiptValidationError(ValueError):
    """Extracted receipt data is missing a field required to save it."""


def _positive_or_none(value: Optional[float]) -> Optional[float]:
    if value is None or value <= 0:
        return None
    return float(value)


def _store_error_message(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None)
    return str(original) if original is not None else str(exc)


def _validate_single(receipt: SingleProductInput) -> None:
    if not (receipt.product_description or "").strip():
        raise ReceiptValidationError("Product description is required")
    if not (receipt.brand_name or "").strip():
        raise ReceiptValidationError("Brand name is required")
    if receipt.purchase_date is None:
        raise ReceiptValidationError("Purchase date is required")
    if not (receipt.warranty_period or "").strip():
        raise ReceiptValidationError("Warranty period is required")


def _validate_multi(receipt: MultiProductInput) -> None:
    if receipt.purchase_date is None:
        raise ReceiptValidationError("Purchase date is required")
    for index, product in enumerate(receipt.products, start=1):
        if not (product.product_description or "").strip():
            raise ReceiptValidationError(f"Product {index}: product description is required")
        if not (product.brand_name or "").strip():
            raise ReceiptValidationError(f"Product {index}: brand name is required")
        if not (product.warranty_period or "").strip():
            raise ReceiptValidationError(f"Product {index}: warranty period is required")


def group_receipt_rows(rows: List[ReceiptRow]) -> List[Union[SingleReceiptView, GroupReceiptView]]:
    """Rebuild purchases from newest-first rows in a single pass.

    Output order follows the first time each purchase is seen. A group's
    image is the first row in the group that has one.
    """

    views: List[Union[SingleReceiptView, GroupReceiptView]] = []
    buckets: Dict[str, List[ReceiptRow]] = {}
    for row in rows:
        if row.is_group_receipt and row.receipt_group_id:
            bucket = buckets.get(row.receipt_group_id)
            if bucket is None:
                bucket = buckets[row.receipt_group_id] = []
                views.append(GroupReceiptView(id=row.receipt_group_id, receipts=[], product_count=0, created_at=row.created_at))
            bucket.append(row)
        else:
            views.append(SingleReceiptView(**row.model_dump()))

    for index, view in enumerate(views):
        if not isinstance(view, GroupReceiptView):
            continue
        bucket = buckets[view.id]
        first = bucket[0]
        image_url = next((row.image_url for row in bucket if row.image_url), first.image_url)
        views[index] = GroupReceiptView(
            id=view.id,
            receipts=bucket,
            store_name=first.store_name,
            purchase_date=first.purchase_date,
            receipt_total=first.receipt_total,
            amount=first.receipt_total,
            product_count=len(bucket),
            image_url=image_url,
            created_at=first.created_at,
        )
    return views


class ReceiptGroupingService:
    """Save single and multi-product receipts and read them back as purchases."""

    def __init__(
        self,
        database: Database,
        *,
        storage: Optional[ImageStorage] = None,
        embedding_queue: Optional[EmbeddingQueue] = None,
    ) -> None:
        self._database = database
        self._storage = storage
        self._embedding_queue = embedding_queue

    def save_receipt(
        self,
        receipt: Union[SingleProductInput, MultiProductInput],
        user_id: str,
        *,
        image_url: Optional[str] = None,
        processing_method: str = DEFAULT_PROCESSING_METHOD,
        ocr_confidence: Optional[float] = None,
        extracted_text: Optional[str] = None,
    ) -> ReceiptSaveResult:
        try:
            if isinstance(receipt, MultiProductInput):
                _validate_multi(receipt)
            else:
                _validate_single(receipt)
        except ReceiptValidationError as exc:
            logger.info("Rejected receipt: %s", exc, extra={"user_id": user_id})
            return ReceiptSaveResult(
                success=False,
                error=str(exc),
                error_kind="validation",
                processing_method=processing_method,
            )

        image_path = ImageStorage.path_from_url(image_url)
        if image_path and not ImageStorage.is_owned_by(image_path, user_id):
            logger.warning("Rejected receipt image outside the user folder", extra={"user_id": user_id})
            return ReceiptSaveResult(
                success=False,
                error="Receipt image does not belong to this user",
                error_kind="validation",
                processing_method=processing_method,
            )

        shared: Dict[str, Any] = {
            "user_id": user_id,
            "store_name": receipt.store_name,
            "purchase_location": receipt.purchase_location,
            "purchase_date": receipt.purchase_date,
            "country": receipt.country,
            "image_url": image_url,
            "image_path": image_path,
            "processing_method": processing_method,
            "ocr_confidence": ocr_confidence,
            "extracted_text": extracted_text,
            "created_at": datetime.now(timezone.utc).replace(tzinfo=None),
        }

        group_id: Optional[str] = None
        if isinstance(receipt, MultiProductInput):
            group_id = str(uuid.uuid4())
            receipt_total = _positive_or_none(receipt.total_amount)
            if receipt_total is None:
                receipt_total = _positive_or_none(
                    sum(_positive_or_none(product.amount) or 0.0 for product in receipt.products)
                )
            rows = [
                {
                    **shared,
                    "product_description": product.product_description.strip(),
                    "brand_name": product.brand_name.strip(),
                    "model_number": product.model_number,
                    "amount": _positive_or_none(product.amount),
                    "receipt_total": receipt_total,
                    "warranty_period": product.warranty_period.strip(),
                    "extended_warranty": product.extended_warranty or receipt.extended_warranty,
                    "is_group_receipt": True,
                    "receipt_group_id": group_id,
                }
                for product in receipt.products
            ]
            shape = "multi"
        else:
            amount = _positive_or_none(receipt.amount)
            rows = [
                {
                    **shared,
                    "product_description": receipt.product_description.strip(),
                    "brand_name": receipt.brand_name.strip(),
                    "model_number": receipt.model_number,
                    "amount": amount,
                    "receipt_total": amount,
                    "warranty_period": receipt.warranty_period.strip(),
                    "extended_warranty": receipt.extended_warranty,
                    "is_group_receipt": False,
                    "receipt_group_id": None,
                }
            ]
            shape = "single"

        try:
            saved = insert_receipt_rows(self._database, rows)
        except SQLAlchemyError as exc:
            message = _store_error_message(exc)
            logger.error("Failed to store receipt: %s", message, extra={"user_id": user_id})
            return ReceiptSaveResult(
                success=False,
                error=message,
                error_kind="store",
                processing_method=processing_method,
            )

        RECEIPTS_SAVED.labels(shape=shape).inc(len(saved))
        logger.info(
            "Saved %s receipt rows=%s group=%s",
            shape,
            len(saved),
            group_id,
            extra={"user_id": user_id},
        )
        self._queue_embeddings(saved)
        return ReceiptSaveResult(
            success=True,
            receipts=saved,
            receipt_group_id=group_id,
            processing_method=processing_method,
        )

    def _queue_embeddings(self, rows: List[ReceiptRow]) -> None:
        if self._embedding_queue is None:
            return
        try:
            self._embedding_queue.submit_many(row.id for row in rows)
        except Exception:  # pragma: no cover - embedding never blocks a save
            logger.exception("Unable to queue embeddings for %s rows", len(rows))

    def _with_fresh_image(self, row: ReceiptRow) -> ReceiptRow:
        if self._storage is None or not (row.image_url or row.image_path):
            return row
        path = row.image_path or ImageStorage.path_from_url(row.image_url)
        if path and not ImageStorage.is_owned_by(path, row.user_id):
            return row
        refreshed = self._storage.refresh_url(row.image_url, row.image_path)
        if refreshed == row.image_url:
            return row
        return row.model_copy(update={"image_url": refreshed})

    def list_receipts(self, user_id: str) -> List[ReceiptRow]:
        """Return the user's rows newest first with usable image links."""

        return [self._with_fresh_image(row) for row in list_receipt_rows(self._database, user_id)]

    def get_grouped_receipts(self, user_id: str) -> List[Union[SingleReceiptView, GroupReceiptView]]:
        return group_receipt_rows(self.list_receipts(user_id))

    def delete_receipt(
        self,
        user_id: str,
        *,
        row_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> ReceiptDeleteResult:
        if (row_id is None) == (group_id is None):
            return ReceiptDeleteResult(
                success=False,
                error="Exactly one of row_id or group_id is required",
                error_kind="validation",
            )
        try:
            removed = delete_receipt_rows(self._database, user_id, row_id=row_id, group_id=group_id)
        except ValueError as exc:
            return ReceiptDeleteResult(success=False, error=str(exc), error_kind="not_found")
        except SQLAlchemyError as exc:
            message = _store_error_message(exc)
            logger.error("Failed to delete receipt: %s", message, extra={"user_id": user_id})
            return ReceiptDeleteResult(success=False, error=message, error_kind="store")

        logger.info("Deleted %s receipt rows", len(removed), extra={"user_id": user_id})
        self._remove_orphaned_images(user_id, removed)
        return ReceiptDeleteResult(success=True, deleted=len(removed))

    def _remove_orphaned_images(self, user_id: str, removed: List[ReceiptRow]) -> None:
        if self._storage is None:
            return
        paths = {
            path
            for row in removed
            for path in (row.image_path, ImageStorage.path_from_url(row.image_url))
            if ImageStorage.is_owned_by(path, user_id)
        }
        if not paths:
            return
        try:
            still_used = image_paths_in_use(self._database, user_id, paths)
            self._storage.remove(sorted(paths - still_used))
        except Exception:  # pragma: no cover - image cleanup is best effort
            logger.exception("Image cleanup failed", extra={"user_id": user_id})

    def update_receipt(self, user_id: str, row_id: str, patch: ReceiptUpdate) -> ReceiptUpdateResult:
        """Apply an edit to one row. Embedding and grouping fields are left alone."""

        values: Dict[str, Any] = {}
        for key, value in patch.model_dump(exclude_unset=True).items():
            if key in REQUIRED_UPDATE_FIELDS:
                cleaned = (value or "").strip()
                if not cleaned:
                    return ReceiptUpdateResult(
                        error=f"{REQUIRED_UPDATE_FIELDS[key]} is required", error_kind="validation"
                    )
                values[key] = cleaned
            elif key in OPTIONAL_UPDATE_FIELDS:
                values[key] = (value or "").strip() or None
            elif key == "amount":
                values[key] = _positive_or_none(value)
            elif key == "purchase_date":
                if value is None:
                    return ReceiptUpdateResult(error="Purchase date is required", error_kind="validation")
                values[key] = value

        try:
            updated = update_receipt_row(self._database, user_id, row_id, values)
        except ValueError as exc:
            return ReceiptUpdateResult(error=str(exc), error_kind="not_found")
        except SQLAlchemyError as exc:
            message = _store_error_message(exc)
            logger.error("Failed to update receipt: %s", message, extra={"receipt_id": row_id})
            return ReceiptUpdateResult(error=message, error_kind="store")
        return ReceiptUpdateResult(receipt=updated)


__all__ = [
    "DEFAULT_PROCESSING_METHOD",
    "ReceiptValidationError",
    "ReceiptGroupingService",
    "group_receipt_rows",
]
