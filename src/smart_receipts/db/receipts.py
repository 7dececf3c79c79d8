"""Receipt row persistence, lookup and similarity helpers."""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import func, or_, select

from smart_receipts.models.receipt import ReceiptRow

from .models import ReceiptORM
from .repository import Database

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "product_description",
    "brand_name",
    "model_number",
    "store_name",
    "purchase_location",
    "purchase_date",
    "country",
    "amount",
    "warranty_period",
    "extended_warranty",
)

TEXT_SEARCH_FIELDS = ("product_description", "brand_name", "model_number", "store_name")


def _to_row_model(row: ReceiptORM) -> ReceiptRow:
    return ReceiptRow.model_validate(
        {
            "id": row.id,
            "user_id": row.user_id,
            "product_description": row.product_description,
            "brand_name": row.brand_name,
            "model_number": row.model_number,
            "store_name": row.store_name,
            "purchase_location": row.purchase_location,
            "purchase_date": row.purchase_date,
            "country": row.country,
            "amount": row.amount,
            "receipt_total": row.receipt_total,
            "warranty_period": row.warranty_period,
            "extended_warranty": row.extended_warranty,
            "image_url": row.image_url,
            "image_path": row.image_path,
            "processing_method": row.processing_method,
            "ocr_confidence": row.ocr_confidence,
            "extracted_text": row.extracted_text,
            "is_group_receipt": bool(row.is_group_receipt),
            "receipt_group_id": row.receipt_group_id,
            "has_embedding": row.embedding is not None,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _decode_embedding(payload: Optional[str]) -> Optional[np.ndarray]:
    if not payload:
        return None
    try:
        values = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stored embedding")
        return None
    if not isinstance(values, list) or not values:
        return None
    return np.asarray(values, dtype=np.float32)


def _user_rows(user_id: str):
    return select(ReceiptORM).where(ReceiptORM.user_id == user_id)


def insert_receipt_rows(database: Database, rows: Sequence[Dict[str, Any]]) -> List[ReceiptRow]:
    """Insert all rows in a single transaction; either every row lands or none does."""

    with database.session_scope() as session:
        records = [ReceiptORM(**values) for values in rows]
        session.add_all(records)
        session.flush()
        return [_to_row_model(record) for record in records]


def list_receipt_rows(database: Database, user_id: str) -> List[ReceiptRow]:
    """Return the user's rows, newest first."""

    with database.session_scope() as session:
        records = (
            session.execute(
                _user_rows(user_id).order_by(ReceiptORM.created_at.desc(), ReceiptORM.id)
            )
            .scalars()
            .all()
        )
        return [_to_row_model(record) for record in records]


def fetch_receipt_row(database: Database, user_id: str, row_id: str) -> ReceiptRow:
    """Return one of the user's rows or raise if not found."""

    with database.session_scope() as session:
        record = session.get(ReceiptORM, row_id)
        if record is None or record.user_id != user_id:
            raise ValueError(f"Receipt {row_id} not found")
        return _to_row_model(record)


def delete_receipt_rows(
    database: Database,
    user_id: str,
    *,
    row_id: Optional[str] = None,
    group_id: Optional[str] = None,
) -> List[ReceiptRow]:
    """Delete one row or one whole group owned by the user and return what was removed."""

    if (row_id is None) == (group_id is None):
        raise ValueError("Exactly one of row_id or group_id is required")

    with database.session_scope() as session:
        statement = _user_rows(user_id)
        if row_id is not None:
            statement = statement.where(ReceiptORM.id == row_id)
        else:
            statement = statement.where(ReceiptORM.receipt_group_id == group_id)
        records = session.execute(statement).scalars().all()
        if not records:
            target = row_id if row_id is not None else group_id
            raise ValueError(f"Receipt {target} not found")
        removed = [_to_row_model(record) for record in records]
        for record in records:
            session.delete(record)
        return removed


def update_receipt_row(
    database: Database, user_id: str, row_id: str, values: Dict[str, Any]
) -> ReceiptRow:
    """Apply editable field changes to one of the user's rows."""

    with database.session_scope() as session:
        record = session.get(ReceiptORM, row_id)
        if record is None or record.user_id != user_id:
            raise ValueError(f"Receipt {row_id} not found")
        for key, value in values.items():
            if key not in EDITABLE_FIELDS:
                raise ValueError(f"Field {key} is not editable")
            setattr(record, key, value)
        session.flush()
        return _to_row_model(record)


def fetch_receipt_embedding_source(database: Database, row_id: str) -> ReceiptRow:
    with database.session_scope() as session:
        record = session.get(ReceiptORM, row_id)
        if record is None:
            raise ValueError(f"Receipt {row_id} not found")
        return _to_row_model(record)


def store_receipt_embedding(database: Database, row_id: str, vector: Sequence[float]) -> None:
    """Attach an embedding vector to a row."""

    payload = json.dumps([float(value) for value in vector], separators=(",", ":"))
    with database.session_scope() as session:
        record = session.get(ReceiptORM, row_id)
        if record is None:
            raise ValueError(f"Receipt {row_id} not found")
        record.embedding = payload


def list_rows_missing_embedding(
    database: Database, *, user_id: Optional[str] = None, limit: Optional[int] = None
) -> List[ReceiptRow]:
    with database.session_scope() as session:
        statement = select(ReceiptORM).where(ReceiptORM.embedding.is_(None))
        if user_id is not None:
            statement = statement.where(ReceiptORM.user_id == user_id)
        statement = statement.order_by(ReceiptORM.created_at, ReceiptORM.id)
        if limit is not None:
            statement = statement.limit(limit)
        return [_to_row_model(record) for record in session.execute(statement).scalars().all()]


def count_embedding_status(database: Database, *, user_id: Optional[str] = None) -> Tuple[int, int]:
    """Return ``(total_rows, rows_with_embedding)``."""

    with database.session_scope() as session:
        total_stmt = select(func.count(ReceiptORM.id))
        embedded_stmt = select(func.count(ReceiptORM.id)).where(ReceiptORM.embedding.is_not(None))
        if user_id is not None:
            total_stmt = total_stmt.where(ReceiptORM.user_id == user_id)
            embedded_stmt = embedded_stmt.where(ReceiptORM.user_id == user_id)
        total = session.execute(total_stmt).scalar_one()
        embedded = session.execute(embedded_stmt).scalar_one()
        return int(total), int(embedded)


def text_search(database: Database, user_id: str, query: str, limit: int) -> List[ReceiptRow]:
    """Case-insensitive substring match over the product/brand/model/store fields."""

    clauses = [
        getattr(ReceiptORM, field).icontains(query, autoescape=True) for field in TEXT_SEARCH_FIELDS
    ]
    with database.session_scope() as session:
        records = (
            session.execute(
                _user_rows(user_id)
                .where(or_(*clauses))
                .order_by(ReceiptORM.created_at.desc(), ReceiptORM.id)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [_to_row_model(record) for record in records]


def match_receipts_simple(
    database: Database,
    query_embedding: Sequence[float],
    match_threshold: float,
    match_count: int,
    user_id: str,
) -> List[Tuple[ReceiptRow, float]]:
    """Rank the user's embedded rows by cosine similarity to the query vector."""

    query = np.asarray(query_embedding, dtype=np.float32)
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0 or match_count <= 0:
        return []

    with database.session_scope() as session:
        records = (
            session.execute(_user_rows(user_id).where(ReceiptORM.embedding.is_not(None)))
            .scalars()
            .all()
        )
        scored: List[Tuple[ReceiptRow, float]] = []
        for record in records:
            vector = _decode_embedding(record.embedding)
            if vector is None or vector.shape != query.shape:
                continue
            norm = float(np.linalg.norm(vector))
            if norm == 0.0:
                continue
            similarity = float(np.dot(query, vector) / (query_norm * norm))
            if similarity >= match_threshold:
                scored.append((_to_row_model(record), similarity))

    scored.sort(key=lambda item: (-item[1], item[0].id))
    return scored[:match_count]


def list_duplicate_candidates(
    database: Database,
    user_id: str,
    start: date,
    end: date,
    *,
    store_name: Optional[str] = None,
) -> List[ReceiptRow]:
    """Return the user's rows purchased between ``start`` and ``end`` inclusive."""

    with database.session_scope() as session:
        statement = _user_rows(user_id).where(
            ReceiptORM.purchase_date >= start, ReceiptORM.purchase_date <= end
        )
        if store_name:
            statement = statement.where(ReceiptORM.store_name.icontains(store_name, autoescape=True))
        records = session.execute(statement.order_by(ReceiptORM.created_at.desc())).scalars().all()
        return [_to_row_model(record) for record in records]


def image_paths_in_use(database: Database, user_id: str, paths: Iterable[str]) -> set[str]:
    """Return which of ``paths`` are still referenced by the user's rows."""

    wanted = {path for path in paths if path}
    if not wanted:
        return set()
    with database.session_scope() as session:
        rows = session.execute(
            select(ReceiptORM.image_path).where(
                ReceiptORM.user_id == user_id, ReceiptORM.image_path.in_(wanted)
            )
        ).scalars()
        return {path for path in rows if path}


__all__ = [
    "EDITABLE_FIELDS",
    "TEXT_SEARCH_FIELDS",
    "insert_receipt_rows",
    "list_receipt_rows",
    "fetch_receipt_row",
    "delete_receipt_rows",
    "update_receipt_row",
    "fetch_receipt_embedding_source",
    "store_receipt_embedding",
    "list_rows_missing_embedding",
    "count_embedding_status",
    "text_search",
    "match_receipts_simple",
    "list_duplicate_candidates",
    "image_paths_in_use",
]
