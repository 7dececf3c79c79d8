"""SQLAlchemy models representing Smart Receipts persistence tables."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base class for Smart Receipts ORM models."""


class ReceiptORM(Base):
    """One receipt line item. Multi-product purchases share a receipt_group_id."""

    __tablename__ = "receipts"
    __table_args__ = (
        Index("ix_receipts_user_created", "user_id", "created_at"),
        Index("ix_receipts_group", "receipt_group_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    brand_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    model_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    store_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    purchase_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    purchase_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    receipt_total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    warranty_period: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    extended_warranty: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    processing_method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ocr_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_group_receipt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    receipt_group_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    embedding: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


__all__ = ["Base", "ReceiptORM"]
