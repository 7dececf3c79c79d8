"""Pydantic models for smart search results and embedding bookkeeping."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from smart_receipts.models.receipt import ReceiptRow

UNKNOWN_PRODUCT = "Unknown Product"
UNKNOWN_BRAND = "Unknown Brand"
UNKNOWN = "Unknown"


class RankedResult(BaseModel):
    """Search hit in the shape the receipt UI consumes."""

    id: str
    title: str
    brand: str
    model: Optional[str] = None
    purchase_date: Optional[date] = Field(default=None, alias="purchaseDate")
    amount: Optional[float] = None
    warranty_period: str = Field(alias="warrantyPeriod")
    relevance_score: float = Field(alias="relevanceScore")

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    @classmethod
    def from_row(cls, row: ReceiptRow, relevance_score: float) -> "RankedResult":
        return cls(
            id=row.id,
            title=row.product_description or UNKNOWN_PRODUCT,
            brand=row.brand_name or UNKNOWN_BRAND,
            model=row.model_number,
            purchase_date=row.purchase_date,
            amount=row.amount,
            warranty_period=row.warranty_period or UNKNOWN,
            relevance_score=relevance_score,
        )


class SearchResponse(BaseModel):
    results: List[RankedResult] = Field(default_factory=list)
    fallback: bool = False
    message: Optional[str] = None
    tier: Optional[str] = None


class BackfillItemResult(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None


class BackfillResult(BaseModel):
    """Summary of one embedding backfill batch."""

    success: bool = True
    processed: int = 0
    successful: int = 0
    errors: int = 0
    remaining: int = 0
    results: List[BackfillItemResult] = Field(default_factory=list)
    message: Optional[str] = None


class EmbeddingStatus(BaseModel):
    total_receipts: int = Field(alias="totalReceipts")
    receipts_with_embeddings: int = Field(alias="receiptsWithEmbeddings")
    receipts_without_embeddings: int = Field(alias="receiptsWithoutEmbeddings")
    percentage_complete: float = Field(alias="percentageComplete")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "UNKNOWN_PRODUCT",
    "UNKNOWN_BRAND",
    "UNKNOWN",
    "RankedResult",
    "SearchResponse",
    "BackfillItemResult",
    "BackfillResult",
    "EmbeddingStatus",
]
