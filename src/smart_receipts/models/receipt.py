"""Pydantic models for receipt rows, extracted receipt input and derived views."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

ProcessingMethod = Literal["manual", "ocr", "gpt_structured", "fallback_parsing"]


class ReceiptRow(BaseModel):
    """One persisted receipt line item (a standalone purchase or one product of a group)."""

    id: str
    user_id: str
    product_description: Optional[str] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    store_name: Optional[str] = None
    purchase_location: Optional[str] = None
    purchase_date: Optional[date] = None
    country: Optional[str] = None
    amount: Optional[float] = None
    receipt_total: Optional[float] = None
    warranty_period: Optional[str] = None
    extended_warranty: Optional[str] = None
    image_url: Optional[str] = None
    image_path: Optional[str] = None
    processing_method: Optional[str] = None
    ocr_confidence: Optional[float] = None
    extracted_text: Optional[str] = None
    is_group_receipt: bool = False
    receipt_group_id: Optional[str] = None
    has_embedding: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PurchaseDetails(BaseModel):
    """Purchase facts shared by every product on one physical receipt."""

    store_name: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_location: Optional[str] = None
    country: Optional[str] = None
    extended_warranty: Optional[str] = None


class ExtractedProduct(BaseModel):
    """A single product line extracted from a multi-product receipt."""

    product_description: Optional[str] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    amount: Optional[float] = None
    warranty_period: Optional[str] = None
    extended_warranty: Optional[str] = None
    category: Optional[str] = None


class SingleProductInput(PurchaseDetails):
    """Extracted data for a receipt covering exactly one product."""

    kind: Literal["single"] = "single"
    product_description: Optional[str] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    amount: Optional[float] = None
    warranty_period: Optional[str] = None


class MultiProductInput(PurchaseDetails):
    """Extracted data for a receipt listing several products."""

    kind: Literal["multi"] = "multi"
    products: List[ExtractedProduct] = Field(min_length=1)
    total_amount: Optional[float] = None


ReceiptInput = Annotated[Union[SingleProductInput, MultiProductInput], Field(discriminator="kind")]

_RECEIPT_INPUT_ADAPTER: TypeAdapter[Any] = TypeAdapter(ReceiptInput)


def parse_extracted_receipt(payload: dict[str, Any]) -> SingleProductInput | MultiProductInput:
    """Turn raw extracted receipt JSON into the single/multi product union.

    A payload with a non-empty ``products`` list is a multi-product receipt;
    anything else is treated as a single product. An explicit ``kind`` wins.
    """

    data = dict(payload)
    if "kind" not in data:
        products = data.get("products")
        data["kind"] = "multi" if isinstance(products, list) and products else "single"
        if data["kind"] == "single":
            data.pop("products", None)
        elif data.get("total_amount") is None and data.get("amount") is not None:
            data["total_amount"] = data.pop("amount")
    return _RECEIPT_INPUT_ADAPTER.validate_python(data)


class ReceiptSaveResult(BaseModel):
    """Outcome of persisting one extracted receipt."""

    success: bool
    receipts: List[ReceiptRow] = Field(default_factory=list)
    receipt_group_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[Literal["validation", "store"]] = None
    processing_method: Optional[str] = None


class ReceiptDeleteResult(BaseModel):
    success: bool
    deleted: int = 0
    error: Optional[str] = None
    error_kind: Optional[Literal["validation", "not_found", "store"]] = None


class ReceiptUpdateResult(BaseModel):
    receipt: Optional[ReceiptRow] = None
    error: Optional[str] = None
    error_kind: Optional[Literal["validation", "not_found", "store"]] = None


class ReceiptUpdate(BaseModel):
    """Editable subset of receipt fields."""

    product_description: Optional[str] = Field(default=None, max_length=500)
    brand_name: Optional[str] = Field(default=None, max_length=255)
    model_number: Optional[str] = Field(default=None, max_length=255)
    store_name: Optional[str] = Field(default=None, max_length=255)
    purchase_location: Optional[str] = Field(default=None, max_length=500)
    purchase_date: Optional[date] = None
    country: Optional[str] = Field(default=None, max_length=128)
    amount: Optional[float] = None
    warranty_period: Optional[str] = Field(default=None, max_length=128)
    extended_warranty: Optional[str] = Field(default=None, max_length=255)


class SingleReceiptView(ReceiptRow):
    """A standalone purchase as shown in the library."""

    type: Literal["single"] = "single"


class GroupReceiptView(BaseModel):
    """Display-level reconstruction of a multi-product purchase."""

    type: Literal["group"] = "group"
    id: str
    receipts: List[ReceiptRow]
    store_name: Optional[str] = None
    purchase_date: Optional[date] = None
    receipt_total: Optional[float] = None
    amount: Optional[float] = None
    product_count: int
    image_url: Optional[str] = None
    created_at: datetime


GroupedReceiptView = Annotated[
    Union[SingleReceiptView, GroupReceiptView], Field(discriminator="type")
]


class DuplicateMatch(BaseModel):
    receipt: ReceiptRow
    match_score: float
    match_reasons: List[str] = Field(default_factory=list)


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    matches: List[DuplicateMatch] = Field(default_factory=list)
    confidence: float = 0.0


class ReceiptSummary(BaseModel):
    """Dashboard totals over a user's receipt rows."""

    total_receipts: int
    total_value: float
    active_warranties: int
    expiring_warranties: int


__all__ = [
    "ProcessingMethod",
    "ReceiptRow",
    "PurchaseDetails",
    "ExtractedProduct",
    "SingleProductInput",
    "MultiProductInput",
    "ReceiptInput",
    "parse_extracted_receipt",
    "ReceiptSaveResult",
    "ReceiptDeleteResult",
    "ReceiptUpdateResult",
    "ReceiptUpdate",
    "SingleReceiptView",
    "GroupReceiptView",
    "GroupedReceiptView",
    "DuplicateMatch",
    "DuplicateCheckResult",
    "ReceiptSummary",
]
