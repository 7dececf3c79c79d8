"""In-memory filtering and sorting of a user's receipt library."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from smart_receipts.library.warranty import (
    calculate_warranty_expiry,
    days_until_expiry,
    matches_status,
    utcnow,
)
from smart_receipts.models.receipt import ReceiptRow

SortKey = Literal["value-desc", "value-asc", "brand-asc", "warranty-expiry", "date-desc", "date-asc"]
SORT_KEYS: Tuple[str, ...] = (
    "value-desc",
    "value-asc",
    "brand-asc",
    "warranty-expiry",
    "date-desc",
    "date-asc",
)

CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Electronics": ("phone", "laptop", "camera", "tv", "computer", "tablet"),
    "Appliances": ("refrigerator", "fridge", "microwave", "washer", "dryer", "dishwasher", "oven", "vacuum"),
    "Furniture": ("sofa", "couch", "chair", "table", "desk", "bed", "mattress"),
    "Tools": ("drill", "saw", "mower", "tool"),
}


class LibraryFilters(BaseModel):
    """Optional, conjunctive library filters. Unset fields match everything."""

    brands: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    warranty_status: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


def warranty_expiry_for(row: ReceiptRow) -> Optional[date]:
    if row.purchase_date is None:
        return None
    return calculate_warranty_expiry(row.purchase_date, row.warranty_period or "")


def _in_category(row: ReceiptRow, category: str) -> bool:
    keywords = CATEGORY_KEYWORDS.get(category)
    if keywords is None:
        raise ValueError(f"Unknown category: {category}")
    description = (row.product_description or "").lower()
    return any(keyword in description for keyword in keywords)


def _matches(row: ReceiptRow, filters: LibraryFilters, now: datetime) -> bool:
    if filters.brands and row.brand_name not in filters.brands:
        return False
    if filters.category and not _in_category(row, filters.category):
        return False
    if filters.warranty_status:
        expiry = warranty_expiry_for(row)
        if expiry is None or not matches_status(days_until_expiry(expiry, now), filters.warranty_status):
            return False
    amount = row.amount or 0.0
    if filters.min_price is not None and amount < filters.min_price:
        return False
    if filters.max_price is not None and amount > filters.max_price:
        return False
    return True


def _sort_rule(sort_key: str) -> Tuple[Callable[[ReceiptRow], object], bool]:
    if sort_key == "value-desc":
        return (lambda row: row.amount or 0.0), True
    if sort_key == "value-asc":
        return (lambda row: row.amount or 0.0), False
    if sort_key == "brand-asc":
        return (lambda row: (row.brand_name or "").casefold()), False
    if sort_key == "warranty-expiry":
        return (lambda row: (warranty_expiry_for(row) is None, warranty_expiry_for(row) or date.max)), False
    if sort_key == "date-desc":
        return (lambda row: row.created_at), True
    if sort_key == "date-asc":
        return (lambda row: row.created_at), False
    raise ValueError(f"Unknown sort key: {sort_key}")


def apply_filters_and_sort(
    rows: Sequence[ReceiptRow],
    filters: Optional[LibraryFilters] = None,
    sort_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[ReceiptRow]:
    """Filter then sort rows; equal sort keys keep ascending id order."""

    filters = filters or LibraryFilters()
    current = now or utcnow()
    selected = [row for row in rows if _matches(row, filters, current)]
    if not sort_key:
        return selected
    key, reverse = _sort_rule(sort_key)
    selected.sort(key=lambda row: row.id)
    selected.sort(key=key, reverse=reverse)
    return selected


__all__ = [
    "SortKey",
    "SORT_KEYS",
    "CATEGORY_KEYWORDS",
    "LibraryFilters",
    "warranty_expiry_for",
    "apply_filters_and_sort",
]
