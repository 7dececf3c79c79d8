"""Receipt library filtering, sorting and warranty tracking."""

from __future__ import annotations

from .filters import CATEGORY_KEYWORDS, SORT_KEYS, LibraryFilters, apply_filters_and_sort
from .stats import summarize_receipts
from .warranty import (
    LIFETIME_EXPIRY,
    calculate_warranty_expiry,
    days_until_expiry,
    warranty_buckets,
)

__all__ = [
    "CATEGORY_KEYWORDS",
    "SORT_KEYS",
    "LibraryFilters",
    "apply_filters_and_sort",
    "summarize_receipts",
    "LIFETIME_EXPIRY",
    "calculate_warranty_expiry",
    "days_until_expiry",
    "warranty_buckets",
]
