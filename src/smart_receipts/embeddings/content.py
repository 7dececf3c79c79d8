"""Text used to embed a receipt row."""

from __future__ import annotations

from typing import Any

CONTENT_FIELDS = (
    "product_description",
    "brand_name",
    "model_number",
    "store_name",
    "purchase_location",
    "warranty_period",
)


def build_receipt_content(row: Any) -> str:
    """Join the descriptive fields of a row with single spaces, skipping empty ones."""

    parts = []
    for field in CONTENT_FIELDS:
        value = row.get(field) if isinstance(row, dict) else getattr(row, field, None)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            parts.append(text)
    return " ".join(parts)


__all__ = ["CONTENT_FIELDS", "build_receipt_content"]
