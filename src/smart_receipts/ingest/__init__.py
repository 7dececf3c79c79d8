"""Receipt persistence and grouping."""

from __future__ import annotations

from .service import ReceiptGroupingService, ReceiptValidationError, group_receipt_rows

__all__ = ["ReceiptGroupingService", "ReceiptValidationError", "group_receipt_rows"]
