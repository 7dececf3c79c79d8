"""Pydantic models defining shared data contracts."""

from smart_receipts.models.receipt import (
    DuplicateCheckResult,
    DuplicateMatch,
    ExtractedProduct,
    GroupedReceiptView,
    GroupReceiptView,
    MultiProductInput,
    ReceiptDeleteResult,
    ReceiptInput,
    ReceiptRow,
    ReceiptSaveResult,
    ReceiptSummary,
    ReceiptUpdate,
    ReceiptUpdateResult,
    SingleProductInput,
    SingleReceiptView,
    parse_extracted_receipt,
)
from smart_receipts.models.search import (
    BackfillItemResult,
    BackfillResult,
    EmbeddingStatus,
    RankedResult,
    SearchResponse,
)

__all__ = [
    "DuplicateCheckResult",
    "DuplicateMatch",
    "ExtractedProduct",
    "GroupedReceiptView",
    "GroupReceiptView",
    "MultiProductInput",
    "ReceiptDeleteResult",
    "ReceiptInput",
    "ReceiptRow",
    "ReceiptSaveResult",
    "ReceiptSummary",
    "ReceiptUpdate",
    "ReceiptUpdateResult",
    "SingleProductInput",
    "SingleReceiptView",
    "parse_extracted_receipt",
    "BackfillItemResult",
    "BackfillResult",
    "EmbeddingStatus",
    "RankedResult",
    "SearchResponse",
]
