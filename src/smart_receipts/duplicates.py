"""Detect receipts that were probably already saved."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Union

from rapidfuzz.distance import Levenshtein

from smart_receipts.db.receipts import list_duplicate_candidates
from smart_receipts.db.repository import Database
from smart_receipts.models.receipt import (
    DuplicateCheckResult,
    DuplicateMatch,
    MultiProductInput,
    ReceiptRow,
    SingleProductInput,
)

DEFAULT_THRESHOLD = 0.6
SIMILARITY_CUTOFF = 0.8
DATE_WINDOW = timedelta(days=3)

logger = logging.getLogger(__name__)


def is_similar_string(left: Optional[str], right: Optional[str]) -> bool:
    """Equal, contained in one another, or within 80% normalized edit distance."""

    if not left or not right:
        return False
    a = left.lower().strip()
    b = right.lower().strip()
    if a == b or a in b or b in a:
        return True
    return Levenshtein.normalized_similarity(a, b) > SIMILARITY_CUTOFF


def _same_amount(left: Optional[float], right: Optional[float]) -> bool:
    return bool(left) and bool(right) and abs(left - right) < 0.01


def _score_single(receipt: SingleProductInput, existing: ReceiptRow) -> DuplicateMatch:
    score = 0.0
    reasons: List[str] = []
    if is_similar_string(receipt.store_name, existing.store_name):
        score += 0.25
        reasons.append("Same store")
    if receipt.purchase_date == existing.purchase_date:
        score += 0.20
        reasons.append("Same purchase date")
    if is_similar_string(receipt.product_description, existing.product_description):
        score += 0.25
        reasons.append("Similar product")
    if is_similar_string(receipt.brand_name, existing.brand_name):
        score += 0.15
        reasons.append("Same brand")
    if _same_amount(receipt.amount, existing.amount):
        score += 0.10
        reasons.append("Same amount")
    if is_similar_string(receipt.model_number, existing.model_number):
        score += 0.05
        reasons.append("Same model")
    return DuplicateMatch(receipt=existing, match_score=round(score, 4), match_reasons=reasons)


def _score_multi(receipt: MultiProductInput, existing: ReceiptRow) -> DuplicateMatch:
    score = 0.0
    reasons: List[str] = []
    if is_similar_string(receipt.store_name, existing.store_name):
        score += 0.30
        reasons.append("Same store")
    if receipt.purchase_date == existing.purchase_date:
        score += 0.25
        reasons.append("Same purchase date")
    if _same_amount(receipt.total_amount, existing.receipt_total):
        score += 0.20
        reasons.append("Same total amount")
    if any(
        is_similar_string(product.product_description, existing.product_description)
        for product in receipt.products
    ):
        score += 0.25
        reasons.append("Contains similar product")
    return DuplicateMatch(receipt=existing, match_score=round(score, 4), match_reasons=reasons)


class DuplicateDetector:
    """Score a new receipt against the user's receipts from the surrounding days."""

    def __init__(self, database: Database, *, threshold: float = DEFAULT_THRESHOLD) -> None:
        self._database = database
        self._threshold = threshold

    def check(
        self, receipt: Union[SingleProductInput, MultiProductInput], user_id: str
    ) -> DuplicateCheckResult:
        if receipt.purchase_date is None:
            return DuplicateCheckResult(is_duplicate=False)
        try:
            candidates = list_duplicate_candidates(
                self._database,
                user_id,
                receipt.purchase_date - DATE_WINDOW,
                receipt.purchase_date + DATE_WINDOW,
                store_name=(receipt.store_name or "").strip() or None,
            )
        except Exception as exc:  # noqa: BLE001 - detection degrades to "no duplicate"
            logger.warning("Duplicate lookup failed: %s", exc, extra={"user_id": user_id})
            return DuplicateCheckResult(is_duplicate=False)

        scorer = _score_multi if isinstance(receipt, MultiProductInput) else _score_single
        matches = [match for match in (scorer(receipt, row) for row in candidates) if match.match_score > self._threshold]
        matches.sort(key=lambda match: match.match_score, reverse=True)
        if not matches:
            return DuplicateCheckResult(is_duplicate=False)
        return DuplicateCheckResult(is_duplicate=True, matches=matches, confidence=matches[0].match_score)


def format_duplicate_message(result: DuplicateCheckResult) -> str:
    if not result.matches:
        return ""
    best = result.matches[0]
    reasons = ", ".join(best.match_reasons)
    return (
        f"Similar receipt found from {best.receipt.store_name} on "
        f"{best.receipt.purchase_date} ({reasons})"
    )


__all__ = [
    "DEFAULT_THRESHOLD",
    "DuplicateDetector",
    "format_duplicate_message",
    "is_similar_string",
]
