"""Dashboard totals over a user's receipts."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from smart_receipts.library.filters import warranty_expiry_for
from smart_receipts.library.warranty import days_until_expiry, utcnow
from smart_receipts.models.receipt import ReceiptRow, ReceiptSummary

EXPIRING_WINDOW_DAYS = 90


def summarize_receipts(rows: Sequence[ReceiptRow], now: Optional[datetime] = None) -> ReceiptSummary:
    current = now or utcnow()
    active = 0
    expiring = 0
    for row in rows:
        expiry = warranty_expiry_for(row)
        if expiry is None:
            continue
        days_left = days_until_expiry(expiry, current)
        if days_left > 0:
            active += 1
            if days_left <= EXPIRING_WINDOW_DAYS:
                expiring += 1
    return ReceiptSummary(
        total_receipts=len(rows),
        total_value=round(sum(row.amount or 0.0 for row in rows), 2),
        active_warranties=active,
        expiring_warranties=expiring,
    )


__all__ = ["EXPIRING_WINDOW_DAYS", "summarize_receipts"]
