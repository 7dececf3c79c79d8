"""Warranty expiry computation and status buckets."""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal, Optional

LIFETIME_EXPIRY = date(2099, 12, 31)
WarrantyStatus = Literal["expired", "expiring-soon", "expiring-3m", "expiring-6m", "active"]
WARRANTY_STATUSES: tuple[str, ...] = ("expired", "expiring-soon", "expiring-3m", "expiring-6m", "active")

_YEARS_RE = re.compile(r"(\d+)\s*year")
_MONTHS_RE = re.compile(r"(\d+)\s*month")


def _add_months(start: date, months: int) -> date:
    # Day overflow rolls into the next month (Jan 31 + 1 month -> Mar 2/3).
    total = start.month - 1 + months
    year = start.year + total // 12
    month = total % 12 + 1
    try:
        return date(year, month, 1) + timedelta(days=start.day - 1)
    except (ValueError, OverflowError):
        return date.max


def calculate_warranty_expiry(purchase_date: date, warranty_period: str) -> date:
    """Return the date a warranty runs out.

    ``lifetime`` maps to 2099-12-31. Otherwise the first ``N year`` match
    wins, then ``N month``; text without either counts as one year.
    """

    period = (warranty_period or "").lower()
    if "lifetime" in period:
        return LIFETIME_EXPIRY
    if (years := _YEARS_RE.search(period)):
        return _add_months(purchase_date, int(years.group(1)) * 12)
    if (months := _MONTHS_RE.search(period)):
        return _add_months(purchase_date, int(months.group(1)))
    return _add_months(purchase_date, 12)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_until_expiry(expiry: date, now: Optional[datetime] = None) -> int:
    current = now or utcnow()
    if current.tzinfo is not None:
        current = current.astimezone(timezone.utc).replace(tzinfo=None)
    delta = datetime.combine(expiry, time.min) - current
    return math.ceil(delta / timedelta(days=1))


def matches_status(days_left: int, status: str) -> bool:
    """Bucket membership; ``expiring-3m`` and ``expiring-6m`` overlap."""

    if status == "expired":
        return days_left <= 0
    if status in ("expiring-soon", "expiring-3m"):
        return 0 < days_left <= 90
    if status == "expiring-6m":
        return 0 < days_left <= 180
    if status == "active":
        return days_left > 0
    raise ValueError(f"Unknown warranty status: {status}")


def warranty_buckets(days_left: int) -> list[str]:
    return [status for status in WARRANTY_STATUSES if matches_status(days_left, status)]


__all__ = [
    "LIFETIME_EXPIRY",
    "WarrantyStatus",
    "WARRANTY_STATUSES",
    "calculate_warranty_expiry",
    "days_until_expiry",
    "utcnow",
    "matches_status",
    "warranty_buckets",
]
