"""Tests for duplicate receipt detection."""

from __future__ import annotations

import pytest

from smart_receipts.duplicates import DuplicateDetector, format_duplicate_message, is_similar_string
from smart_receipts.ingest.service import ReceiptGroupingService
from smart_receipts.models.receipt import parse_extracted_receipt


@pytest.mark.parametrize(
    "left, right, expected",
    [
        ("Best Buy", "best buy", True),
        ("Best Buy", "Best Buy #1234", True),
        ("Panasonic", "Panasonik", True),
        ("Costco", "Target", False),
        (None, "Target", False),
        ("", "", False),
    ],
)
def test_is_similar_string(left, right, expected):
    assert is_similar_string(left, right) is expected


def test_detects_resubmitted_single_receipt(database, single_receipt):
    ReceiptGroupingService(database).save_receipt(parse_extracted_receipt(single_receipt), "user-1")
    detector = DuplicateDetector(database)

    result = detector.check(parse_extracted_receipt(single_receipt), "user-1")

    assert result.is_duplicate is True
    assert result.confidence == pytest.approx(1.0)
    assert result.matches[0].match_reasons[:2] == ["Same store", "Same purchase date"]
    assert format_duplicate_message(result).startswith("Similar receipt found from Best Buy on 2024-01-15")


def test_multi_receipt_duplicate_uses_total_and_products(database, multi_receipt):
    ReceiptGroupingService(database).save_receipt(parse_extracted_receipt(multi_receipt), "user-1")

    result = DuplicateDetector(database).check(parse_extracted_receipt(multi_receipt), "user-1")

    assert result.is_duplicate is True
    assert len(result.matches) == 3
    assert result.matches[0].match_reasons == [
        "Same store",
        "Same purchase date",
        "Same total amount",
        "Contains similar product",
    ]


def test_different_purchase_is_not_a_duplicate(database, single_receipt):
    ReceiptGroupingService(database).save_receipt(parse_extracted_receipt(single_receipt), "user-1")
    other = dict(single_receipt, product_description="Blender", brand_name="Vitamix", amount=89.0, model_number=None)

    result = DuplicateDetector(database).check(parse_extracted_receipt(other), "user-1")

    assert result.is_duplicate is False
    assert result.matches == []
    assert format_duplicate_message(result) == ""


def test_other_users_receipts_are_ignored(database, single_receipt):
    ReceiptGroupingService(database).save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    result = DuplicateDetector(database).check(parse_extracted_receipt(single_receipt), "user-2")

    assert result.is_duplicate is False


def test_purchase_outside_window_is_ignored(database, single_receipt):
    ReceiptGroupingService(database).save_receipt(parse_extracted_receipt(single_receipt), "user-1")
    later = dict(single_receipt, purchase_date="2024-01-19")

    result = DuplicateDetector(database).check(parse_extracted_receipt(later), "user-1")

    assert result.is_duplicate is False
