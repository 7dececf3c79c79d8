"""Tests for saving receipts and rebuilding grouped purchases."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from smart_receipts.db.receipts import insert_receipt_rows
from smart_receipts.ingest.service import ReceiptGroupingService, group_receipt_rows
from smart_receipts.models.receipt import (
    GroupReceiptView,
    ReceiptRow,
    ReceiptUpdate,
    SingleReceiptView,
    parse_extracted_receipt,
)
from smart_receipts.storage.images import ImageStorage


@pytest.fixture()
def service(database) -> ReceiptGroupingService:
    return ReceiptGroupingService(database)


def test_single_product_saves_one_standalone_row(service, single_receipt):
    result = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    assert result.success is True
    assert result.receipt_group_id is None
    (row,) = result.receipts
    assert row.is_group_receipt is False
    assert row.receipt_group_id is None
    assert row.receipt_total == row.amount == 1299.99
    assert row.processing_method == "gpt_structured"


def test_multi_product_rows_share_group_and_purchase_facts(service, multi_receipt):
    result = service.save_receipt(
        parse_extracted_receipt(multi_receipt), "user-1", image_url="user-1/receipt.jpg"
    )

    assert result.success is True
    assert len(result.receipts) == 3
    assert result.receipt_group_id
    assert {row.receipt_group_id for row in result.receipts} == {result.receipt_group_id}
    assert all(row.is_group_receipt for row in result.receipts)
    assert {row.store_name for row in result.receipts} == {"Costco"}
    assert {row.purchase_date for row in result.receipts} == {date(2024, 3, 2)}
    assert {row.receipt_total for row in result.receipts} == {549.98}
    assert {row.image_path for row in result.receipts} == {"user-1/receipt.jpg"}
    assert [row.amount for row in result.receipts] == [399.99, 99.99, 49.99]


def test_multi_total_defaults_to_sum_of_product_amounts(service, multi_receipt):
    multi_receipt.pop("total_amount")
    result = service.save_receipt(parse_extracted_receipt(multi_receipt), "user-1")

    assert result.receipts[0].receipt_total == pytest.approx(549.97)


def test_non_positive_amount_is_stored_as_missing(service, single_receipt):
    single_receipt["amount"] = 0
    result = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    assert result.receipts[0].amount is None
    assert result.receipts[0].receipt_total is None


@pytest.mark.parametrize(
    "field, message",
    [
        ("product_description", "Product description is required"),
        ("brand_name", "Brand name is required"),
        ("purchase_date", "Purchase date is required"),
        ("warranty_period", "Warranty period is required"),
    ],
)
def test_single_receipt_missing_required_field(service, database, single_receipt, field, message):
    single_receipt[field] = None
    result = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    assert result.success is False
    assert result.error_kind == "validation"
    assert result.error == message
    assert service.list_receipts("user-1") == []


def test_multi_receipt_reports_product_position(service, multi_receipt):
    multi_receipt["products"][1]["brand_name"] = "  "
    result = service.save_receipt(parse_extracted_receipt(multi_receipt), "user-1")

    assert result.success is False
    assert result.error == "Product 2: brand name is required"
    assert service.list_receipts("user-1") == []


def test_failed_insert_leaves_no_partial_group(service, multi_receipt):
    result = service.save_receipt(parse_extracted_receipt(multi_receipt), None)

    assert result.success is False
    assert result.error_kind == "store"
    assert result.error
    assert service.list_receipts("user-1") == []


def test_grouped_view_collapses_groups_and_keeps_singles(service, single_receipt, multi_receipt):
    service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")
    group = service.save_receipt(parse_extracted_receipt(multi_receipt), "user-1")
    single_receipt["product_description"] = "Monitor"
    service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    views = service.get_grouped_receipts("user-1")

    assert len(views) == 3
    assert [view.type for view in views] == ["single", "group", "single"]
    group_view = views[1]
    assert isinstance(group_view, GroupReceiptView)
    assert group_view.id == group.receipt_group_id
    assert group_view.product_count == 3
    assert group_view.receipt_total == 549.98
    assert group_view.store_name == "Costco"
    assert views[0].product_description == "Monitor"


def _view_row(row_id: str, created_at: datetime, **overrides) -> ReceiptRow:
    values = {
        "id": row_id,
        "user_id": "user-1",
        "created_at": created_at,
        "updated_at": created_at,
    }
    values.update(overrides)
    return ReceiptRow(**values)


def test_group_receipt_rows_uses_first_available_image():
    now = datetime(2024, 5, 1, 9, 0, 0)
    rows = [
        _view_row("a", now, is_group_receipt=True, receipt_group_id="g", receipt_total=30.0),
        _view_row("b", now, is_group_receipt=True, receipt_group_id="g", image_url="https://img/b.jpg"),
        _view_row("c", now - timedelta(days=1)),
    ]

    views = group_receipt_rows(rows)

    assert isinstance(views[0], GroupReceiptView)
    assert views[0].image_url == "https://img/b.jpg"
    assert views[0].amount == 30.0
    assert [row.id for row in views[0].receipts] == ["a", "b"]
    assert isinstance(views[1], SingleReceiptView)


def test_row_flagged_as_group_without_id_is_standalone():
    now = datetime(2024, 5, 1, 9, 0, 0)
    views = group_receipt_rows([_view_row("a", now, is_group_receipt=True)])

    assert [view.type for view in views] == ["single"]


def test_delete_group_removes_every_row(service, multi_receipt, single_receipt):
    group = service.save_receipt(parse_extracted_receipt(multi_receipt), "user-1")
    service.save_receipt(parse_extracted_receipt(single_receipt), "user-1")

    result = service.delete_receipt("user-1", group_id=group.receipt_group_id)

    assert result.success is True
    assert result.deleted == 3
    assert [view.type for view in service.get_grouped_receipts("user-1")] == ["single"]


def test_delete_is_scoped_to_owner(service, multi_receipt):
    group = service.save_receipt(parse_extracted_receipt(multi_receipt), "user-1")

    result = service.delete_receipt("user-2", group_id=group.receipt_group_id)

    assert result.success is False
    assert result.error_kind == "not_found"
    assert len(service.list_receipts("user-1")) == 3


def test_delete_requires_one_identifier(service):
    result = service.delete_receipt("user-1")

    assert result.success is False
    assert result.error_kind == "validation"


def test_delete_removes_images_no_longer_referenced(database, tmp_path, single_receipt):
    storage = ImageStorage(tmp_path / "bucket", secret="s3cret")
    stored = storage.upload("user-1", b"jpeg-bytes", "receipt.jpg")
    service = ReceiptGroupingService(database, storage=storage)
    first = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1", image_url=stored.url)
    second = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1", image_url=stored.url)

    service.delete_receipt("user-1", row_id=first.receipts[0].id)
    assert storage.read(stored.path) == b"jpeg-bytes"

    service.delete_receipt("user-1", row_id=second.receipts[0].id)
    with pytest.raises(ValueError):
        storage.read(stored.path)


def test_save_rejects_image_from_another_users_folder(database, tmp_path, single_receipt):
    storage = ImageStorage(tmp_path / "bucket", secret="s3cret")
    foreign = storage.upload("user-2", b"jpeg-bytes", "receipt.jpg")
    service = ReceiptGroupingService(database, storage=storage)

    for image_url in (foreign.url, foreign.path, "user-1/../user-2/receipt.jpg"):
        result = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1", image_url=image_url)
        assert result.success is False
        assert result.error_kind == "validation"

    assert service.list_receipts("user-1") == []
    assert storage.read(foreign.path) == b"jpeg-bytes"


def test_delete_leaves_images_outside_the_user_folder(database, tmp_path):
    storage = ImageStorage(tmp_path / "bucket", secret="s3cret")
    foreign = storage.upload("user-2", b"jpeg-bytes", "receipt.jpg")
    (row,) = insert_receipt_rows(
        database,
        [
            {
                "user_id": "user-1",
                "product_description": "Laptop",
                "brand_name": "Dell",
                "purchase_date": date(2024, 1, 15),
                "image_url": foreign.url,
                "image_path": foreign.path,
                "created_at": datetime(2024, 1, 15, 12, 0, 0),
            }
        ],
    )
    service = ReceiptGroupingService(database, storage=storage)

    assert service.list_receipts("user-1")[0].image_url == foreign.url
    assert service.delete_receipt("user-1", row_id=row.id).success is True
    assert storage.read(foreign.path) == b"jpeg-bytes"


def test_bare_image_path_is_listed_as_signed_url(database, tmp_path, single_receipt):
    storage = ImageStorage(tmp_path / "bucket", secret="s3cret")
    stored = storage.upload("user-1", b"jpeg-bytes", "receipt.jpg")
    service = ReceiptGroupingService(database, storage=storage)
    service.save_receipt(parse_extracted_receipt(single_receipt), "user-1", image_url=stored.path)

    (row,) = service.list_receipts("user-1")

    assert row.image_path == stored.path
    assert "signature=" in row.image_url
    assert ImageStorage.path_from_url(row.image_url) == stored.path


def test_update_trims_and_validates_fields(service, single_receipt):
    saved = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1").receipts[0]

    result = service.update_receipt(
        "user-1",
        saved.id,
        ReceiptUpdate(brand_name="  Lenovo ", model_number="   ", amount=-5, store_name=" Target "),
    )

    assert result.error is None
    assert result.receipt.brand_name == "Lenovo"
    assert result.receipt.model_number is None
    assert result.receipt.amount is None
    assert result.receipt.store_name == "Target"
    assert result.receipt.product_description == "Dell XPS 13 Laptop"


def test_update_rejects_blank_required_field(service, single_receipt):
    saved = service.save_receipt(parse_extracted_receipt(single_receipt), "user-1").receipts[0]

    result = service.update_receipt("user-1", saved.id, ReceiptUpdate(product_description=" "))

    assert result.receipt is None
    assert result.error_kind == "validation"
    assert result.error == "Product description is required"


def test_update_unknown_row_is_not_found(service):
    result = service.update_receipt("user-1", "missing", ReceiptUpdate(brand_name="Sony"))

    assert result.error_kind == "not_found"
