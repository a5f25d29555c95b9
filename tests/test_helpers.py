from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from embroidery_store.errors import APIError
from embroidery_store.helpers import (
    date_range_between, date_range_days_ago, format_store_date, pagination_meta, serialize_doc, to_obj_id, unique,
    year_range,
)


def test_date_range_days_ago_uses_store_day_boundaries():
    # 20:00 UTC on Jan 10 is already Jan 11 in Asia/Kolkata
    now = datetime(2024, 1, 10, 20, 0, tzinfo=timezone.utc)
    start, end = date_range_days_ago(7, now=now)
    assert start == datetime(2024, 1, 3, 18, 30)
    assert end.date() == datetime(2024, 1, 11).date()
    assert end.hour == 18 and end.minute == 29
    assert start.tzinfo is None and end.tzinfo is None


def test_date_range_between_open_ends():
    start, end = date_range_between("2024-03-01", None)
    assert start == datetime(2024, 2, 29, 18, 30)
    assert end is None
    start, end = date_range_between(None, "2024-03-01")
    assert start is None
    assert end - datetime(2024, 3, 1, 18, 29, 59) < timedelta(seconds=1)


def test_invalid_day_raises_400():
    with pytest.raises(APIError) as exc:
        date_range_between("03/01/2024", None)
    assert exc.value.status_code == 400
    assert exc.value.error == "INVALID_DATE"


def test_year_range_covers_store_year():
    start, end = year_range(2024)
    assert start == datetime(2023, 12, 31, 18, 30)
    assert end.year == 2024 and end.month == 12 and end.day == 31


def test_format_store_date_converts_naive_utc():
    assert format_store_date(datetime(2024, 5, 1, 20, 0)) == "2024-05-02"
    assert format_store_date(None) is None


def test_to_obj_id_rejects_garbage():
    with pytest.raises(APIError) as exc:
        to_obj_id("nope", "product id")
    assert exc.value.detail == "Invalid product id"


def test_serialize_doc_hides_password_hash():
    oid = ObjectId()
    doc = serialize_doc({"_id": oid, "email": "a@example.com", "password_hash": "x", "ref": ObjectId()})
    assert doc["id"] == str(oid)
    assert "password_hash" not in doc
    assert isinstance(doc["ref"], str)


def test_pagination_and_unique():
    assert pagination_meta(2, 10, 25) == {"page": 2, "limit": 10, "total": 25, "pages": 3}
    assert unique(["a", "b", "a", "c", "b"]) == ["a", "b", "c"]
