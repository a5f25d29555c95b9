import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from bson import ObjectId
from bson.errors import InvalidId

from embroidery_store import config
from embroidery_store.errors import APIError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def to_obj_id(id_str: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise APIError(400, f"Invalid {label}", "INVALID_ID")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    doc.pop("password_hash", None)
    return doc


def escape_regex(value: str) -> str:
    return re.escape(value)


def pagination_meta(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}


def skip_for(page: int, limit: int) -> int:
    return max(page - 1, 0) * limit


# Dates
#
# BSON dates come back from the driver as naive UTC, so range bounds used in
# queries are naive UTC as well.

def store_tz() -> ZoneInfo:
    return ZoneInfo(config.STORE_TIMEZONE)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def to_store_time(value: datetime) -> datetime:
    return as_utc(value).astimezone(store_tz())


def date_range_days_ago(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start of the day `days` ago through the end of today, in the store time zone."""
    local_now = to_store_time(now or utcnow())
    start_local = datetime.combine(local_now.date() - timedelta(days=days), time.min, tzinfo=store_tz())
    end_local = datetime.combine(local_now.date(), time.max, tzinfo=store_tz())
    return to_naive_utc(start_local), to_naive_utc(end_local)


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise APIError(400, f"Invalid date: {value}. Expected YYYY-MM-DD", "INVALID_DATE")


def date_range_between(date_from: Optional[str], date_to: Optional[str]) -> Tuple[Optional[datetime], Optional[datetime]]:
    start = end = None
    if date_from:
        start = to_naive_utc(datetime.combine(parse_day(date_from), time.min, tzinfo=store_tz()))
    if date_to:
        end = to_naive_utc(datetime.combine(parse_day(date_to), time.max, tzinfo=store_tz()))
    return start, end


def year_range(year: int) -> Tuple[datetime, datetime]:
    start = datetime(year, 1, 1, tzinfo=store_tz())
    end = datetime.combine(date(year, 12, 31), time.max, tzinfo=store_tz())
    return to_naive_utc(start), to_naive_utc(end)


def format_store_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_store_time(value).strftime("%Y-%m-%d")


def unique(values: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out
