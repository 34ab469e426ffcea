from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Literal, Optional, Tuple

from core.records import VisitRecord


logger = logging.getLogger(__name__)

BucketKind = Literal["day", "month", "year"]
EmptySelector = Literal["none", "all"]

BUCKETS: Tuple[str, ...] = ("day", "month", "year")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_BUCKET_ALIASES = {
    "day": "day",
    "dia": "day",
    "día": "day",
    "month": "month",
    "mes": "month",
    "year": "year",
    "ano": "year",
    "año": "year",
}
_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_YEAR_RE = re.compile(r"^\d{4}$")


class InvalidSelectorError(ValueError):
    """Raised when a selector does not parse for its bucket kind."""


@dataclass(frozen=True)
class ChartFilters:
    bucket: BucketKind = "day"
    selector: str = ""
    utc_offset_hours: int = 0
    empty_selector: EmptySelector = "none"


def normalize_bucket(value: object, default: str = "day") -> str:
    key = str(value or "").strip().lower()
    return _BUCKET_ALIASES.get(key, default)


def normalize_selector(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return str(value).strip()


def normalize_filters(
    raw: dict,
    *,
    utc_offset_hours: int = 0,
    empty_selector: str = "none",
) -> ChartFilters:
    bucket = normalize_bucket(raw.get("bucket"))
    selector = normalize_selector(raw.get("selector"))
    if empty_selector not in ("none", "all"):
        empty_selector = "none"
    return ChartFilters(
        bucket=bucket,
        selector=selector,
        utc_offset_hours=int(utc_offset_hours),
        empty_selector=empty_selector,
    )


def default_selector(bucket: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    if bucket == "day":
        return today.strftime("%Y-%m-%d")
    if bucket == "month":
        return today.strftime("%Y-%m")
    return str(today.year)


def time_range(bucket: str, selector: str) -> Tuple[datetime, datetime]:
    """Inclusive local (naive) range covered by ``selector``."""
    selector = (selector or "").strip()
    if bucket == "day":
        try:
            start = datetime.strptime(selector, "%Y-%m-%d")
        except ValueError as exc:
            raise InvalidSelectorError(f"invalid day selector: {selector!r}") from exc
        end = start.replace(hour=23, minute=59, second=59, microsecond=999999)
    elif bucket == "month":
        match = _MONTH_RE.match(selector)
        if not match or not 1 <= int(match.group(2)) <= 12 or int(match.group(1)) < 1:
            raise InvalidSelectorError(f"invalid month selector: {selector!r}")
        year, month = int(match.group(1)), int(match.group(2))
        start = datetime(year, month, 1)
        last_day = calendar.monthrange(year, month)[1]
        end = datetime(year, month, last_day, 23, 59, 59, 999999)
    elif bucket == "year":
        if not _YEAR_RE.match(selector) or int(selector) < 1:
            raise InvalidSelectorError(f"invalid year selector: {selector!r}")
        start = datetime(int(selector), 1, 1)
        end = datetime(start.year, 12, 31, 23, 59, 59, 999999)
    else:
        raise InvalidSelectorError(f"unknown bucket kind: {bucket!r}")
    return start, end


def local_time(ts: datetime, utc_offset_hours: int = 0) -> datetime:
    """Wall-clock time of ``ts`` at a fixed UTC offset, as a naive datetime."""
    utc = ts.astimezone(timezone.utc)
    return (utc + timedelta(hours=utc_offset_hours)).replace(tzinfo=None)


def filter_records(
    records: Iterable[VisitRecord],
    filters: ChartFilters,
    *,
    now: Optional[datetime] = None,
) -> List[VisitRecord]:
    if not filters.selector:
        if filters.empty_selector != "all":
            return []
        now = now or datetime.now(timezone.utc)
        return [r for r in records if EPOCH <= r.start_time <= now]

    try:
        start, end = time_range(filters.bucket, filters.selector)
    except InvalidSelectorError as exc:
        logger.warning("filter_records: %s", exc)
        return []

    out: List[VisitRecord] = []
    for record in records:
        if record.start_time is None:
            continue
        if start <= local_time(record.start_time, filters.utc_offset_hours) <= end:
            out.append(record)
    return out
