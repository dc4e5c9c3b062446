from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Query

from src.common import errors
from src.config import settings

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class Pagination:
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


def _to_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def parse_pagination(page: Optional[str] = None, page_size: Optional[str] = None) -> Pagination:
    size = _to_int(page_size, DEFAULT_PAGE_SIZE)
    if size > MAX_PAGE_SIZE:
        size = MAX_PAGE_SIZE
    return Pagination(page=_to_int(page, DEFAULT_PAGE), page_size=size)


def pagination_params(
    page: Optional[str] = Query(None, description="Page number, starting at 1"),
    page_size: Optional[str] = Query(None, description="Items per page"),
) -> Pagination:
    """Query dependency; bad values fall back to page 1 / 20 items"""
    return parse_pagination(page, page_size)


def app_timezone() -> ZoneInfo:
    return ZoneInfo(settings.APP_TIMEZONE)


def parse_rfc3339(raw: str, field: str) -> datetime:
    value = raw.strip()
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise errors.INVALID_INPUT(f"invalid {field}, expected RFC3339", field=field).wrap(e)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=app_timezone())
    return parsed.astimezone(timezone.utc)


def start_of_week(now: Optional[datetime] = None) -> datetime:
    """Monday 00:00 of the current week in the app timezone, as UTC"""
    tz = app_timezone()
    local = (now or datetime.now(timezone.utc)).astimezone(tz)
    monday = (local - timedelta(days=local.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return monday.astimezone(timezone.utc)


@dataclass
class DateRange:
    start: datetime
    end: datetime


def parse_date_range(start_date: Optional[str] = None, end_date: Optional[str] = None) -> DateRange:
    start = parse_rfc3339(start_date, "start_date") if start_date else start_of_week()
    end = parse_rfc3339(end_date, "end_date") if end_date else start + timedelta(days=7)
    if end < start:
        raise errors.INVALID_INPUT("end_date must not be before start_date")
    return DateRange(start=start, end=end)


def date_range_params(
    start_date: Optional[str] = Query(None, description="RFC3339 start, defaults to Monday of this week"),
    end_date: Optional[str] = Query(None, description="RFC3339 end, defaults to start + 7 days"),
) -> DateRange:
    return parse_date_range(start_date, end_date)
