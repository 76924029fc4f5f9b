# FILE: pharmapos/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date, time, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from pharmapos.core.config import settings


def _tz() -> ZoneInfo:
    return ZoneInfo(settings.APP_TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the pharmacy timezone.
    Use for calendar decisions ("today"), never for stored timestamps.
    """
    return datetime.now(_tz()).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def utc_now() -> datetime:
    """Naive UTC; the clock every DateTime column is stored on."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(local_dt: datetime) -> datetime:
    return local_dt.replace(tzinfo=_tz()).astimezone(timezone.utc).replace(tzinfo=None)


def local_day_start_utc(d: date) -> datetime:
    return _to_naive_utc(datetime.combine(d, time.min))


def local_day_end_utc(d: date) -> datetime:
    return _to_naive_utc(datetime.combine(d, time.max))


def local_range_to_utc(date_from: Optional[date],
                       date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Pharmacy-local calendar days -> inclusive naive-UTC bounds for created_at filters.
    A sale at 00:30 local belongs to that local day even though UTC still shows the day before.
    """
    start = local_day_start_utc(date_from) if date_from else None
    end = local_day_end_utc(date_to) if date_to else None
    return start, end
