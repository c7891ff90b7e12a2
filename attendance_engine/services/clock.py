from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.clock")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return utc_now()

    # SQLite hands timestamps back without tzinfo; everything stored is UTC.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def resolve_timezone(name: str | None) -> ZoneInfo:
    raw_name = (name or "").strip() or (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def local_day_of(ts_utc: datetime, tz: ZoneInfo) -> date:
    return normalize_ts(ts_utc).astimezone(tz).date()


def local_day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    local_start = datetime.combine(day, time.min, tzinfo=tz)
    local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def local_time_on_day_utc(day: date, local_time: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, local_time, tzinfo=tz).astimezone(timezone.utc)
