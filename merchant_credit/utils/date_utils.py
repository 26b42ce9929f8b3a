"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone, tzinfo
from typing import Tuple
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to UTC; naive values are taken as UTC (SQLite drops tzinfo on the way back)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def months_ago(moment: datetime, months: int) -> datetime:
    """Step back whole calendar months, clamping the day to the target month's length"""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def previous_month(year: int, month: int) -> Tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def local_day(moment: datetime, tz: tzinfo) -> date:
    """Calendar day of an instant in the business timezone"""
    return as_utc(moment).astimezone(tz).date()


def gateway_timestamp(tz_name: str, moment: datetime | None = None) -> str:
    """ISO-8601 with milliseconds and offset, e.g. 2024-05-01T10:15:30.123+07:00"""
    moment = moment or utcnow()
    return as_utc(moment).astimezone(ZoneInfo(tz_name)).isoformat(timespec="milliseconds")
