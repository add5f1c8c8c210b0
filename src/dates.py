"""
Date and calendar arithmetic helpers.

Shared by the recurrence expander and the storage adapters.
Month and year steps clamp to the last valid day of the target month
(Jan 31 + 1 month = Feb 28/29) using dateutil's relativedelta.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC; leave aware ones untouched."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def to_utc(moment: datetime) -> datetime:
    return ensure_aware(moment).astimezone(timezone.utc)


def zone_name(moment: datetime) -> str:
    """
    Storable name of the moment's timezone.

    IANA zones keep their key ("Europe/Amsterdam"), UTC is "UTC" and any
    other fixed offset becomes "+HH:MM" / "-HH:MM".
    """
    moment = ensure_aware(moment)
    key = getattr(moment.tzinfo, "key", None)
    if key:
        return key
    offset = moment.utcoffset()
    if not offset:
        return "UTC"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def zone_from_name(name: Optional[str]) -> tzinfo:
    """Inverse of zone_name."""
    if not name or name == "UTC":
        return timezone.utc
    if name[0] in "+-":
        hours, minutes = name[1:].split(":")
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-offset if name[0] == "-" else offset)
    return ZoneInfo(name)


def localize(moment: datetime, tz: tzinfo) -> datetime:
    return ensure_aware(moment).astimezone(tz)


def day_key(moment: Union[date, datetime]) -> str:
    """Calendar-day key "YYYY-MM-DD" in the moment's own timezone."""
    if isinstance(moment, datetime):
        moment = moment.date()
    return moment.isoformat()


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    return moment + relativedelta(months=months)


def add_years(moment: datetime, years: int) -> datetime:
    """Add calendar years; Feb 29 lands on Feb 28 in common years."""
    return moment + relativedelta(years=years)


def end_of_day(value: date, tz=timezone.utc) -> datetime:
    return datetime(value.year, value.month, value.day, 23, 59, 59, 999999, tzinfo=tz)
