from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_local(moment: datetime, tz_name: str) -> datetime:
    """
    Convert a datetime into the deployment timezone.

    Naive datetimes are interpreted as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name))


def local_today(moment: datetime, tz_name: str) -> date:
    """Calendar day of `moment` in the deployment timezone."""
    return to_local(moment, tz_name).date()


def start_of_day_ago(moment: datetime, days: int, tz_name: str) -> datetime:
    """
    Start of the local day `days` days before `moment`, as an aware datetime.

    Used as the inclusive lower bound of trailing metric windows.
    """
    local = to_local(moment, tz_name) - timedelta(days=days)
    return datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)


def end_of_local_day(moment: datetime, tz_name: str) -> datetime:
    """Last representable instant of `moment`'s local day, inclusive upper bound."""
    local = to_local(moment, tz_name)
    return datetime.combine(local.date(), time.max, tzinfo=local.tzinfo)


__all__ = ["end_of_local_day", "local_today", "start_of_day_ago", "to_local", "utcnow"]
