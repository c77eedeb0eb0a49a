"""
Local-time helpers. Every business date is computed in settings.timezone (IST by default).

Datetimes returned here are timezone-aware so they compare cleanly with
DateTime(timezone=True) columns.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from config import settings

TZ = ZoneInfo(settings.timezone)


def now() -> datetime:
    return datetime.now(TZ)


def to_local(value: datetime | date | str) -> datetime:
    """Convert a datetime / date / ISO string to an aware local datetime."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=TZ)
    return value.astimezone(TZ)


def start_of_day(value: datetime | date | str | None = None) -> datetime:
    d = to_local(value) if value is not None else now()
    return d.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime | date | str | None = None) -> datetime:
    return start_of_day(value) + timedelta(days=1) - timedelta(microseconds=1)


def add_days(days: int, value: datetime | None = None) -> datetime:
    base = to_local(value) if value is not None else now()
    return base + timedelta(days=days)


def format_local(value: datetime, kind: str = "date") -> str:
    local = to_local(value)
    if kind == "date":
        return local.strftime("%Y-%m-%d")
    return local.strftime("%Y-%m-%d %H:%M:%S")
