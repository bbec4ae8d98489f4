"""
Timezone utility functions for normalizing Acuity datetimes and formatting London times
"""
import re
import logging
from datetime import datetime, timedelta, date as date_cls
from typing import Optional, List, Tuple, Union
import pytz

logger = logging.getLogger(__name__)

# The fields are in the UK; Acuity reports in UTC offsets
FIELD_TIMEZONE = "Europe/London"

_MILLIS_RE = re.compile(r"\.\d+")
_OFFSET_RE = re.compile(r"([+-])(\d{2}):?(\d{2})$")


def get_timezone(timezone_str: Optional[str] = None) -> pytz.BaseTzInfo:
    """
    Get timezone object from string

    Args:
        timezone_str: Timezone string (e.g., 'Europe/London', 'UTC')
                    If None, uses the field timezone

    Returns:
        pytz timezone object
    """
    if not timezone_str:
        timezone_str = FIELD_TIMEZONE

    try:
        return pytz.timezone(timezone_str)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning("⚠️ Unknown timezone '%s', using UTC", timezone_str)
        return pytz.UTC


def _has_offset(value: str) -> bool:
    # Only look after the date part so "2025-11-12" is not read as an offset
    tail = value[10:]
    return "Z" in tail or "+" in tail or "-" in tail


def parse_datetime(value: Union[str, datetime]) -> datetime:
    """
    Parse an Acuity or browser datetime into an aware UTC datetime

    Supports:
    - "2025-11-12T19:30:00.000Z"
    - "2025-11-12T16:30:00+0000" / "+00:00" / "-0500"
    - "2025-11-12T16:30:00" and "2025-11-12 16:30" (assumed UTC)
    """
    if isinstance(value, datetime):
        dt = value
    else:
        if not value or not isinstance(value, str):
            raise ValueError(f"Invalid datetime: {value!r}")
        text = value.strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _MILLIS_RE.sub("", text)
        text = _OFFSET_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}:{m.group(3)}", text) if _has_offset(text) else text
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid datetime: {value!r}")

    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_acuity_datetime(value: str) -> str:
    """
    Rewrite an ISO datetime into the format Acuity accepts for updates

    "2025-11-12T19:30:00.000Z" -> "2025-11-12T19:30:00+0000"
    "2025-11-12T19:30:00"      -> "2025-11-12T19:30:00+0000"
    Strings that already carry a numeric offset keep it (milliseconds dropped).
    """
    if "Z" in value:
        return _MILLIS_RE.sub("", value.replace("Z", "+0000"))
    if not _has_offset(value):
        return _MILLIS_RE.sub("", value) + "+0000"
    return _MILLIS_RE.sub("", value)


def normalize_offset(value: Optional[str]) -> Optional[str]:
    """Normalize a UTC designator so Acuity echoes compare equal"""
    if not value:
        return value
    return value.replace("Z", "+0000")


def same_instant(left: Optional[str], right: Optional[str]) -> bool:
    """True when both strings name the same moment, whatever offset each is written in"""
    if not left or not right:
        return False
    try:
        return parse_datetime(left) == parse_datetime(right)
    except ValueError:
        return False


def split_datetime(value: Union[str, datetime]) -> Tuple[str, str]:
    """Split a datetime into ("YYYY-MM-DD", "HH:MM:SS") in UTC"""
    dt = parse_datetime(value)
    return dt.strftime("%Y-%m-%d"), dt.strftime("%H:%M:%S")


def to_iso_utc(value: Union[str, datetime]) -> str:
    """Format as "YYYY-MM-DDTHH:MM:SS.000Z" like a browser's toISOString()"""
    dt = parse_datetime(value)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def to_london(value: Union[str, datetime]) -> datetime:
    return parse_datetime(value).astimezone(get_timezone(FIELD_TIMEZONE))


def format_london(value: Union[str, datetime]) -> str:
    """
    Format a datetime for display in London time

    Example: "12 Nov 2025, 16:30"
    """
    dt = to_london(value)
    return f"{dt.day} {dt.strftime('%b %Y')}, {dt.strftime('%H:%M')}"


def format_london_date(value: Union[str, datetime]) -> str:
    """Example: "Wednesday 12 November" """
    dt = to_london(value)
    return f"{dt.strftime('%A')} {dt.day} {dt.strftime('%B')}"


def format_london_time(value: Union[str, datetime]) -> str:
    """Example: "16:30" (24-hour clock)"""
    return to_london(value).strftime("%H:%M")


def london_booking_datetime(value: Union[str, datetime]) -> str:
    """
    London wall-clock time tagged as +00:00, the form Acuity's
    /datetime/ booking path expects for preselecting a slot
    """
    return to_london(value).strftime("%Y-%m-%dT%H:%M:%S") + "+00:00"


def next_n_dates(n: int, start: Optional[date_cls] = None) -> List[str]:
    """Return n consecutive dates as YYYY-MM-DD, starting today (or start)"""
    base = start or datetime.now().date()
    return [(base + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(n)]


def dates_between(start: str, end: str) -> List[str]:
    """Inclusive list of dates between two YYYY-MM-DD strings"""
    start_date = datetime.strptime(start, "%Y-%m-%d").date()
    end_date = datetime.strptime(end, "%Y-%m-%d").date()
    if end_date < start_date:
        raise ValueError(f"endDate {end} is before startDate {start}")
    return next_n_dates((end_date - start_date).days + 1, start=start_date)


def date_range_window(index: int, size: int = 5, today: Optional[date_cls] = None) -> Tuple[str, str]:
    """
    Paged availability window used by the reschedule picker

    Window 0 starts tomorrow; each window covers `size` days.
    """
    base = today or datetime.now().date()
    start = base + timedelta(days=index * size + 1)
    end = start + timedelta(days=size - 1)
    return start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d")
