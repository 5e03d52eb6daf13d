"""
Date handling for sheet cells: the write format, lenient parsing and
downtime durations.
"""

from datetime import date, datetime
from typing import Optional, Union

SHEET_DATETIME_FORMAT = "%m/%d/%Y %H:%M:%S"

_PARSE_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d",
)


def format_sheet_datetime(value: Union[datetime, str, None]) -> str:
    """Render a datetime the way the downtime tabs store it."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        parsed = parse_sheet_datetime(value)
        if parsed is None:
            raise ValueError(f"Unrecognised date/time: {value!r}")
        value = parsed
    return value.strftime(SHEET_DATETIME_FORMAT)


def parse_sheet_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a cell value; None when blank or unrecognised."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None

    for fmt in _PARSE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_month(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Last-paid month values arrive as ISO strings, dates or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_sheet_datetime(str(value).replace("Z", "+00:00"))
    return parsed.date() if parsed else None


def downtime_duration(start: Union[str, datetime, None], end: Union[str, datetime, None]) -> str:
    """``"5h 30m"`` between start and end; ``N/A`` if either is missing."""
    if not start or not end:
        return "N/A"

    start_dt = parse_sheet_datetime(start)
    end_dt = parse_sheet_datetime(end)
    if start_dt is None or end_dt is None:
        return "Invalid"

    try:
        diff_sec = (end_dt - start_dt).total_seconds()
    except TypeError:
        # naive vs aware
        return "Invalid"

    if diff_sec <= 0:
        return "Invalid"

    hours = int(diff_sec // 3600)
    minutes = int((diff_sec % 3600) // 60)
    return f"{hours}h {minutes}m"
