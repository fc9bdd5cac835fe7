"""
Date/time resolution for agenda rows. The sheet stores dates as free text,
so parsing tries ISO first and then a fixed, day-first list of formats.
"""

import re
from datetime import date, datetime, timedelta

DEFAULT_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%m/%d/%Y", "%Y/%m/%d")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def parse_date(value, formats=None) -> date | None:
    """Return the calendar day for `value`, or None when no format matches."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in formats or DEFAULT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_time(value) -> int | None:
    """'9:05' -> 545 minutes since midnight. None if missing or malformed."""
    if not value:
        return None
    match = _TIME_RE.match(str(value).strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def time_sort_key(value) -> tuple[int, int]:
    """Valid times ascending, missing/unparseable ones after all of them."""
    minutes = parse_time(value)
    if minutes is None:
        return (1, 0)
    return (0, minutes)


def is_same_calendar_day(value: date | None, reference: date) -> bool:
    if value is None:
        return False
    return value == reference


def is_within_next_n_days(value: date | None, n: int, today: date | None = None) -> bool:
    """True when value falls in [start of today, end of today + n days]."""
    if value is None:
        return False
    start = today or date.today()
    return start <= value <= start + timedelta(days=n)
