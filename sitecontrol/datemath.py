"""
Calendar arithmetic on the ``YYYY-MM-DD`` strings stored in records.

Dates stay strings in storage; an empty string means "has not happened yet".
Anything that is not exactly ``YYYY-MM-DD`` naming a real day is treated as
absent by every calculation here, but is never rewritten.
"""

import re
from datetime import date

DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def parse_date(value):
    """Return a ``date`` for valid ``YYYY-MM-DD`` text, else ``None``."""
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str) or not DATE_PATTERN.fullmatch(value):
        return None
    year, month, day = (int(part) for part in value.split("-"))
    try:
        return date(year, month, day)
    except ValueError:
        # matches the pattern but is not a calendar day, e.g. 2023-02-30
        return None


def is_valid_date_text(value):
    """Empty input is valid (no date yet); anything else must parse."""
    if value is None or value == "":
        return True
    return parse_date(value) is not None


def format_date(value):
    return value.isoformat() if value else ""


def duration_days(start, end):
    """
    Inclusive day count from ``start`` to ``end``; a single day counts as 1.

    ``end`` before ``start`` yields zero or a negative number so bad data
    stays visible. ``None`` when either side is missing or invalid.
    """
    start_d, end_d = parse_date(start), parse_date(end)
    if start_d is None or end_d is None:
        return None
    return (end_d - start_d).days + 1


def variance_days(scheduled, actual):
    """
    ``scheduled - actual`` in days.

    Positive: happened early. Negative: late. Zero: on the day.
    ``None`` unless both dates are present and valid.
    """
    sched_d, actual_d = parse_date(scheduled), parse_date(actual)
    if sched_d is None or actual_d is None:
        return None
    return (sched_d - actual_d).days


def days_until(target, today=None):
    """Signed days from ``today`` to ``target``; ``None`` if target invalid."""
    target_d = parse_date(target)
    if target_d is None:
        return None
    return (target_d - (today or date.today())).days
