"""Utility functions for homestead application."""

from datetime import date, datetime
from typing import Optional

from dateutil import parser
from dateutil.relativedelta import relativedelta

_UNITS = {
    "day": "days",
    "week": "weeks",
    "month": "months",
    "year": "years",
}


def _shift(today: date, amount: str, unit: str) -> Optional[date]:
    """Move ``today`` by ``amount`` units, or None if the pair doesn't parse."""
    try:
        num = int(amount)
    except ValueError:
        return None
    key = _UNITS.get(unit.rstrip("s"))
    if key is None:
        return None
    return today + relativedelta(**{key: num})


def parse_flexible_date(date_str: str) -> Optional[date]:
    """
    Parse a flexible date string into a Python date object.

    Supports multiple formats:
    - ISO format: "2026-03-01", "2026/03/01"
    - Natural language: "today", "tomorrow", "next week", "next month"
    - Relative dates: "in 3 days", "2 weeks from now", "3 days ago"
    - Month/Day: "April 15", "Dec 25"

    Args:
        date_str: String representation of a date

    Returns:
        date object if parsing succeeds, None if invalid

    Examples:
        >>> parse_flexible_date("2026-03-01")
        date(2026, 3, 1)

        >>> parse_flexible_date("invalid")
        None
    """
    if not date_str or not date_str.strip():
        return None

    date_str = date_str.strip()
    today = datetime.now().date()
    lower_str = date_str.lower()

    fixed = {
        "today": today,
        "tomorrow": today + relativedelta(days=1),
        "yesterday": today + relativedelta(days=-1),
        "next week": today + relativedelta(weeks=1),
        "last week": today + relativedelta(weeks=-1),
        "next month": today + relativedelta(months=1),
        "last month": today + relativedelta(months=-1),
    }
    if lower_str in fixed:
        return fixed[lower_str]

    parts = lower_str.split()
    # "in 3 days"
    if len(parts) == 3 and parts[0] == "in":
        shifted = _shift(today, parts[1], parts[2])
        if shifted is not None:
            return shifted
    # "2 weeks from now"
    if len(parts) == 4 and parts[2:] == ["from", "now"]:
        shifted = _shift(today, parts[0], parts[1])
        if shifted is not None:
            return shifted
    # "3 days ago"
    if len(parts) == 3 and parts[2] == "ago":
        shifted = _shift(today, f"-{parts[0]}", parts[1])
        if shifted is not None:
            return shifted

    # Try using dateutil parser for everything else
    try:
        parsed_dt = parser.parse(date_str, default=datetime(today.year, today.month, today.day))
    except (ValueError, OverflowError, parser.ParserError):
        return None
    return parsed_dt.date()


def parse_date_range(
    start_str: Optional[str],
    end_str: Optional[str],
) -> tuple[date, date]:
    """Resolve a calendar range from flexible strings.

    A missing start means today; a missing end means one month after start.

    Raises:
        ValueError: If either string can't be parsed or end is before start.
    """
    if start_str:
        start = parse_flexible_date(start_str)
        if start is None:
            raise ValueError(f"Could not understand start date: {start_str}")
    else:
        start = datetime.now().date()

    if end_str:
        end = parse_flexible_date(end_str)
        if end is None:
            raise ValueError(f"Could not understand end date: {end_str}")
    else:
        end = start + relativedelta(months=1)

    if end < start:
        raise ValueError("End date cannot be before start date")
    return start, end
