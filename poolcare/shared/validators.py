"""Shared validation utilities"""

import re
from typing import Optional

DAYS_OF_WEEK = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# "mon" and "monday" both normalize to "mon"
_DAY_ALIASES = {}
for _name in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"):
    _DAY_ALIASES[_name] = _name[:3]
    _DAY_ALIASES[_name[:3]] = _name[:3]


def validate_hhmm(value: str) -> str:
    """
    Validate a 24-hour time of day.

    Args:
        value: Time string, e.g. "08:30"

    Returns:
        The stripped time string

    Raises:
        ValueError: If the value is not HH:MM between 00:00 and 23:59
    """
    value = (value or "").strip()
    if not _HHMM_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM format (00:00-23:59)")
    return value


def validate_day_of_week(dow: Optional[str]) -> Optional[str]:
    """
    Normalize a day-of-week anchor to its three-letter lowercase form.

    Accepts "Mon", "monday", "MON" and so on.

    Raises:
        ValueError: If the value is not a day of the week
    """
    if dow is None:
        return dow

    normalized = _DAY_ALIASES.get(dow.strip().lower())
    if normalized is None:
        raise ValueError(f"Day of week must be one of {', '.join(DAYS_OF_WEEK)}")
    return normalized


def validate_day_of_month(dom: Optional[int]) -> Optional[int]:
    """Day-of-month anchor: 1-28, or -1 for the last day of the month"""
    if dom is None:
        return dom
    if dom != -1 and not 1 <= dom <= 28:
        raise ValueError("Day of month must be between 1 and 28, or -1 for the last day")
    return dom
