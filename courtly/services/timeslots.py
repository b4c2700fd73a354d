"""Wall-clock helpers for court slots.

Times are compared as minutes since midnight, never as strings
("9:00" sorts after "10:00" lexically). Intervals are half-open, so a
booking ending at 11:00 does not collide with one starting at 11:00.
"""

import re

from courtly.errors import ValidationError

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

MINUTES_PER_DAY = 24 * 60


def parse_time_of_day(value):
    """Parse "H:MM" / "HH:MM" into minutes since midnight.

    "24:00" is accepted as the end of the day.
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time '{value}'. Use HH:MM.")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes > 59 or total > MINUTES_PER_DAY:
        raise ValidationError(f"Invalid time '{value}'. Use HH:MM.")
    return total


def format_time_of_day(minutes):
    """Inverse of parse_time_of_day: 540 -> "09:00"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def intervals_overlap(start, end, other_start, other_end):
    """True unless [start, end) and [other_start, other_end) are disjoint."""
    return not (end <= other_start or start >= other_end)
