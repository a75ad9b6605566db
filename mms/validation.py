"""
Input validation and parsing helpers.

All user input passes through here before any side effect happens, so a
rejected value never leaves a half-created semester or course behind.

Formats:
- course short names:  [A-Za-z0-9_-]+, not starting with '.'
- dates (CLI):         German DD.MM.YYYY (leading zeros optional) or ISO YYYY-MM-DD
- dates (storage):     ISO YYYY-MM-DD
- times:               HH:MM, 24-hour
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional

from mms.errors import DateRangeError, ValidationError

COURSE_CODE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
GERMAN_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")

MIN_COURSE_ECTS = 1
MAX_COURSE_ECTS = 30

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ---------------------------------------------------------------------------
# Names and numbers
# ---------------------------------------------------------------------------


def validate_course_code(short_name: str) -> str:
    code = (short_name or "").strip()
    if not code:
        raise ValidationError("Course short name must not be empty")
    if code.startswith("."):
        raise ValidationError(f"Course short name must not start with '.': {code!r}")
    if not COURSE_CODE_RE.match(code):
        raise ValidationError(
            f"Invalid course short name {code!r}: only letters, digits, '_' and '-' are allowed"
        )
    return code


def validate_ects(ects: int) -> int:
    try:
        value = int(ects)
    except (TypeError, ValueError):
        raise ValidationError(f"ECTS must be an integer: {ects!r}") from None
    if not (MIN_COURSE_ECTS <= value <= MAX_COURSE_ECTS):
        raise ValidationError(f"ECTS must be between {MIN_COURSE_ECTS} and {MAX_COURSE_ECTS}, got {value}")
    return value


def validate_semester_number(number: int) -> int:
    try:
        value = int(number)
    except (TypeError, ValueError):
        raise ValidationError(f"Semester number must be an integer: {number!r}") from None
    if value <= 0:
        raise ValidationError(f"Semester number must be positive, got {value}")
    return value


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def parse_german_date(text: str) -> date:
    """
    Parse DD.MM.YYYY; '1.3.2025' and '01.03.2025' are both accepted.
    """
    m = GERMAN_DATE_RE.match((text or "").strip())
    if not m:
        raise ValidationError(f"Invalid date {text!r}: use DD.MM.YYYY (e.g. 24.12.2024)")
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ValidationError(f"Invalid date {text!r}: {e}") from None


def parse_iso_date(text: str) -> date:
    try:
        return date.fromisoformat((text or "").strip())
    except ValueError:
        raise ValidationError(f"Invalid date {text!r}: use YYYY-MM-DD") from None


def parse_user_date(text: str) -> date:
    """Accept either the German or the ISO form."""
    s = (text or "").strip()
    if GERMAN_DATE_RE.match(s):
        return parse_german_date(s)
    return parse_iso_date(s)


def parse_optional_date(text: Optional[str]) -> Optional[date]:
    if text is None or not str(text).strip():
        return None
    return parse_user_date(str(text))


def validate_date_range(start: Optional[date], end: Optional[date], strict: bool = True) -> None:
    """
    strict=True requires start < end (degrees, semesters),
    strict=False allows start == end (schedules, holidays).
    """
    if start is None or end is None:
        return
    if strict and not start < end:
        raise DateRangeError(start, end, strict=True)
    if not strict and not start <= end:
        raise DateRangeError(start, end, strict=False)


def format_german_date(d: Optional[date]) -> str:
    return d.strftime("%d.%m.%Y") if d else ""


# ---------------------------------------------------------------------------
# Times
# ---------------------------------------------------------------------------


def _time_to_minutes(hhmm: str) -> int:
    """
    Convert 'HH:MM' to minutes since midnight.
    Raises ValueError for invalid formats.
    """
    parts = hhmm.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {hhmm!r}")
    h = int(parts[0])
    m = int(parts[1])
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"Invalid time value: {hhmm!r}")
    return h * 60 + m


def stored_time_to_minutes(hhmm: Optional[str]) -> int:
    """
    Minutes since midnight for a time read back from the database.

    Malformed or missing values count as 00:00.
    """
    if not hhmm:
        return 0
    try:
        # tolerate HH:MM:SS written by other tools
        return _time_to_minutes(":".join(str(hhmm).split(":")[:2]))
    except ValueError:
        return 0


def parse_time(text: str) -> str:
    """Validate a user supplied time and return it as zero-padded 'HH:MM'."""
    try:
        minutes = _time_to_minutes(text or "")
    except ValueError:
        raise ValidationError(f"Invalid time {text!r}: use HH:MM (24-hour)") from None
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def validate_time_range(start: str, end: str) -> None:
    if _time_to_minutes(start) >= _time_to_minutes(end):
        raise ValidationError(f"Start time {start} must be before end time {end}")


def parse_time_range(text: str) -> tuple[str, str]:
    """Parse 'HH:MM-HH:MM'."""
    parts = (text or "").split("-")
    if len(parts) != 2:
        raise ValidationError(f"Invalid time range {text!r}: use HH:MM-HH:MM")
    start = parse_time(parts[0])
    end = parse_time(parts[1])
    validate_time_range(start, end)
    return start, end


def parse_weekday(text: str) -> int:
    """'monday' / 'Mon' / 'mo' / '0' -> 0 ... 'sunday' -> 6."""
    s = (text or "").strip().lower()
    if s.isdigit() and 0 <= int(s) <= 6:
        return int(s)
    for i, name in enumerate(WEEKDAYS):
        if len(s) >= 2 and name.lower().startswith(s):
            return i
    raise ValidationError(f"Invalid day of week: {text!r}")


def weekday_name(day_of_week: int) -> str:
    if 0 <= day_of_week <= 6:
        return WEEKDAYS[day_of_week]
    return "Unknown"
