"""
Timetable bookkeeping: recurring schedules, per-date events and holidays.

A CourseSchedule is a weekly slot valid over a date range. Everything that
deviates from it on a single date is a CourseEvent:

- cancelled     the course does not take place (whole day when no times are set)
- override      room and/or time of one occurrence changed
- makeup        extra session replacing a cancelled one
- special       anything else the student wants to see (exam review, ...)
- one_time      a session that is not part of any schedule

Holidays suspend all regular schedules on the days they cover, unless the
course has a HolidayException for that holiday.

entries_for_day() merges the three into the agenda shown by `mms today`.
Which course is *active* at a given minute is decided separately by
mms.resolver.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from mms.db import query, query_one, transaction, update_row, utc_now
from mms.errors import NotFoundError, ValidationError
from mms.model import Course, CourseEvent, CourseSchedule, EventType, Holiday, HolidayException, ScheduleType
from mms.validation import (
    parse_time,
    stored_time_to_minutes,
    validate_date_range,
    validate_time_range,
    weekday_name,
)

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = (
    "schedule_type",
    "day_of_week",
    "start_time",
    "end_time",
    "start_date",
    "end_date",
    "room",
    "location",
)

EVENT_FIELDS = ("event_type", "schedule_type", "date", "start_time", "end_time", "room", "location", "description")


def _course_row(con: sqlite3.Connection, course_id: int) -> Course:
    row = query_one(con, "SELECT * FROM courses WHERE id = ?", (course_id,))
    if row is None:
        raise NotFoundError("Course", course_id)
    return Course.from_row(row)


def _normalize_times(start_time: Optional[str], end_time: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Both or neither; returns zero-padded values."""
    if not start_time and not end_time:
        return None, None
    if not start_time or not end_time:
        raise ValidationError("Give both a start and an end time (or neither)")
    start = parse_time(start_time)
    end = parse_time(end_time)
    validate_time_range(start, end)
    return start, end


def _db_value(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (ScheduleType, EventType)):
        return value.value
    return value


# ---------------------------------------------------------------------------
# Recurring schedules
# ---------------------------------------------------------------------------


def get_schedule(con: sqlite3.Connection, schedule_id: int) -> CourseSchedule:
    row = query_one(con, "SELECT * FROM course_schedules WHERE id = ?", (schedule_id,))
    if row is None:
        raise NotFoundError("Schedule", schedule_id)
    return CourseSchedule.from_row(row)


def list_schedules(con: sqlite3.Connection, course_id: Optional[int] = None) -> list[CourseSchedule]:
    sql = "SELECT * FROM course_schedules"
    params: tuple = ()
    if course_id is not None:
        sql += " WHERE course_id = ?"
        params = (course_id,)
    sql += " ORDER BY day_of_week, start_time, id"
    return [CourseSchedule.from_row(r) for r in query(con, sql, params)]


def add_schedule(
    con: sqlite3.Connection,
    course_id: int,
    schedule_type: ScheduleType | str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    room: Optional[str] = None,
    location: Optional[str] = None,
) -> CourseSchedule:
    """
    Add a weekly slot. The date range defaults to the semester's lecture
    period; the location defaults to the course location.
    """
    if not isinstance(schedule_type, ScheduleType):
        schedule_type = ScheduleType.parse(schedule_type)
    if not 0 <= int(day_of_week) <= 6:
        raise ValidationError(f"Invalid day of week {day_of_week} (0 = Monday ... 6 = Sunday)")
    start, end = _normalize_times(start_time, end_time)
    if start is None:
        raise ValidationError("A schedule needs a start and an end time")

    course = _course_row(con, course_id)
    if start_date is None or end_date is None:
        sem = query_one(con, "SELECT start_date, end_date FROM semesters WHERE id = ?", (course.semester_id,))
        start_date = start_date or (date.fromisoformat(sem["start_date"]) if sem and sem["start_date"] else None)
        end_date = end_date or (date.fromisoformat(sem["end_date"]) if sem and sem["end_date"] else None)
    if start_date is None or end_date is None:
        raise ValidationError("Schedule needs a start and end date (the semester has none set)")
    validate_date_range(start_date, end_date, strict=False)

    with transaction(con):
        cur = con.execute(
            """
            INSERT INTO course_schedules (course_id, schedule_type, day_of_week, start_time, end_time,
                                          start_date, end_date, room, location, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                course_id,
                schedule_type.value,
                int(day_of_week),
                start,
                end,
                start_date.isoformat(),
                end_date.isoformat(),
                room or None,
                location or course.location,
                utc_now(),
            ),
        )
    logger.debug(
        "Added %s for %s: %s %s-%s", schedule_type.value, course.short_name, weekday_name(int(day_of_week)), start, end
    )
    return get_schedule(con, cur.lastrowid)


def update_schedule(con: sqlite3.Connection, schedule_id: int, **changes: Any) -> CourseSchedule:
    unknown = set(changes) - set(SCHEDULE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update schedule field(s): {', '.join(sorted(unknown))}")

    current = get_schedule(con, schedule_id)
    if "schedule_type" in changes and not isinstance(changes["schedule_type"], ScheduleType):
        changes["schedule_type"] = ScheduleType.parse(changes["schedule_type"])
    if "day_of_week" in changes and not 0 <= int(changes["day_of_week"]) <= 6:
        raise ValidationError(f"Invalid day of week {changes['day_of_week']}")

    start, end = _normalize_times(
        changes.get("start_time", current.start_time), changes.get("end_time", current.end_time)
    )
    if "start_time" in changes:
        changes["start_time"] = start
    if "end_time" in changes:
        changes["end_time"] = end
    validate_date_range(
        changes.get("start_date", current.start_date), changes.get("end_date", current.end_date), strict=False
    )

    with transaction(con):
        update_row(con, "course_schedules", schedule_id, {k: _db_value(v) for k, v in changes.items()}, touch=False)
    return get_schedule(con, schedule_id)


def delete_schedule(con: sqlite3.Connection, schedule_id: int) -> CourseSchedule:
    """Delete a slot; events attached to it go with it."""
    schedule = get_schedule(con, schedule_id)
    with transaction(con):
        con.execute("DELETE FROM course_schedules WHERE id = ?", (schedule_id,))
    return schedule


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def get_event(con: sqlite3.Connection, event_id: int) -> CourseEvent:
    row = query_one(con, "SELECT * FROM course_events WHERE id = ?", (event_id,))
    if row is None:
        raise NotFoundError("Event", event_id)
    return CourseEvent.from_row(row)


def list_events(
    con: sqlite3.Connection, course_id: Optional[int] = None, day: Optional[date] = None
) -> list[CourseEvent]:
    clauses: list[str] = []
    params: list[Any] = []
    if course_id is not None:
        clauses.append("course_id = ?")
        params.append(course_id)
    if day is not None:
        clauses.append("date = ?")
        params.append(day.isoformat())
    sql = "SELECT * FROM course_events"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY date, start_time, id"
    return [CourseEvent.from_row(r) for r in query(con, sql, tuple(params))]


def add_event(
    con: sqlite3.Connection,
    course_id: int,
    event_type: EventType | str,
    day: date,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    schedule_id: Optional[int] = None,
    schedule_type: ScheduleType | str = ScheduleType.LECTURE,
    room: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
) -> CourseEvent:
    if not isinstance(event_type, EventType):
        event_type = EventType.parse(event_type)
    if not isinstance(schedule_type, ScheduleType):
        schedule_type = ScheduleType.parse(schedule_type)
    start, end = _normalize_times(start_time, end_time)
    if event_type is EventType.ONE_TIME and start is None:
        raise ValidationError("A one-time event needs a start and an end time")

    _course_row(con, course_id)
    if schedule_id is not None:
        schedule = get_schedule(con, schedule_id)
        if schedule.course_id != course_id:
            raise ValidationError(f"Schedule {schedule_id} does not belong to course {course_id}")

    with transaction(con):
        cur = con.execute(
            """
            INSERT INTO course_events (course_id, schedule_id, schedule_type, event_type, date,
                                       start_time, end_time, room, location, description, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                course_id,
                schedule_id,
                schedule_type.value,
                event_type.value,
                day.isoformat(),
                start,
                end,
                room or None,
                location or None,
                description or None,
                utc_now(),
            ),
        )
    logger.debug("Added %s event for course %s on %s", event_type.value, course_id, day)
    return get_event(con, cur.lastrowid)


def add_one_time_event(
    con: sqlite3.Connection,
    course_id: int,
    day: date,
    start_time: str,
    end_time: str,
    schedule_type: ScheduleType | str = ScheduleType.LECTURE,
    room: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
) -> CourseEvent:
    return add_event(
        con,
        course_id,
        EventType.ONE_TIME,
        day,
        start_time=start_time,
        end_time=end_time,
        schedule_type=schedule_type,
        room=room,
        location=location,
        description=description,
    )


def _check_occurrence(schedule: CourseSchedule, day: date) -> None:
    if not schedule.start_date <= day <= schedule.end_date:
        raise ValidationError(
            f"{day.isoformat()} is outside the schedule range "
            f"{schedule.start_date.isoformat()} - {schedule.end_date.isoformat()}"
        )
    if day.weekday() != schedule.day_of_week:
        logger.warning(
            "%s is a %s, schedule %s runs on %s",
            day.isoformat(),
            weekday_name(day.weekday()),
            schedule.id,
            weekday_name(schedule.day_of_week),
        )


def cancel_occurrence(
    con: sqlite3.Connection, schedule_id: int, day: date, reason: Optional[str] = None
) -> CourseEvent:
    """Cancel one occurrence of a schedule (the slot's times are recorded)."""
    schedule = get_schedule(con, schedule_id)
    _check_occurrence(schedule, day)
    return add_event(
        con,
        schedule.course_id,
        EventType.CANCELLED,
        day,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        schedule_id=schedule.id,
        schedule_type=schedule.schedule_type,
        description=reason,
    )


def override_occurrence(
    con: sqlite3.Connection,
    schedule_id: int,
    day: date,
    room: Optional[str] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
) -> CourseEvent:
    """Move one occurrence to another room and/or time. Unset values keep the slot's."""
    schedule = get_schedule(con, schedule_id)
    _check_occurrence(schedule, day)
    if room is None and start_time is None and end_time is None and location is None:
        raise ValidationError("Nothing to override: give a room, a location or a time")
    return add_event(
        con,
        schedule.course_id,
        EventType.OVERRIDE,
        day,
        start_time=start_time or schedule.start_time,
        end_time=end_time or schedule.end_time,
        schedule_id=schedule.id,
        schedule_type=schedule.schedule_type,
        room=room or schedule.room,
        location=location or schedule.location,
        description=description,
    )


def update_event(con: sqlite3.Connection, event_id: int, **changes: Any) -> CourseEvent:
    unknown = set(changes) - set(EVENT_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update event field(s): {', '.join(sorted(unknown))}")

    current = get_event(con, event_id)
    if "event_type" in changes and not isinstance(changes["event_type"], EventType):
        changes["event_type"] = EventType.parse(changes["event_type"])
    if "schedule_type" in changes and not isinstance(changes["schedule_type"], ScheduleType):
        changes["schedule_type"] = ScheduleType.parse(changes["schedule_type"])
    if "start_time" in changes or "end_time" in changes:
        start, end = _normalize_times(
            changes.get("start_time", current.start_time), changes.get("end_time", current.end_time)
        )
        changes["start_time"] = start
        changes["end_time"] = end

    with transaction(con):
        update_row(con, "course_events", event_id, {k: _db_value(v) for k, v in changes.items()}, touch=False)
    return get_event(con, event_id)


def delete_event(con: sqlite3.Connection, event_id: int) -> CourseEvent:
    event = get_event(con, event_id)
    with transaction(con):
        con.execute("DELETE FROM course_events WHERE id = ?", (event_id,))
    return event


# ---------------------------------------------------------------------------
# Holidays
# ---------------------------------------------------------------------------


def add_holiday(
    con: sqlite3.Connection,
    name: str,
    start_date: date,
    end_date: Optional[date] = None,
    semester_id: Optional[int] = None,
) -> Holiday:
    """A holiday without end date covers a single day; semester_id=None applies to all semesters."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Holiday name must not be empty")
    end_date = end_date or start_date
    validate_date_range(start_date, end_date, strict=False)
    if semester_id is not None and query_one(con, "SELECT id FROM semesters WHERE id = ?", (semester_id,)) is None:
        raise NotFoundError("Semester", semester_id)

    with transaction(con):
        cur = con.execute(
            "INSERT INTO holidays (name, start_date, end_date, semester_id, created_at) VALUES (?, ?, ?, ?, ?)",
            (name, start_date.isoformat(), end_date.isoformat(), semester_id, utc_now()),
        )
    return get_holiday(con, cur.lastrowid)


def get_holiday(con: sqlite3.Connection, holiday_id: int) -> Holiday:
    row = query_one(con, "SELECT * FROM holidays WHERE id = ?", (holiday_id,))
    if row is None:
        raise NotFoundError("Holiday", holiday_id)
    return Holiday.from_row(row)


def list_holidays(con: sqlite3.Connection, semester_id: Optional[int] = None) -> list[Holiday]:
    """All holidays, or those that apply to one semester (scoped to it or unscoped)."""
    if semester_id is None:
        rows = query(con, "SELECT * FROM holidays ORDER BY start_date, id")
    else:
        rows = query(
            con,
            "SELECT * FROM holidays WHERE semester_id IS NULL OR semester_id = ? ORDER BY start_date, id",
            (semester_id,),
        )
    return [Holiday.from_row(r) for r in rows]


def delete_holiday(con: sqlite3.Connection, holiday_id: int) -> Holiday:
    holiday = get_holiday(con, holiday_id)
    with transaction(con):
        con.execute("DELETE FROM holidays WHERE id = ?", (holiday_id,))
    return holiday


def add_holiday_exception(con: sqlite3.Connection, holiday_id: int, course_id: int) -> HolidayException:
    """Let a course keep its regular schedule during a holiday."""
    get_holiday(con, holiday_id)
    _course_row(con, course_id)
    with transaction(con):
        con.execute(
            "INSERT OR IGNORE INTO holiday_exceptions (holiday_id, course_id) VALUES (?, ?)",
            (holiday_id, course_id),
        )
    row = query_one(
        con, "SELECT * FROM holiday_exceptions WHERE holiday_id = ? AND course_id = ?", (holiday_id, course_id)
    )
    return HolidayException.from_row(row)


def remove_holiday_exception(con: sqlite3.Connection, holiday_id: int, course_id: int) -> None:
    with transaction(con):
        cur = con.execute(
            "DELETE FROM holiday_exceptions WHERE holiday_id = ? AND course_id = ?", (holiday_id, course_id)
        )
    if cur.rowcount == 0:
        raise NotFoundError("Holiday exception", f"holiday {holiday_id}, course {course_id}")


def list_holiday_exceptions(con: sqlite3.Connection, holiday_id: Optional[int] = None) -> list[HolidayException]:
    if holiday_id is None:
        rows = query(con, "SELECT * FROM holiday_exceptions ORDER BY holiday_id, course_id")
    else:
        rows = query(con, "SELECT * FROM holiday_exceptions WHERE holiday_id = ? ORDER BY course_id", (holiday_id,))
    return [HolidayException.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Daily agenda
# ---------------------------------------------------------------------------


@dataclass
class AgendaEntry:
    """
    One line of the daily agenda.

    kind is one of: regular, cancelled, modified, special, holiday.
    """

    course: Course
    kind: str
    schedule_type: ScheduleType
    start_time: Optional[str]
    end_time: Optional[str]
    room: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None

    @property
    def sort_key(self) -> tuple[int, str]:
        return stored_time_to_minutes(self.start_time), self.course.short_name


def _overlaps(event: CourseEvent, schedule: CourseSchedule) -> bool:
    if event.schedule_id is not None:
        return event.schedule_id == schedule.id
    if not event.has_times:
        return True
    return stored_time_to_minutes(event.start_time) < stored_time_to_minutes(
        schedule.end_time
    ) and stored_time_to_minutes(schedule.start_time) < stored_time_to_minutes(event.end_time)


def entries_for_day(con: sqlite3.Connection, day: date) -> list[AgendaEntry]:
    """
    Everything scheduled for the current semester on `day`, sorted by start time.

    Regular slots are replaced by their cancellation or override when one
    exists; a holiday without exception turns the slot into a 'holiday'
    entry. Events that do not belong to a slot are listed as 'special'.
    """
    sem = query_one(con, "SELECT id FROM semesters WHERE is_current = 1 ORDER BY id LIMIT 1")
    if sem is None:
        return []

    courses = {
        r["id"]: Course.from_row(r)
        for r in query(con, "SELECT * FROM courses WHERE semester_id = ? ORDER BY short_name", (sem["id"],))
    }
    holidays = [h for h in list_holidays(con, sem["id"]) if h.covers(day)]
    exceptions = {(e.holiday_id, e.course_id) for e in list_holiday_exceptions(con)}
    events = [e for e in list_events(con, day=day) if e.course_id in courses]

    entries: list[AgendaEntry] = []
    consumed: set[int] = set()
    for schedule in list_schedules(con):
        course = courses.get(schedule.course_id)
        if course is None or schedule.day_of_week != day.weekday():
            continue
        if not schedule.start_date <= day <= schedule.end_date:
            continue

        entry = AgendaEntry(
            course=course,
            kind="regular",
            schedule_type=schedule.schedule_type,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            room=schedule.room,
            location=schedule.location,
        )
        blocking = [h for h in holidays if (h.id, course.id) not in exceptions]
        if blocking:
            entry.kind = "holiday"
            entry.note = blocking[0].name

        for event in events:
            if event.course_id != course.id or not _overlaps(event, schedule):
                continue
            if event.event_type is EventType.CANCELLED:
                consumed.add(event.id)
                entry.kind = "cancelled"
                entry.note = event.description
            elif event.event_type is EventType.OVERRIDE and event.schedule_id == schedule.id:
                consumed.add(event.id)
                entry.kind = "modified"
                entry.start_time = event.start_time or entry.start_time
                entry.end_time = event.end_time or entry.end_time
                entry.room = event.room or entry.room
                entry.location = event.location or entry.location
                entry.note = event.description
        entries.append(entry)

    for event in events:
        if event.id in consumed or event.event_type is EventType.CANCELLED:
            continue
        entries.append(
            AgendaEntry(
                course=courses[event.course_id],
                kind="special",
                schedule_type=event.schedule_type,
                start_time=event.start_time,
                end_time=event.end_time,
                room=event.room,
                location=event.location,
                note=event.description or event.event_type.value.replace("_", " "),
            )
        )

    entries.sort(key=lambda e: e.sort_key)
    return entries
