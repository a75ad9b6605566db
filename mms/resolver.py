"""
Which course is active right now?

The answer is computed in two steps so the decision itself is a pure
function that can be tested without a database:

    load_snapshot(con, day)   -> Snapshot   (everything relevant for one date)
    resolve(snapshot, when)   -> course id or None

Rules, checked per course of the current semester in short_name order; the
first rule that fires decides:

    P1  a cancellation of this course covers the minute -> skip the course
    P2  an override / makeup / special / one_time event covers the minute:
        the course's own events first (the course itself is active), then
        events of the other courses of the semester (that course is active)
    P3  a one_time event of the course with times covers the minute
    P4  no holiday applies to the course and one of its weekly schedules
        covers the minute

All windows are half-open [start, end) at minute granularity, so a slot
ending at 16:00 is no longer active at 16:00. Events without times cover
the whole day.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from mms.db import query, query_one
from mms.model import CourseEvent, CourseSchedule, EventType, Holiday
from mms.validation import stored_time_to_minutes

REDIRECT_EVENT_TYPES = frozenset({EventType.OVERRIDE, EventType.MAKEUP, EventType.SPECIAL, EventType.ONE_TIME})


@dataclass(frozen=True)
class CourseRef:
    id: int
    short_name: str


@dataclass
class Snapshot:
    """Committed state relevant for resolving instants on `day`."""

    day: date
    semester_id: Optional[int] = None
    courses: list[CourseRef] = field(default_factory=list)
    schedules: list[CourseSchedule] = field(default_factory=list)
    events: list[CourseEvent] = field(default_factory=list)
    holidays: list[Holiday] = field(default_factory=list)
    exceptions: set[tuple[int, int]] = field(default_factory=set)

    def events_of(self, course_id: int, day: date) -> list[CourseEvent]:
        return [e for e in self.events if e.course_id == course_id and e.date == day]

    def holiday_applies(self, course_id: int, day: date) -> bool:
        return any(h.covers(day) and (h.id, course_id) not in self.exceptions for h in self.holidays)


def _minute(when: datetime) -> int:
    return when.hour * 60 + when.minute


def _covers(start: Optional[str], end: Optional[str], minute: int) -> bool:
    return stored_time_to_minutes(start) <= minute < stored_time_to_minutes(end)


def _event_covers(event: CourseEvent, minute: int) -> bool:
    if not event.has_times:
        return True
    return _covers(event.start_time, event.end_time, minute)


def resolve(snapshot: Snapshot, when: datetime) -> Optional[int]:
    """Active course id at local time `when`, or None."""
    if snapshot.semester_id is None:
        return None

    day = when.date()
    minute = _minute(when)
    weekday = day.weekday()

    for course in sorted(snapshot.courses, key=lambda c: (c.short_name, c.id)):
        own_events = snapshot.events_of(course.id, day)

        # P1
        if any(e.event_type is EventType.CANCELLED and _event_covers(e, minute) for e in own_events):
            continue

        # P2
        if any(e.event_type in REDIRECT_EVENT_TYPES and _event_covers(e, minute) for e in own_events):
            return course.id
        for other in sorted(snapshot.courses, key=lambda c: (c.short_name, c.id)):
            if other.id == course.id:
                continue
            for e in snapshot.events_of(other.id, day):
                if e.event_type in REDIRECT_EVENT_TYPES and _event_covers(e, minute):
                    return other.id

        # P3
        if any(
            e.event_type is EventType.ONE_TIME and e.has_times and _covers(e.start_time, e.end_time, minute)
            for e in own_events
        ):
            return course.id

        # P4
        if snapshot.holiday_applies(course.id, day):
            continue
        for s in snapshot.schedules:
            if s.course_id != course.id or s.day_of_week != weekday:
                continue
            if s.start_date <= day <= s.end_date and _covers(s.start_time, s.end_time, minute):
                return course.id

    return None


def load_snapshot(con: sqlite3.Connection, day: date) -> Snapshot:
    sem = query_one(con, "SELECT id FROM semesters WHERE is_current = 1 ORDER BY id LIMIT 1")
    if sem is None:
        return Snapshot(day=day)
    semester_id = sem["id"]

    courses = [
        CourseRef(r["id"], r["short_name"])
        for r in query(con, "SELECT id, short_name FROM courses WHERE semester_id = ? ORDER BY short_name", (semester_id,))
    ]
    schedules = [
        CourseSchedule.from_row(r)
        for r in query(
            con,
            """
            SELECT s.* FROM course_schedules s JOIN courses c ON c.id = s.course_id
            WHERE c.semester_id = ? AND s.day_of_week = ? AND s.start_date <= ? AND s.end_date >= ?
            """,
            (semester_id, day.weekday(), day.isoformat(), day.isoformat()),
        )
    ]
    events = [
        CourseEvent.from_row(r)
        for r in query(
            con,
            """
            SELECT e.* FROM course_events e JOIN courses c ON c.id = e.course_id
            WHERE c.semester_id = ? AND e.date = ?
            ORDER BY e.id
            """,
            (semester_id, day.isoformat()),
        )
    ]
    holidays = [
        Holiday.from_row(r)
        for r in query(
            con,
            """
            SELECT * FROM holidays
            WHERE (semester_id IS NULL OR semester_id = ?) AND start_date <= ? AND end_date >= ?
            """,
            (semester_id, day.isoformat(), day.isoformat()),
        )
    ]
    exceptions = {(r["holiday_id"], r["course_id"]) for r in query(con, "SELECT holiday_id, course_id FROM holiday_exceptions")}

    return Snapshot(
        day=day,
        semester_id=semester_id,
        courses=courses,
        schedules=schedules,
        events=events,
        holidays=holidays,
        exceptions=exceptions,
    )


def current_semester_id(con: sqlite3.Connection) -> Optional[int]:
    row = query_one(con, "SELECT id FROM semesters WHERE is_current = 1 ORDER BY id LIMIT 1")
    return row["id"] if row else None


def resolve_active_course(con: sqlite3.Connection, when: Optional[datetime] = None) -> Optional[int]:
    when = when or datetime.now()
    return resolve(load_snapshot(con, when.date()), when)
