"""
Tests for the active-course resolver.

The first group works on the database (the end-to-end timetable cases),
the second on hand-built snapshots to pin down the priority order.
"""

import unittest
from datetime import date, datetime

from mms.model import CourseEvent, CourseSchedule, EventType, Holiday, ScheduleType
from mms.resolver import CourseRef, Snapshot, load_snapshot, resolve, resolve_active_course
from mms.schedule import add_event, add_holiday, add_holiday_exception, add_one_time_event, cancel_occurrence

from support import Workspace

MONDAY = date(2024, 11, 18)


def at(hh: int, mm: int, day: date = MONDAY) -> datetime:
    return datetime(day.year, day.month, day.day, hh, mm)


class TestResolverOnDatabase(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo")
        self.labwork = self.ws.course(self.sem.id, "labwork")
        self.lecture = self.ws.monday_lecture(self.algo.id)

    def tearDown(self) -> None:
        self.ws.close()

    def test_happy_path(self) -> None:
        self.assertEqual(resolve_active_course(self.ws.con, at(14, 30)), self.algo.id)

    def test_outside_slot_and_semester(self) -> None:
        self.assertIsNone(resolve_active_course(self.ws.con, at(13, 59)))
        self.assertIsNone(resolve_active_course(self.ws.con, at(14, 30, date(2025, 2, 3))))

    def test_no_current_semester(self) -> None:
        self.ws.con.execute("UPDATE semesters SET is_current = 0")
        self.ws.con.commit()
        self.assertIsNone(resolve_active_course(self.ws.con, at(14, 30)))

    def test_cancellation_wins(self) -> None:
        add_event(self.ws.con, self.algo.id, EventType.CANCELLED, MONDAY)
        self.assertIsNone(resolve_active_course(self.ws.con, at(14, 30)))

    def test_cancel_occurrence_covers_only_the_slot(self) -> None:
        cancel_occurrence(self.ws.con, self.lecture.id, MONDAY, reason="sick")
        self.assertIsNone(resolve_active_course(self.ws.con, at(14, 30)))

    def test_override_redirects(self) -> None:
        add_event(self.ws.con, self.labwork.id, EventType.OVERRIDE, MONDAY, "14:00", "16:00")
        self.assertEqual(resolve_active_course(self.ws.con, at(14, 30)), self.labwork.id)

    def test_holiday_with_exception(self) -> None:
        holiday = add_holiday(self.ws.con, "Dies academicus", MONDAY, MONDAY)
        self.assertIsNone(resolve_active_course(self.ws.con, at(14, 30)))
        add_holiday_exception(self.ws.con, holiday.id, self.algo.id)
        self.assertEqual(resolve_active_course(self.ws.con, at(14, 30)), self.algo.id)

    def test_holiday_of_other_semester_is_ignored(self) -> None:
        other = self.ws.semester(4, current=False)
        add_holiday(self.ws.con, "Elsewhere", MONDAY, semester_id=other.id)
        self.assertEqual(resolve_active_course(self.ws.con, at(14, 30)), self.algo.id)

    def test_one_time_event(self) -> None:
        saturday = date(2024, 11, 23)
        add_one_time_event(self.ws.con, self.labwork.id, saturday, "10:00", "12:00")
        self.assertEqual(resolve_active_course(self.ws.con, at(11, 0, saturday)), self.labwork.id)
        self.assertIsNone(resolve_active_course(self.ws.con, at(12, 0, saturday)))

    def test_deterministic(self) -> None:
        snapshot = load_snapshot(self.ws.con, MONDAY)
        results = {resolve(snapshot, at(14, 30)) for _ in range(20)}
        self.assertEqual(results, {self.algo.id})


def _schedule(sid: int, course_id: int, start: str, end: str, day: int = 0) -> CourseSchedule:
    return CourseSchedule(
        id=sid,
        course_id=course_id,
        schedule_type=ScheduleType.LECTURE,
        day_of_week=day,
        start_time=start,
        end_time=end,
        start_date=date(2024, 10, 1),
        end_date=date(2025, 2, 1),
    )


def _event(eid: int, course_id: int, kind: EventType, start=None, end=None) -> CourseEvent:
    return CourseEvent(id=eid, course_id=course_id, event_type=kind, date=MONDAY, start_time=start, end_time=end)


class TestResolverPriorities(unittest.TestCase):
    def setUp(self) -> None:
        self.snapshot = Snapshot(
            day=MONDAY,
            semester_id=1,
            courses=[CourseRef(2, "beta"), CourseRef(1, "alpha")],
            schedules=[_schedule(1, 1, "14:00", "16:00"), _schedule(2, 2, "14:00", "16:00")],
        )

    def test_half_open_windows(self) -> None:
        self.assertEqual(resolve(self.snapshot, at(15, 59)), 1)
        self.assertIsNone(resolve(self.snapshot, at(16, 0)))
        self.assertEqual(resolve(self.snapshot, at(14, 0)), 1)

    def test_courses_checked_in_short_name_order(self) -> None:
        # both slots overlap; alpha sorts first
        self.assertEqual(resolve(self.snapshot, at(15, 0)), 1)

    def test_cancelled_course_falls_through_to_next(self) -> None:
        self.snapshot.events = [_event(1, 1, EventType.CANCELLED)]
        self.assertEqual(resolve(self.snapshot, at(15, 0)), 2)

    def test_cancellation_with_times_only_covers_its_window(self) -> None:
        self.snapshot.schedules = [_schedule(1, 1, "10:00", "16:00")]
        self.snapshot.events = [_event(1, 1, EventType.CANCELLED, "10:00", "12:00")]
        self.assertIsNone(resolve(self.snapshot, at(11, 0)))
        self.assertEqual(resolve(self.snapshot, at(13, 0)), 1)

    def test_own_event_beats_foreign_redirect(self) -> None:
        self.snapshot.schedules = []
        self.snapshot.events = [
            _event(1, 1, EventType.SPECIAL, "09:00", "10:00"),
            _event(2, 2, EventType.MAKEUP, "09:00", "10:00"),
        ]
        self.assertEqual(resolve(self.snapshot, at(9, 30)), 1)

    def test_redirect_beats_own_schedule(self) -> None:
        self.snapshot.schedules = [_schedule(1, 1, "14:00", "16:00")]
        self.snapshot.events = [_event(1, 2, EventType.OVERRIDE, "14:00", "15:00")]
        self.assertEqual(resolve(self.snapshot, at(14, 30)), 2)
        self.assertEqual(resolve(self.snapshot, at(15, 30)), 1)

    def test_event_without_times_covers_whole_day(self) -> None:
        self.snapshot.schedules = []
        self.snapshot.events = [_event(1, 2, EventType.SPECIAL)]
        self.assertEqual(resolve(self.snapshot, at(7, 0)), 2)

    def test_holiday_blocks_schedule_not_events(self) -> None:
        self.snapshot.holidays = [Holiday(id=1, name="Break", start_date=MONDAY, end_date=MONDAY)]
        self.assertIsNone(resolve(self.snapshot, at(15, 0)))
        self.snapshot.exceptions = {(1, 2)}
        self.assertEqual(resolve(self.snapshot, at(15, 0)), 2)
        self.snapshot.events = [_event(1, 1, EventType.ONE_TIME, "15:00", "16:00")]
        self.assertEqual(resolve(self.snapshot, at(15, 30)), 1)

    def test_malformed_times_read_as_midnight(self) -> None:
        self.snapshot.schedules = [_schedule(1, 1, "xx", "01:00")]
        self.assertEqual(resolve(self.snapshot, at(0, 30)), 1)

    def test_wrong_weekday(self) -> None:
        tuesday = date(2024, 11, 19)
        self.assertIsNone(resolve(self.snapshot, at(15, 0, tuesday)))

    def test_no_semester(self) -> None:
        self.assertIsNone(resolve(Snapshot(day=MONDAY), at(15, 0)))


if __name__ == "__main__":
    unittest.main()
