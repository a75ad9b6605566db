"""
Tests for weekly schedules, events, holidays and the daily agenda.
"""

import unittest
from datetime import date

from mms.errors import NotFoundError, ValidationError
from mms.model import EventType, ScheduleType
from mms.schedule import (
    add_event,
    add_holiday,
    add_holiday_exception,
    add_one_time_event,
    add_schedule,
    cancel_occurrence,
    delete_holiday,
    delete_schedule,
    entries_for_day,
    list_events,
    list_holiday_exceptions,
    list_holidays,
    list_schedules,
    override_occurrence,
    remove_holiday_exception,
    update_schedule,
)

from support import Workspace

MONDAY = date(2024, 11, 18)


class TestSchedules(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo")

    def tearDown(self) -> None:
        self.ws.close()

    def test_dates_default_to_semester(self) -> None:
        s = add_schedule(self.ws.con, self.algo.id, "Vorlesung", 0, "8:15", "9:45", room="HS 1")
        self.assertEqual(s.schedule_type, ScheduleType.LECTURE)
        self.assertEqual((s.start_time, s.end_time), ("08:15", "09:45"))
        self.assertEqual((s.start_date, s.end_date), (date(2024, 10, 1), date(2025, 2, 1)))
        self.assertEqual(s.location, "Campus")

    def test_invalid_schedules(self) -> None:
        with self.assertRaises(ValidationError):
            add_schedule(self.ws.con, self.algo.id, "lecture", 7, "10:00", "12:00")
        with self.assertRaises(ValidationError):
            add_schedule(self.ws.con, self.algo.id, "lecture", 0, "12:00", "10:00")
        with self.assertRaises(ValidationError):
            add_schedule(self.ws.con, self.algo.id, "seminar", 0, "10:00", "12:00")
        with self.assertRaises(NotFoundError):
            add_schedule(self.ws.con, 999, "lecture", 0, "10:00", "12:00")
        self.assertEqual(list_schedules(self.ws.con), [])

    def test_update_and_delete(self) -> None:
        s = self.ws.monday_lecture(self.algo.id)
        updated = update_schedule(self.ws.con, s.id, day_of_week=2, room="B 12", end_time="17:00")
        self.assertEqual((updated.day_of_week, updated.room, updated.end_time), (2, "B 12", "17:00"))
        with self.assertRaises(ValidationError):
            update_schedule(self.ws.con, s.id, start_time="18:00")
        cancel_occurrence(self.ws.con, s.id, date(2024, 11, 20))
        delete_schedule(self.ws.con, s.id)
        self.assertEqual(list_events(self.ws.con), [])

    def test_one_time_event_needs_times(self) -> None:
        with self.assertRaises(ValidationError):
            add_event(self.ws.con, self.algo.id, EventType.ONE_TIME, MONDAY)
        event = add_one_time_event(self.ws.con, self.algo.id, MONDAY, "10:00", "11:00", schedule_type="exercise")
        self.assertEqual(event.schedule_type, ScheduleType.EXERCISE)

    def test_cancel_records_slot_times(self) -> None:
        s = self.ws.monday_lecture(self.algo.id)
        event = cancel_occurrence(self.ws.con, s.id, MONDAY, reason="ill")
        self.assertEqual(event.event_type, EventType.CANCELLED)
        self.assertEqual((event.start_time, event.end_time, event.schedule_id), ("14:00", "16:00", s.id))
        with self.assertRaises(ValidationError):
            cancel_occurrence(self.ws.con, s.id, date(2025, 3, 3))

    def test_override_defaults_to_slot(self) -> None:
        s = add_schedule(self.ws.con, self.algo.id, "lecture", 0, "14:00", "16:00", room="HS 1")
        with self.assertRaises(ValidationError):
            override_occurrence(self.ws.con, s.id, MONDAY)
        event = override_occurrence(self.ws.con, s.id, MONDAY, room="HS 2")
        self.assertEqual((event.start_time, event.end_time, event.room), ("14:00", "16:00", "HS 2"))

    def test_event_schedule_must_belong_to_course(self) -> None:
        other = self.ws.course(self.sem.id, "other")
        s = self.ws.monday_lecture(other.id)
        with self.assertRaises(ValidationError):
            add_event(self.ws.con, self.algo.id, EventType.CANCELLED, MONDAY, schedule_id=s.id)


class TestHolidays(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo")

    def tearDown(self) -> None:
        self.ws.close()

    def test_single_day_holiday(self) -> None:
        h = add_holiday(self.ws.con, "Dies", MONDAY)
        self.assertEqual(h.end_date, MONDAY)
        self.assertTrue(h.covers(MONDAY))
        self.assertFalse(h.covers(date(2024, 11, 19)))

    def test_invalid_holidays(self) -> None:
        with self.assertRaises(ValidationError):
            add_holiday(self.ws.con, " ", MONDAY)
        with self.assertRaises(ValidationError):
            add_holiday(self.ws.con, "Back", date(2024, 12, 2), date(2024, 12, 1))
        with self.assertRaises(NotFoundError):
            add_holiday(self.ws.con, "x", MONDAY, semester_id=42)

    def test_scope_and_exceptions(self) -> None:
        other = self.ws.semester(4, current=False)
        add_holiday(self.ws.con, "Global", MONDAY)
        scoped = add_holiday(self.ws.con, "Scoped", MONDAY, semester_id=other.id)
        self.assertEqual([h.name for h in list_holidays(self.ws.con, self.sem.id)], ["Global"])
        self.assertEqual(len(list_holidays(self.ws.con)), 2)

        add_holiday_exception(self.ws.con, scoped.id, self.algo.id)
        add_holiday_exception(self.ws.con, scoped.id, self.algo.id)
        self.assertEqual(len(list_holiday_exceptions(self.ws.con, scoped.id)), 1)
        remove_holiday_exception(self.ws.con, scoped.id, self.algo.id)
        with self.assertRaises(NotFoundError):
            remove_holiday_exception(self.ws.con, scoped.id, self.algo.id)

        delete_holiday(self.ws.con, scoped.id)
        self.assertEqual(len(list_holidays(self.ws.con)), 1)


class TestAgenda(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo")
        self.ml = self.ws.course(self.sem.id, "ml")
        self.algo_slot = self.ws.monday_lecture(self.algo.id, "14:00", "16:00")
        self.ml_slot = self.ws.monday_lecture(self.ml.id, "10:00", "12:00")

    def tearDown(self) -> None:
        self.ws.close()

    def test_regular_day_sorted_by_time(self) -> None:
        entries = entries_for_day(self.ws.con, MONDAY)
        self.assertEqual([(e.course.short_name, e.kind) for e in entries], [("ml", "regular"), ("algo", "regular")])
        self.assertEqual(entries_for_day(self.ws.con, date(2024, 11, 19)), [])

    def test_cancel_override_and_special(self) -> None:
        cancel_occurrence(self.ws.con, self.algo_slot.id, MONDAY, reason="ill")
        override_occurrence(self.ws.con, self.ml_slot.id, MONDAY, room="HS 9")
        add_one_time_event(self.ws.con, self.algo.id, MONDAY, "17:00", "18:00", description="Q&A")
        kinds = [(e.course.short_name, e.kind, e.room, e.note) for e in entries_for_day(self.ws.con, MONDAY)]
        self.assertEqual(
            kinds,
            [("ml", "modified", "HS 9", None), ("algo", "cancelled", None, "ill"), ("algo", "special", None, "Q&A")],
        )

    def test_holiday_entries(self) -> None:
        h = add_holiday(self.ws.con, "Dies", MONDAY)
        add_holiday_exception(self.ws.con, h.id, self.ml.id)
        kinds = {e.course.short_name: e.kind for e in entries_for_day(self.ws.con, MONDAY)}
        self.assertEqual(kinds, {"ml": "regular", "algo": "holiday"})


if __name__ == "__main__":
    unittest.main()
