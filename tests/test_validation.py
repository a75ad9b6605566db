"""
Tests for input parsing: short names, ECTS, dates, times and weekdays.
"""

import unittest
from datetime import date

from mms.errors import DateRangeError, ValidationError
from mms.validation import (
    format_german_date,
    parse_time,
    parse_time_range,
    parse_user_date,
    parse_weekday,
    stored_time_to_minutes,
    validate_course_code,
    validate_date_range,
    validate_ects,
)


class TestNames(unittest.TestCase):
    def test_course_code_charset(self) -> None:
        self.assertEqual(validate_course_code(" algo_2-b "), "algo_2-b")
        for bad in ("", ".hidden", "a b", "ml/dl", "über"):
            with self.assertRaises(ValidationError):
                validate_course_code(bad)

    def test_ects_bounds(self) -> None:
        self.assertEqual(validate_ects(1), 1)
        self.assertEqual(validate_ects("30"), 30)
        for bad in (0, 31, "six"):
            with self.assertRaises(ValidationError):
                validate_ects(bad)


class TestDates(unittest.TestCase):
    def test_german_and_iso(self) -> None:
        self.assertEqual(parse_user_date("1.3.2025"), date(2025, 3, 1))
        self.assertEqual(parse_user_date("01.03.2025"), date(2025, 3, 1))
        self.assertEqual(parse_user_date("2025-03-01"), date(2025, 3, 1))
        self.assertEqual(format_german_date(date(2025, 3, 1)), "01.03.2025")

    def test_invalid_date(self) -> None:
        for bad in ("31.02.2025", "2025/03/01", "tomorrow"):
            with self.assertRaises(ValidationError):
                parse_user_date(bad)

    def test_range_strictness(self) -> None:
        d = date(2025, 1, 1)
        validate_date_range(d, d, strict=False)
        with self.assertRaises(DateRangeError):
            validate_date_range(d, d, strict=True)
        with self.assertRaises(DateRangeError):
            validate_date_range(date(2025, 2, 1), d, strict=False)
        validate_date_range(None, d)


class TestTimes(unittest.TestCase):
    def test_parse_time_pads(self) -> None:
        self.assertEqual(parse_time("8:05"), "08:05")
        with self.assertRaises(ValidationError):
            parse_time("24:00")

    def test_time_range(self) -> None:
        self.assertEqual(parse_time_range("14:00-16:00"), ("14:00", "16:00"))
        with self.assertRaises(ValidationError):
            parse_time_range("16:00-14:00")
        with self.assertRaises(ValidationError):
            parse_time_range("14:00")

    def test_malformed_stored_time_reads_as_midnight(self) -> None:
        self.assertEqual(stored_time_to_minutes("14:30"), 870)
        self.assertEqual(stored_time_to_minutes("14:30:00"), 870)
        self.assertEqual(stored_time_to_minutes("garbage"), 0)
        self.assertEqual(stored_time_to_minutes(None), 0)

    def test_weekday(self) -> None:
        self.assertEqual(parse_weekday("Mon"), 0)
        self.assertEqual(parse_weekday("sunday"), 6)
        self.assertEqual(parse_weekday("3"), 3)
        with self.assertRaises(ValidationError):
            parse_weekday("m")


if __name__ == "__main__":
    unittest.main()
