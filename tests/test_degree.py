"""
Tests for degrees, their areas, course mappings and progress.
"""

import unittest
from datetime import date

from mms.degree import (
    AreaInput,
    add_degree_area,
    create_degree,
    delete_degree,
    find_degree_area,
    get_degree_progress,
    get_unmapped_courses,
    list_course_mappings,
    list_degree_areas,
    list_degrees,
    map_course_to_area,
    unmap_course_from_area,
    update_degree,
    validate_degree_ects,
)
from mms.errors import DateRangeError, NotFoundError, ValidationError
from mms.grade import record_grade
from mms.model import DegreeType, GradingScheme

from support import Workspace


class TestDegreeValidation(unittest.TestCase):
    def test_ects_bounds_by_type(self) -> None:
        self.assertEqual(validate_degree_ects(DegreeType.BACHELOR, 180), 180)
        self.assertEqual(validate_degree_ects(DegreeType.MASTER, 120), 120)
        self.assertEqual(validate_degree_ects(DegreeType.PHD, 0), 0)
        for kind, ects in ((DegreeType.BACHELOR, 60), (DegreeType.MASTER, 180), (DegreeType.PHD, 10)):
            with self.assertRaises(ValidationError):
                validate_degree_ects(kind, ects)


class TestDegrees(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(1, kind="master")
        self.ml = self.ws.course(self.sem.id, "ml", ects=6)
        self.dl = self.ws.course(self.sem.id, "dl", ects=9)

    def tearDown(self) -> None:
        self.ws.close()

    def _master(self, **kwargs):
        return create_degree(
            self.ws.con,
            "msc",
            "Machine Learning",
            "Uni Tübingen",
            areas=[AreaInput("ML_FOUND", 24), AreaInput("ML_EXP", 12, counts_towards_gpa=False)],
            **kwargs,
        )

    def test_create_with_areas(self) -> None:
        degree = self._master(start_date=date(2024, 10, 1), expected_end_date=date(2026, 9, 30))
        self.assertEqual(degree.total_ects_required, 120)
        self.assertEqual([a.category_name for a in list_degree_areas(self.ws.con, degree.id)], ["ML_FOUND", "ML_EXP"])

    def test_failed_create_leaves_nothing(self) -> None:
        with self.assertRaises(ValidationError):
            create_degree(self.ws.con, "master", "X", "U", areas=[AreaInput("A", 10), AreaInput("", 5)])
        with self.assertRaises(DateRangeError):
            create_degree(self.ws.con, "master", "X", "U", start_date=date(2025, 1, 1), expected_end_date=date(2024, 1, 1))
        with self.assertRaises(ValidationError):
            create_degree(self.ws.con, "master", "X", "U", areas=[AreaInput("A", 10), AreaInput("A", 5)])
        self.assertEqual(list_degrees(self.ws.con), [])
        self.assertEqual(self.ws.con.execute("SELECT COUNT(*) FROM degree_areas").fetchone()[0], 0)

    def test_update_and_delete_cascade(self) -> None:
        degree = self._master()
        self.assertFalse(update_degree(self.ws.con, degree.id, is_active=False).is_active)
        self.assertEqual(list_degrees(self.ws.con, include_inactive=False), [])
        with self.assertRaises(ValidationError):
            update_degree(self.ws.con, degree.id, total_ects_required=300)

        area = find_degree_area(self.ws.con, degree.id, "ml_found")
        map_course_to_area(self.ws.con, self.ml.id, area.id)
        delete_degree(self.ws.con, degree.id)
        self.assertEqual(list_course_mappings(self.ws.con, self.ml.id), [])

    def test_areas_and_mappings(self) -> None:
        degree = self._master()
        extra = add_degree_area(self.ws.con, degree.id, "ML_CS", 18)
        self.assertEqual(extra.display_order, 2)
        self.assertEqual(find_degree_area(self.ws.con, degree.id, str(extra.id)).category_name, "ML_CS")
        with self.assertRaises(NotFoundError):
            find_degree_area(self.ws.con, degree.id, "nope")

        map_course_to_area(self.ws.con, self.ml.id, extra.id, ects_override=3)
        with self.assertRaises(ValidationError):
            map_course_to_area(self.ws.con, self.ml.id, extra.id)
        self.assertEqual([c.short_name for c in get_unmapped_courses(self.ws.con)], ["dl"])

        unmap_course_from_area(self.ws.con, self.ml.id, extra.id)
        with self.assertRaises(NotFoundError):
            unmap_course_from_area(self.ws.con, self.ml.id, extra.id)

    def test_progress(self) -> None:
        degree = self._master()
        found = find_degree_area(self.ws.con, degree.id, "ML_FOUND")
        exp = find_degree_area(self.ws.con, degree.id, "ML_EXP")
        map_course_to_area(self.ws.con, self.ml.id, found.id)
        map_course_to_area(self.ws.con, self.dl.id, exp.id)
        record_grade(self.ws.con, self.ml.id, 1.7)
        record_grade(self.ws.con, self.dl.id, 1.0, scheme=GradingScheme.PASSFAIL)

        progress = get_degree_progress(self.ws.con, degree.id)
        by_name = {a.category_name: a for a in progress.areas}
        self.assertEqual(by_name["ML_FOUND"].earned_ects, 6)
        self.assertEqual(by_name["ML_FOUND"].remaining_ects, 18)
        self.assertAlmostEqual(by_name["ML_FOUND"].area_gpa, 1.7)
        self.assertEqual(by_name["ML_EXP"].earned_ects, 9)
        self.assertIsNone(by_name["ML_EXP"].area_gpa)
        self.assertEqual(progress.total_earned, 15)
        self.assertAlmostEqual(progress.percent_complete, 12.5)
        self.assertAlmostEqual(progress.overall_gpa, 1.7)

    def test_failed_grade_earns_nothing(self) -> None:
        degree = self._master()
        found = find_degree_area(self.ws.con, degree.id, "ML_FOUND")
        map_course_to_area(self.ws.con, self.ml.id, found.id)
        record_grade(self.ws.con, self.ml.id, 5.0)
        progress = get_degree_progress(self.ws.con, degree.id)
        self.assertEqual(progress.total_earned, 0)
        self.assertIsNone(progress.overall_gpa)


if __name__ == "__main__":
    unittest.main()
