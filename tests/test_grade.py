"""
Tests for grading schemes, component grades and the GPA.
"""

import unittest

from mms.degree import create_degree, map_course_to_area, AreaInput
from mms.errors import ValidationError
from mms.grade import (
    GradeComponentInput,
    add_grade_component,
    calculate_gpa,
    calculate_weighted_average,
    compute_component_grade,
    convert_grade,
    delete_grade_component,
    format_grade,
    get_final_grade,
    list_grades_by_course,
    parse_component_spec,
    parse_grade_value,
    record_grade,
    update_grade,
)
from mms.model import ECTSGrade, GradingScheme

from support import Workspace

G = GradingScheme


class TestConversion(unittest.TestCase):
    def test_german_anchor_points(self) -> None:
        self.assertAlmostEqual(convert_grade(1.0, G.GERMAN, G.PERCENTAGE), 100.0)
        self.assertAlmostEqual(convert_grade(4.0, G.GERMAN, G.PERCENTAGE), 50.0)
        self.assertAlmostEqual(convert_grade(30.0, G.PERCENTAGE, G.GERMAN), 5.0)

    def test_roundtrip_tolerance(self) -> None:
        g = 1.0
        while g <= 5.0:
            us = convert_grade(convert_grade(g, G.GERMAN, G.US), G.US, G.GERMAN)
            pct = convert_grade(convert_grade(g, G.GERMAN, G.PERCENTAGE), G.PERCENTAGE, G.GERMAN)
            self.assertLessEqual(abs(us - g), 0.2, g)
            self.assertLessEqual(abs(pct - g), 0.1, g)
            g = round(g + 0.1, 1)

    def test_ects_bands(self) -> None:
        self.assertEqual(ECTSGrade.from_percentage(90.0), ECTSGrade.A)
        self.assertEqual(ECTSGrade.from_percentage(49.9), ECTSGrade.F)
        self.assertEqual(format_grade(convert_grade(1.3, G.GERMAN, G.ECTS), G.ECTS), "A")

    def test_pass_fail(self) -> None:
        self.assertEqual(convert_grade(3.9, G.GERMAN, G.PASSFAIL), 1.0)
        self.assertEqual(convert_grade(45.0, G.PERCENTAGE, G.PASSFAIL), 0.0)

    def test_parse_grade_value(self) -> None:
        self.assertEqual(parse_grade_value("1,7", G.GERMAN), 1.7)
        self.assertEqual(parse_grade_value("b", G.ECTS), 2.0)
        self.assertEqual(parse_grade_value("pass", G.PASSFAIL), 1.0)
        for text, scheme in (("0.7", G.GERMAN), ("abc", G.GERMAN), ("101", G.PERCENTAGE)):
            with self.assertRaises(ValidationError):
                parse_grade_value(text, scheme)


class TestComponents(unittest.TestCase):
    def test_weighted_mean(self) -> None:
        comps = [
            GradeComponentInput("A", 0.2, grade=70.0),
            GradeComponentInput("B", 0.3, grade=80.0),
            GradeComponentInput("C", 0.5, grade=95.0),
        ]
        expected = 0.2 * 70 + 0.3 * 80 + 0.5 * 95
        self.assertAlmostEqual(compute_component_grade(comps, G.PERCENTAGE), expected, delta=1e-9)

    def test_zero_weights(self) -> None:
        self.assertIsNone(calculate_weighted_average([(1.0, 0.0)]))
        with self.assertRaises(ValidationError):
            compute_component_grade([GradeComponentInput("A", 0.0, grade=2.0)], G.GERMAN)

    def test_bonus_is_capped(self) -> None:
        comps = [GradeComponentInput("Exam", 1.0, 95, 100), GradeComponentInput("Quiz", is_bonus=True, bonus_points=10)]
        self.assertAlmostEqual(compute_component_grade(comps, G.PERCENTAGE), 100.0)

    def test_parse_component_spec(self) -> None:
        c = parse_component_spec("Midterm:0.4:85/100")
        self.assertEqual((c.name, c.weight, c.points_earned, c.points_total), ("Midterm", 0.4, 85.0, 100.0))
        self.assertEqual(parse_component_spec("Project:0.5:1,3").grade, 1.3)
        self.assertTrue(parse_component_spec("Quiz:bonus:5").is_bonus)
        for bad in ("Midterm", "A:x:1", "A:0.5:1/y"):
            with self.assertRaises(ValidationError):
                parse_component_spec(bad)

    def test_component_needs_a_result(self) -> None:
        with self.assertRaises(ValidationError):
            GradeComponentInput("Empty", 0.5, points_earned=5, points_total=0).validate()


class TestGradeRecords(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.algo = self.ws.course(self.sem.id, "algo", ects=6)

    def tearDown(self) -> None:
        self.ws.close()

    def test_grade_from_components(self) -> None:
        grade = record_grade(
            self.ws.con,
            self.algo.id,
            scheme=G.GERMAN,
            components=[
                GradeComponentInput("Midterm", 0.4, points_earned=85, points_total=100),
                GradeComponentInput("Final", 0.6, points_earned=90, points_total=100),
            ],
        )
        self.assertAlmostEqual(convert_grade(grade.grade, G.GERMAN, G.PERCENTAGE), 88.0)
        self.assertAlmostEqual(grade.grade, 1.72, places=6)
        self.assertTrue(grade.passed)
        self.assertEqual([c.component_name for c in grade.components], ["Midterm", "Final"])

    def test_passed_is_derived(self) -> None:
        self.assertFalse(record_grade(self.ws.con, self.algo.id, 4.3).passed)
        self.assertTrue(record_grade(self.ws.con, self.algo.id, 2.0).passed)

    def test_new_final_supersedes(self) -> None:
        first = record_grade(self.ws.con, self.algo.id, 5.0)
        second = record_grade(self.ws.con, self.algo.id, 2.3)
        self.assertEqual(second.attempt_number, 2)
        self.assertEqual(get_final_grade(self.ws.con, self.algo.id).id, second.id)
        finals = [g.id for g in list_grades_by_course(self.ws.con, self.algo.id) if g.is_final]
        self.assertEqual(finals, [second.id])

        update_grade(self.ws.con, first.id, is_final=True)
        self.assertEqual(get_final_grade(self.ws.con, self.algo.id).id, first.id)

    def test_out_of_range(self) -> None:
        with self.assertRaises(ValidationError):
            record_grade(self.ws.con, self.algo.id, 6.0)
        with self.assertRaises(ValidationError):
            record_grade(self.ws.con, self.algo.id)

    def test_update_converts_scheme(self) -> None:
        grade = record_grade(self.ws.con, self.algo.id, 1.0)
        updated = update_grade(self.ws.con, grade.id, scheme=G.PERCENTAGE)
        self.assertAlmostEqual(updated.grade, 100.0)
        self.assertEqual(updated.grading_scheme, G.PERCENTAGE)

    def test_component_changes_recompute(self) -> None:
        grade = record_grade(
            self.ws.con, self.algo.id, scheme=G.PERCENTAGE, components=[GradeComponentInput("A", 1.0, grade=60.0)]
        )
        grade = add_grade_component(self.ws.con, grade.id, GradeComponentInput("B", 1.0, grade=80.0))
        self.assertAlmostEqual(grade.grade, 70.0)
        grade = delete_grade_component(self.ws.con, grade.components[0].id)
        self.assertAlmostEqual(grade.grade, 80.0)


class TestGPA(unittest.TestCase):
    def setUp(self) -> None:
        self.ws = Workspace()
        self.sem = self.ws.semester(3)
        self.a = self.ws.course(self.sem.id, "a", ects=6)
        self.b = self.ws.course(self.sem.id, "b", ects=3)
        self.c = self.ws.course(self.sem.id, "c", ects=5)
        self.degree = create_degree(
            self.ws.con,
            "bachelor",
            "CS",
            "Uni",
            areas=[AreaInput("Core", 60), AreaInput("Extra", 12, counts_towards_gpa=False)],
        )
        core, extra = self._areas()
        map_course_to_area(self.ws.con, self.a.id, core)
        map_course_to_area(self.ws.con, self.b.id, core)
        map_course_to_area(self.ws.con, self.c.id, extra)
        record_grade(self.ws.con, self.a.id, 1.0)
        record_grade(self.ws.con, self.b.id, 2.5)
        record_grade(self.ws.con, self.c.id, 4.0)

    def tearDown(self) -> None:
        self.ws.close()

    def _areas(self):
        rows = self.ws.con.execute("SELECT id FROM degree_areas ORDER BY display_order").fetchall()
        return [r["id"] for r in rows]

    def test_overall_counts_gpa_areas_only(self) -> None:
        info = calculate_gpa(self.ws.con)
        self.assertAlmostEqual(info.gpa, (1.0 * 6 + 2.5 * 3) / 9)
        self.assertEqual((info.total_courses, info.total_ects), (2, 9))

    def test_include_non_gpa(self) -> None:
        info = calculate_gpa(self.ws.con, include_non_gpa=True)
        self.assertAlmostEqual(info.gpa, (1.0 * 6 + 2.5 * 3 + 4.0 * 5) / 14)

    def test_failed_and_non_final_do_not_count(self) -> None:
        record_grade(self.ws.con, self.b.id, 5.0)
        record_grade(self.ws.con, self.a.id, 3.0, is_final=False)
        info = calculate_gpa(self.ws.con)
        self.assertAlmostEqual(info.gpa, 1.0)
        self.assertEqual(info.total_ects, 6)

    def test_scopes(self) -> None:
        core, extra = self._areas()
        self.assertAlmostEqual(calculate_gpa(self.ws.con, "area", extra, include_non_gpa=True).gpa, 4.0)
        self.assertIsNone(calculate_gpa(self.ws.con, "area", extra).gpa)
        self.assertEqual(calculate_gpa(self.ws.con, "degree", self.degree.id).total_ects, 9)
        self.assertEqual(calculate_gpa(self.ws.con, "semester", self.sem.id).total_courses, 2)
        with self.assertRaises(ValidationError):
            calculate_gpa(self.ws.con, "semester")
        with self.assertRaises(ValidationError):
            calculate_gpa(self.ws.con, "galaxy", 1)

    def test_other_scheme(self) -> None:
        info = calculate_gpa(self.ws.con, scheme=G.PERCENTAGE)
        self.assertAlmostEqual(info.gpa, (100.0 * 6 + 75.0 * 3) / 9)


if __name__ == "__main__":
    unittest.main()
