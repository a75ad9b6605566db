"""
Grades, grade components and GPA.

Grading schemes are inter-convertible through a percentage pivot (0-100):

    German      p = 100 - (g - 1) * 50/3      g = 1 + (100 - p) * 3/50   (clamped to [1, 5])
    US GPA      p = g / 4 * 100               g = p / 100 * 4
    ECTS        band midpoints A95 B85 C75 D65 E55 F40, bands A>=90 B>=80 C>=70 D>=60 E>=50
    Pass/Fail   pass -> 100, fail -> 0         p >= 50 -> 1, else 0
    Percentage  identity

German 1.0 is 100 %, 4.0 is 50 %; below 50 % fails in every scheme. ECTS is
lossy (bands), the others roundtrip within float precision.

A grade can be entered directly or computed from components: the weighted
mean of the component results in the percentage domain, where a result is
either the explicit component grade (in the target scheme) or
points_earned / points_total * 100. Bonus components carry no weight; their
bonus_points are added to the percentage afterwards, capped at 100, so a
bonus never lowers a grade.

`passed` is always derived from (grade, scheme) and cannot be set directly.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from mms.db import query, query_one, transaction, update_row, utc_now
from mms.errors import NotFoundError, ValidationError
from mms.model import ECTSGrade, Grade, GradeComponent, GradingScheme

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Scheme rules and conversion
# ---------------------------------------------------------------------------


def is_valid_grade(value: float, scheme: GradingScheme) -> bool:
    if scheme is GradingScheme.GERMAN:
        return 1.0 <= value <= 5.0
    if scheme is GradingScheme.ECTS:
        return 1.0 <= value <= 6.0
    if scheme is GradingScheme.US:
        return 0.0 <= value <= 4.0
    if scheme is GradingScheme.PERCENTAGE:
        return 0.0 <= value <= 100.0
    return value in (0, 1)


def is_passing(value: float, scheme: GradingScheme) -> bool:
    if scheme is GradingScheme.GERMAN:
        return 1.0 <= value <= 4.0
    if scheme is GradingScheme.ECTS:
        return value <= 5.0
    if scheme is GradingScheme.US:
        return value >= 2.0
    if scheme is GradingScheme.PERCENTAGE:
        return value >= 50.0
    return value >= 1


def to_percentage(value: float, scheme: GradingScheme) -> float:
    if scheme is GradingScheme.GERMAN:
        return _clamp(100.0 - (value - 1.0) * 50.0 / 3.0, 0.0, 100.0)
    if scheme is GradingScheme.ECTS:
        return ECTSGrade.from_numeric(value).midpoint
    if scheme is GradingScheme.US:
        return value / 4.0 * 100.0
    if scheme is GradingScheme.PERCENTAGE:
        return value
    return 100.0 if value >= 1 else 0.0


def from_percentage(pct: float, scheme: GradingScheme) -> float:
    if scheme is GradingScheme.GERMAN:
        return _clamp(1.0 + (100.0 - pct) * 3.0 / 50.0, 1.0, 5.0)
    if scheme is GradingScheme.ECTS:
        return float(ECTSGrade.from_percentage(pct).numeric)
    if scheme is GradingScheme.US:
        return pct / 100.0 * 4.0
    if scheme is GradingScheme.PERCENTAGE:
        return pct
    return 1.0 if pct >= 50.0 else 0.0


def convert_grade(value: float, source: GradingScheme, target: GradingScheme) -> float:
    if source is target:
        return value
    return from_percentage(to_percentage(value, source), target)


def format_grade(value: float, scheme: GradingScheme) -> str:
    if scheme is GradingScheme.ECTS:
        return ECTSGrade.from_numeric(value).value
    if scheme is GradingScheme.PASSFAIL:
        return "passed" if value >= 1 else "failed"
    if scheme is GradingScheme.PERCENTAGE:
        return f"{value:.1f}%"
    return f"{value:.2f}"


def parse_grade_value(text: str, scheme: GradingScheme) -> float:
    """
    User input -> stored number: '1,7' (German comma), 'B' (ECTS letter),
    'pass' / 'fail' for pass/fail.
    """
    s = (text or "").strip()
    if scheme is GradingScheme.ECTS and s.upper() in "ABCDEF" and len(s) == 1:
        return float(ECTSGrade.parse(s).numeric)
    if scheme is GradingScheme.PASSFAIL and s.lower() in ("pass", "passed", "p", "fail", "failed", "f"):
        return 1.0 if s.lower().startswith("p") else 0.0
    try:
        value = float(s.replace(",", "."))
    except ValueError:
        raise ValidationError(f"Invalid grade {text!r}") from None
    if not is_valid_grade(value, scheme):
        raise ValidationError(f"Grade {value} is out of range for {scheme.label}")
    return value


def calculate_weighted_average(items: Iterable[tuple[float, float]]) -> Optional[float]:
    """
    Weighted mean of (value, weight) pairs; None when there is nothing to
    average or the weights sum to zero.
    """
    total = 0.0
    total_weight = 0.0
    for value, weight in items:
        total += value * weight
        total_weight += weight
    if total_weight == 0:
        return None
    return total / total_weight


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@dataclass
class GradeComponentInput:
    name: str
    weight: float = 0.0
    points_earned: Optional[float] = None
    points_total: Optional[float] = None
    grade: Optional[float] = None
    is_bonus: bool = False
    bonus_points: Optional[float] = None

    def percentage(self, scheme: GradingScheme) -> Optional[float]:
        if self.grade is not None:
            return to_percentage(self.grade, scheme)
        if self.points_earned is not None and self.points_total:
            return self.points_earned / self.points_total * 100.0
        return None

    def validate(self) -> None:
        if not (self.name or "").strip():
            raise ValidationError("Grade component needs a name")
        if self.weight < 0:
            raise ValidationError(f"Component {self.name!r}: weight must not be negative")
        if self.points_total is not None and self.points_total < 0:
            raise ValidationError(f"Component {self.name!r}: points_total must not be negative")
        if self.is_bonus:
            return
        if self.grade is None and not (self.points_earned is not None and self.points_total):
            raise ValidationError(f"Component {self.name!r} needs a grade or points_earned/points_total > 0")

    @classmethod
    def from_model(cls, comp: GradeComponent) -> "GradeComponentInput":
        return cls(
            name=comp.component_name,
            weight=comp.weight,
            points_earned=comp.points_earned,
            points_total=comp.points_total,
            grade=comp.grade,
            is_bonus=comp.is_bonus,
            bonus_points=comp.bonus_points,
        )


def parse_component_spec(text: str) -> GradeComponentInput:
    """
    CLI form:  NAME:WEIGHT:EARNED/TOTAL  or  NAME:WEIGHT:GRADE  or  NAME:bonus:POINTS
    e.g. 'Midterm:0.4:85/100', 'Project:0.5:1.3', 'Quiz:bonus:5'
    """
    parts = (text or "").split(":")
    if len(parts) != 3:
        raise ValidationError(f"Invalid component {text!r}: use NAME:WEIGHT:EARNED/TOTAL or NAME:WEIGHT:GRADE")
    name, weight_s, value_s = (p.strip() for p in parts)
    try:
        if weight_s.lower() == "bonus":
            return GradeComponentInput(name=name, weight=0.0, is_bonus=True, bonus_points=float(value_s))
        weight = float(weight_s)
        if "/" in value_s:
            earned, total = value_s.split("/", 1)
            return GradeComponentInput(name=name, weight=weight, points_earned=float(earned), points_total=float(total))
        return GradeComponentInput(name=name, weight=weight, grade=float(value_s.replace(",", ".")))
    except ValueError:
        raise ValidationError(f"Invalid component {text!r}: numbers expected") from None


def compute_component_grade(components: list[GradeComponentInput], scheme: GradingScheme) -> float:
    """Final grade in `scheme` from weighted components plus bonus points."""
    for comp in components:
        comp.validate()

    weighted = [(comp.percentage(scheme), comp.weight) for comp in components if not comp.is_bonus]
    pct = calculate_weighted_average((p, w) for p, w in weighted if p is not None)
    if pct is None:
        raise ValidationError("Grade components have no weight; cannot compute a grade")

    bonus = sum(comp.bonus_points or 0.0 for comp in components if comp.is_bonus)
    pct = min(100.0, pct + bonus)
    return from_percentage(pct, scheme)


# ---------------------------------------------------------------------------
# Grade records
# ---------------------------------------------------------------------------


def _load_components(con: sqlite3.Connection, grade_id: int) -> list[GradeComponent]:
    rows = query(con, "SELECT * FROM grade_components WHERE grade_id = ? ORDER BY id", (grade_id,))
    return [GradeComponent.from_row(r) for r in rows]


def _insert_component(con: sqlite3.Connection, grade_id: int, comp: GradeComponentInput) -> int:
    cur = con.execute(
        """
        INSERT INTO grade_components (grade_id, component_name, weight, points_earned, points_total,
                                      grade, is_bonus, bonus_points)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            grade_id,
            comp.name.strip(),
            0.0 if comp.is_bonus else comp.weight,
            comp.points_earned,
            comp.points_total,
            comp.grade,
            int(comp.is_bonus),
            comp.bonus_points,
        ),
    )
    return cur.lastrowid


def get_grade_by_id(con: sqlite3.Connection, grade_id: int) -> Grade:
    row = query_one(con, "SELECT * FROM grades WHERE id = ?", (grade_id,))
    if row is None:
        raise NotFoundError("Grade", grade_id)
    grade = Grade.from_row(row)
    grade.components = _load_components(con, grade_id)
    return grade


def record_grade(
    con: sqlite3.Connection,
    course_id: int,
    grade: Optional[float] = None,
    scheme: GradingScheme = GradingScheme.GERMAN,
    components: Optional[list[GradeComponentInput]] = None,
    is_final: bool = True,
    attempt_number: Optional[int] = None,
    exam_date: Optional[date] = None,
    original_grade: Optional[float] = None,
    original_scheme: Optional[GradingScheme] = None,
    notes: Optional[str] = None,
) -> Grade:
    """
    Store a grade (and its components) for a course in one transaction.

    With components the grade is computed from them; a new final grade
    supersedes earlier final grades of the same course.
    """
    if query_one(con, "SELECT id FROM courses WHERE id = ?", (course_id,)) is None:
        raise NotFoundError("Course", course_id)

    components = list(components or [])
    if components:
        grade = compute_component_grade(components, scheme)
    if grade is None:
        raise ValidationError("Either a grade or grade components are required")
    if not is_valid_grade(grade, scheme):
        raise ValidationError(f"Grade {grade} is out of range for {scheme.label}")
    if original_grade is not None and original_scheme is not None and not is_valid_grade(original_grade, original_scheme):
        raise ValidationError(f"Original grade {original_grade} is out of range for {original_scheme.label}")

    if attempt_number is None:
        row = query_one(con, "SELECT MAX(attempt_number) AS n FROM grades WHERE course_id = ?", (course_id,))
        attempt_number = (row["n"] or 0) + 1
    elif attempt_number < 1:
        raise ValidationError("Attempt number must be at least 1")

    with transaction(con):
        if is_final:
            con.execute("UPDATE grades SET is_final = 0 WHERE course_id = ? AND is_final = 1", (course_id,))
        cur = con.execute(
            """
            INSERT INTO grades (course_id, grade, grading_scheme, original_grade, original_scheme,
                                is_final, passed, attempt_number, exam_date, notes, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                course_id,
                grade,
                scheme.value,
                original_grade,
                original_scheme.value if original_scheme else None,
                int(is_final),
                int(is_passing(grade, scheme)),
                attempt_number,
                exam_date.isoformat() if exam_date else None,
                notes,
                utc_now(),
            ),
        )
        grade_id = cur.lastrowid
        for comp in components:
            _insert_component(con, grade_id, comp)

    logger.debug("Recorded grade %.2f (%s) for course %s", grade, scheme.value, course_id)
    return get_grade_by_id(con, grade_id)


def list_grades_by_course(con: sqlite3.Connection, course_id: int) -> list[Grade]:
    rows = query(con, "SELECT * FROM grades WHERE course_id = ? ORDER BY attempt_number, id", (course_id,))
    grades = [Grade.from_row(r) for r in rows]
    for g in grades:
        g.components = _load_components(con, g.id)
    return grades


def get_final_grade(con: sqlite3.Connection, course_id: int) -> Optional[Grade]:
    row = query_one(
        con,
        "SELECT id FROM grades WHERE course_id = ? AND is_final = 1 ORDER BY attempt_number DESC, id DESC LIMIT 1",
        (course_id,),
    )
    return get_grade_by_id(con, row["id"]) if row else None


def list_final_grades(con: sqlite3.Connection) -> list[Grade]:
    rows = query(con, "SELECT * FROM grades WHERE is_final = 1 ORDER BY course_id")
    return [Grade.from_row(r) for r in rows]


def list_passing_grades(con: sqlite3.Connection) -> list[Grade]:
    rows = query(con, "SELECT * FROM grades WHERE is_final = 1 AND passed = 1 ORDER BY course_id")
    return [Grade.from_row(r) for r in rows]


def update_grade(
    con: sqlite3.Connection,
    grade_id: int,
    grade: Optional[float] = None,
    scheme: Optional[GradingScheme] = None,
    is_final: Optional[bool] = None,
    exam_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> Grade:
    current = get_grade_by_id(con, grade_id)
    new_scheme = scheme or current.grading_scheme
    new_value = grade if grade is not None else current.grade
    if grade is None and scheme is not None and scheme is not current.grading_scheme:
        new_value = convert_grade(current.grade, current.grading_scheme, scheme)
    if not is_valid_grade(new_value, new_scheme):
        raise ValidationError(f"Grade {new_value} is out of range for {new_scheme.label}")

    values: dict[str, object] = {
        "grade": new_value,
        "grading_scheme": new_scheme.value,
        "passed": int(is_passing(new_value, new_scheme)),
    }
    if exam_date is not None:
        values["exam_date"] = exam_date.isoformat()
    if notes is not None:
        values["notes"] = notes

    with transaction(con):
        if is_final:
            con.execute(
                "UPDATE grades SET is_final = 0 WHERE course_id = ? AND id <> ?", (current.course_id, grade_id)
            )
        if is_final is not None:
            values["is_final"] = int(is_final)
        update_row(con, "grades", grade_id, values, touch=False)
    return get_grade_by_id(con, grade_id)


def delete_grade(con: sqlite3.Connection, grade_id: int) -> None:
    get_grade_by_id(con, grade_id)
    with transaction(con):
        con.execute("DELETE FROM grades WHERE id = ?", (grade_id,))


def list_grade_components(con: sqlite3.Connection, grade_id: int) -> list[GradeComponent]:
    get_grade_by_id(con, grade_id)
    return _load_components(con, grade_id)


def _recompute_from_components(con: sqlite3.Connection, grade_id: int) -> None:
    """Re-derive grade and passed from the stored components (inside a transaction)."""
    grade = Grade.from_row(con.execute("SELECT * FROM grades WHERE id = ?", (grade_id,)).fetchone())
    comps = [GradeComponentInput.from_model(c) for c in _load_components(con, grade_id)]
    if not any(not c.is_bonus for c in comps):
        return
    value = compute_component_grade(comps, grade.grading_scheme)
    con.execute(
        "UPDATE grades SET grade = ?, passed = ? WHERE id = ?",
        (value, int(is_passing(value, grade.grading_scheme)), grade_id),
    )


def add_grade_component(con: sqlite3.Connection, grade_id: int, component: GradeComponentInput) -> Grade:
    component.validate()
    get_grade_by_id(con, grade_id)
    with transaction(con):
        _insert_component(con, grade_id, component)
        _recompute_from_components(con, grade_id)
    return get_grade_by_id(con, grade_id)


def delete_grade_component(con: sqlite3.Connection, component_id: int) -> Grade:
    row = query_one(con, "SELECT grade_id FROM grade_components WHERE id = ?", (component_id,))
    if row is None:
        raise NotFoundError("Grade component", component_id)
    with transaction(con):
        con.execute("DELETE FROM grade_components WHERE id = ?", (component_id,))
        _recompute_from_components(con, row["grade_id"])
    return get_grade_by_id(con, row["grade_id"])


# ---------------------------------------------------------------------------
# GPA
# ---------------------------------------------------------------------------


@dataclass
class GPAInfo:
    gpa: Optional[float]
    total_courses: int
    total_ects: int
    grading_scheme: GradingScheme


GPA_SCOPES = ("overall", "semester", "degree", "area")


def calculate_gpa(
    con: sqlite3.Connection,
    scope: str = "overall",
    scope_id: Optional[int] = None,
    include_non_gpa: bool = False,
    scheme: GradingScheme = GradingScheme.GERMAN,
) -> GPAInfo:
    """
    ECTS-weighted mean of final, passing grades converted to `scheme`.

    By default only courses mapped into a degree area that counts towards the
    GPA contribute; include_non_gpa lifts that restriction. For degree and
    area scopes the mapping's ects_override replaces the course ECTS.
    Pass/fail grades count towards total_ects but not towards the mean.
    """
    if scope not in GPA_SCOPES:
        raise ValidationError(f"Unknown GPA scope {scope!r} (expected one of {', '.join(GPA_SCOPES)})")
    if scope != "overall" and scope_id is None:
        raise ValidationError(f"GPA scope {scope!r} needs an id")

    params: list[object] = []
    if scope in ("degree", "area"):
        key = "m.degree_id" if scope == "degree" else "m.area_id"
        sql = f"""
            SELECT g.grade, g.grading_scheme, COALESCE(m.ects_override, c.ects) AS ects, c.id AS course_id
            FROM grades g
            JOIN courses c ON c.id = g.course_id
            JOIN course_degree_mappings m ON m.course_id = c.id
            JOIN degree_areas da ON da.id = m.area_id
            WHERE g.is_final = 1 AND g.passed = 1 AND {key} = ?
        """
        params.append(scope_id)
        if not include_non_gpa:
            sql += " AND da.counts_towards_gpa = 1"
    else:
        sql = """
            SELECT g.grade, g.grading_scheme, c.ects AS ects, c.id AS course_id
            FROM grades g
            JOIN courses c ON c.id = g.course_id
            WHERE g.is_final = 1 AND g.passed = 1
        """
        if scope == "semester":
            sql += " AND c.semester_id = ?"
            params.append(scope_id)
        if not include_non_gpa:
            sql += """
              AND EXISTS (
                SELECT 1 FROM course_degree_mappings m
                JOIN degree_areas da ON da.id = m.area_id
                WHERE m.course_id = c.id AND da.counts_towards_gpa = 1
              )
            """

    rows = query(con, sql, tuple(params))
    seen: set[int] = set()
    pairs: list[tuple[float, float]] = []
    total_ects = 0
    for r in rows:
        # one course mapped into two areas of the same degree counts once
        if r["course_id"] in seen:
            continue
        seen.add(r["course_id"])
        total_ects += r["ects"]
        source = GradingScheme.parse(r["grading_scheme"])
        if source is GradingScheme.PASSFAIL:
            continue
        pairs.append((convert_grade(r["grade"], source, scheme), r["ects"]))

    return GPAInfo(
        gpa=calculate_weighted_average(pairs),
        total_courses=len(seen),
        total_ects=total_ects,
        grading_scheme=scheme,
    )
