"""
Degrees, their areas and the mapping of courses into areas.

A degree (e.g. "M.Sc. Machine Learning") is split into areas ("ML_FOUND",
"ML_DIV", ...), each with an ECTS requirement and a flag saying whether its
grades count towards the GPA. A course is mapped into one or more areas; the
mapping may override the ECTS the course contributes there.

Progress comes from the view v_degree_progress (one row per area); the
overall GPA is the ECTS-weighted mean of the area GPAs of counting areas.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from mms.db import query, query_one, transaction, update_row, utc_now
from mms.errors import NotFoundError, ValidationError
from mms.model import Course, CourseDegreeMapping, Degree, DegreeArea, DegreeType
from mms.validation import validate_date_range

logger = logging.getLogger(__name__)

DEGREE_FIELDS = ("name", "university", "total_ects_required", "start_date", "expected_end_date", "is_active")
AREA_FIELDS = ("category_name", "required_ects", "counts_towards_gpa", "display_order")


def validate_degree_ects(degree_type: DegreeType, total_ects: int) -> int:
    low, high = degree_type.ects_bounds
    try:
        total_ects = int(total_ects)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid ECTS value {total_ects!r}") from None
    if degree_type is DegreeType.PHD:
        if total_ects != 0:
            raise ValidationError("A PhD has no ECTS requirement (use 0)")
        return 0
    if not low <= total_ects <= high:
        raise ValidationError(f"{degree_type.value.capitalize()} ECTS must be between {low} and {high}, got {total_ects}")
    return total_ects


@dataclass
class AreaInput:
    category_name: str
    required_ects: int
    counts_towards_gpa: bool = True

    def validate(self) -> None:
        if not (self.category_name or "").strip():
            raise ValidationError("Area name must not be empty")
        if int(self.required_ects) <= 0:
            raise ValidationError(f"Area {self.category_name!r}: required ECTS must be positive")


# ---------------------------------------------------------------------------
# Degrees
# ---------------------------------------------------------------------------


def get_degree_by_id(con: sqlite3.Connection, degree_id: int) -> Degree:
    row = query_one(con, "SELECT * FROM degrees WHERE id = ?", (degree_id,))
    if row is None:
        raise NotFoundError("Degree", degree_id)
    return Degree.from_row(row)


def list_degrees(con: sqlite3.Connection, include_inactive: bool = True) -> list[Degree]:
    sql = "SELECT * FROM degrees"
    if not include_inactive:
        sql += " WHERE is_active = 1"
    sql += " ORDER BY is_active DESC, start_date, id"
    return [Degree.from_row(r) for r in query(con, sql)]


def _insert_area(con: sqlite3.Connection, degree_id: int, area: AreaInput, order: int) -> int:
    try:
        cur = con.execute(
            """
            INSERT INTO degree_areas (degree_id, category_name, required_ects, counts_towards_gpa, display_order)
            VALUES (?, ?, ?, ?, ?)
            """,
            (degree_id, area.category_name.strip(), int(area.required_ects), int(area.counts_towards_gpa), order),
        )
    except sqlite3.IntegrityError:
        raise ValidationError(f"Area {area.category_name!r} already exists in this degree") from None
    return cur.lastrowid


def create_degree(
    con: sqlite3.Connection,
    degree_type: DegreeType | str,
    name: str,
    university: str,
    total_ects: Optional[int] = None,
    start_date: Optional[date] = None,
    expected_end_date: Optional[date] = None,
    is_active: bool = True,
    areas: Iterable[AreaInput] = (),
) -> Degree:
    """Create a degree together with its areas (one transaction)."""
    if not isinstance(degree_type, DegreeType):
        degree_type = DegreeType.parse(degree_type)
    name = (name or "").strip()
    university = (university or "").strip()
    if not name:
        raise ValidationError("Degree name must not be empty")
    if not university:
        raise ValidationError("University must not be empty")
    total = validate_degree_ects(degree_type, degree_type.default_ects if total_ects is None else total_ects)
    validate_date_range(start_date, expected_end_date, strict=True)
    areas = list(areas)
    for area in areas:
        area.validate()

    now = utc_now()
    with transaction(con):
        try:
            cur = con.execute(
                """
                INSERT INTO degrees (type, name, university, total_ects_required, start_date, expected_end_date,
                                     is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    degree_type.value,
                    name,
                    university,
                    total,
                    start_date.isoformat() if start_date else None,
                    expected_end_date.isoformat() if expected_end_date else None,
                    int(is_active),
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError:
            raise ValidationError(f"Degree {name!r} at {university} already exists") from None
        degree_id = cur.lastrowid
        for order, area in enumerate(areas):
            _insert_area(con, degree_id, area, order)

    logger.debug("Created degree %s with %d area(s)", name, len(areas))
    return get_degree_by_id(con, degree_id)


def update_degree(con: sqlite3.Connection, degree_id: int, **changes: Any) -> Degree:
    unknown = set(changes) - set(DEGREE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update degree field(s): {', '.join(sorted(unknown))}")

    degree = get_degree_by_id(con, degree_id)
    if "total_ects_required" in changes:
        changes["total_ects_required"] = validate_degree_ects(degree.type, changes["total_ects_required"])
    validate_date_range(
        changes.get("start_date", degree.start_date),
        changes.get("expected_end_date", degree.expected_end_date),
        strict=True,
    )
    values = {
        k: (v.isoformat() if isinstance(v, date) else int(v) if isinstance(v, bool) else v)
        for k, v in changes.items()
    }
    with transaction(con):
        update_row(con, "degrees", degree_id, values)
    return get_degree_by_id(con, degree_id)


def delete_degree(con: sqlite3.Connection, degree_id: int) -> Degree:
    """Delete a degree; its areas and course mappings cascade."""
    degree = get_degree_by_id(con, degree_id)
    with transaction(con):
        con.execute("DELETE FROM degrees WHERE id = ?", (degree_id,))
    return degree


# ---------------------------------------------------------------------------
# Areas
# ---------------------------------------------------------------------------


def get_degree_area(con: sqlite3.Connection, area_id: int) -> DegreeArea:
    row = query_one(con, "SELECT * FROM degree_areas WHERE id = ?", (area_id,))
    if row is None:
        raise NotFoundError("Degree area", area_id)
    return DegreeArea.from_row(row)


def find_degree_area(con: sqlite3.Connection, degree_id: int, ref: str | int) -> DegreeArea:
    """Area by id or (case-insensitive) category name within a degree."""
    text = str(ref).strip()
    if text.isdigit():
        area = get_degree_area(con, int(text))
        if area.degree_id != degree_id:
            raise NotFoundError("Degree area", text)
        return area
    row = query_one(
        con,
        "SELECT * FROM degree_areas WHERE degree_id = ? AND lower(category_name) = lower(?)",
        (degree_id, text),
    )
    if row is None:
        raise NotFoundError("Degree area", text)
    return DegreeArea.from_row(row)


def list_degree_areas(con: sqlite3.Connection, degree_id: int) -> list[DegreeArea]:
    rows = query(con, "SELECT * FROM degree_areas WHERE degree_id = ? ORDER BY display_order, id", (degree_id,))
    return [DegreeArea.from_row(r) for r in rows]


def add_degree_area(
    con: sqlite3.Connection,
    degree_id: int,
    category_name: str,
    required_ects: int,
    counts_towards_gpa: bool = True,
) -> DegreeArea:
    area = AreaInput(category_name, required_ects, counts_towards_gpa)
    area.validate()
    get_degree_by_id(con, degree_id)
    with transaction(con):
        row = con.execute(
            "SELECT COALESCE(MAX(display_order) + 1, 0) AS n FROM degree_areas WHERE degree_id = ?", (degree_id,)
        ).fetchone()
        area_id = _insert_area(con, degree_id, area, row["n"])
    return get_degree_area(con, area_id)


def update_degree_area(con: sqlite3.Connection, area_id: int, **changes: Any) -> DegreeArea:
    unknown = set(changes) - set(AREA_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update area field(s): {', '.join(sorted(unknown))}")
    current = get_degree_area(con, area_id)
    AreaInput(
        changes.get("category_name", current.category_name),
        changes.get("required_ects", current.required_ects),
    ).validate()
    values = {k: int(v) if isinstance(v, bool) else v for k, v in changes.items()}
    with transaction(con):
        update_row(con, "degree_areas", area_id, values, touch=False)
    return get_degree_area(con, area_id)


def delete_degree_area(con: sqlite3.Connection, area_id: int) -> DegreeArea:
    area = get_degree_area(con, area_id)
    with transaction(con):
        con.execute("DELETE FROM degree_areas WHERE id = ?", (area_id,))
    return area


# ---------------------------------------------------------------------------
# Course mappings
# ---------------------------------------------------------------------------


def map_course_to_area(
    con: sqlite3.Connection, course_id: int, area_id: int, ects_override: Optional[int] = None
) -> CourseDegreeMapping:
    area = get_degree_area(con, area_id)
    if query_one(con, "SELECT id FROM courses WHERE id = ?", (course_id,)) is None:
        raise NotFoundError("Course", course_id)
    if ects_override is not None and int(ects_override) <= 0:
        raise ValidationError("ECTS override must be positive")

    with transaction(con):
        try:
            cur = con.execute(
                """
                INSERT INTO course_degree_mappings (course_id, degree_id, area_id, ects_override, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (course_id, area.degree_id, area_id, ects_override, utc_now()),
            )
        except sqlite3.IntegrityError:
            raise ValidationError(f"Course {course_id} is already mapped to {area.category_name}") from None
    row = query_one(con, "SELECT * FROM course_degree_mappings WHERE id = ?", (cur.lastrowid,))
    return CourseDegreeMapping.from_row(row)


def unmap_course_from_area(con: sqlite3.Connection, course_id: int, area_id: int) -> None:
    with transaction(con):
        cur = con.execute(
            "DELETE FROM course_degree_mappings WHERE course_id = ? AND area_id = ?", (course_id, area_id)
        )
    if cur.rowcount == 0:
        raise NotFoundError("Course mapping", f"course {course_id}, area {area_id}")


def list_course_mappings(con: sqlite3.Connection, course_id: int) -> list[CourseDegreeMapping]:
    rows = query(con, "SELECT * FROM course_degree_mappings WHERE course_id = ? ORDER BY id", (course_id,))
    return [CourseDegreeMapping.from_row(r) for r in rows]


def get_unmapped_courses(con: sqlite3.Connection) -> list[Course]:
    rows = query(con, "SELECT * FROM v_unmapped_courses ORDER BY semester_id, short_name")
    return [Course.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass
class AreaProgress:
    area_id: int
    category_name: str
    required_ects: int
    earned_ects: int
    area_gpa: Optional[float]
    counts_towards_gpa: bool

    @property
    def remaining_ects(self) -> int:
        return max(0, self.required_ects - self.earned_ects)

    @property
    def percent_complete(self) -> float:
        if self.required_ects <= 0:
            return 100.0
        return min(100.0, self.earned_ects / self.required_ects * 100.0)


@dataclass
class DegreeProgress:
    degree: Degree
    areas: list[AreaProgress] = field(default_factory=list)
    overall_gpa: Optional[float] = None

    @property
    def total_required(self) -> int:
        return self.degree.total_ects_required

    @property
    def total_earned(self) -> int:
        return sum(a.earned_ects for a in self.areas)

    @property
    def percent_complete(self) -> float:
        if self.total_required <= 0:
            return 100.0
        return min(100.0, self.total_earned / self.total_required * 100.0)


def get_degree_progress(con: sqlite3.Connection, degree_id: int) -> DegreeProgress:
    degree = get_degree_by_id(con, degree_id)
    rows = query(con, "SELECT * FROM v_degree_progress WHERE degree_id = ?", (degree_id,))
    areas = [
        AreaProgress(
            area_id=r["area_id"],
            category_name=r["category_name"],
            required_ects=r["required_ects"],
            earned_ects=int(r["earned_ects"] or 0),
            area_gpa=r["area_gpa"],
            counts_towards_gpa=bool(r["counts_towards_gpa"]),
        )
        for r in rows
    ]

    total = 0.0
    weight = 0
    for a in areas:
        if a.counts_towards_gpa and a.area_gpa is not None and a.earned_ects > 0:
            total += a.area_gpa * a.earned_ects
            weight += a.earned_ects
    return DegreeProgress(degree=degree, areas=areas, overall_gpa=total / weight if weight else None)
