"""
Central data model definitions used across the project.

Two kinds of things live here:

- closed variants (SemesterType, DegreeType, ScheduleType, EventType,
  GradingScheme, ECTSGrade). Each parses a small set of case-insensitive
  aliases and stores/display a canonical lowercase value.
- one dataclass per database entity, with from_row() to build it from a
  sqlite3.Row so every module shares the same field names.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from mms.errors import ValidationError


def _norm(text: str) -> str:
    return str(text).strip().lower().replace("-", "_").replace(" ", "_")


def _opt_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _opt_path(value: Any) -> Optional[Path]:
    return Path(value) if value else None


# ---------------------------------------------------------------------------
# Closed variants
# ---------------------------------------------------------------------------


class SemesterType(str, Enum):
    BACHELOR = "bachelor"
    MASTER = "master"

    @classmethod
    def parse(cls, text: str) -> "SemesterType":
        value = _norm(text)
        if value in ("bachelor", "b", "ba", "bsc"):
            return cls.BACHELOR
        if value in ("master", "m", "ma", "msc"):
            return cls.MASTER
        raise ValidationError(f"Invalid semester type: {text!r} (expected bachelor or master)")

    @classmethod
    def from_prefix(cls, prefix: str) -> "SemesterType":
        return cls.BACHELOR if prefix == "b" else cls.MASTER

    @property
    def prefix(self) -> str:
        return self.value[0]

    def __str__(self) -> str:
        return self.value


class DegreeType(str, Enum):
    BACHELOR = "bachelor"
    MASTER = "master"
    PHD = "phd"

    @classmethod
    def parse(cls, text: str) -> "DegreeType":
        value = _norm(text)
        if value in ("bachelor", "b", "ba", "bsc"):
            return cls.BACHELOR
        if value in ("master", "m", "ma", "msc"):
            return cls.MASTER
        if value in ("phd", "doctorate", "dr"):
            return cls.PHD
        raise ValidationError(f"Invalid degree type: {text!r} (expected bachelor, master or phd)")

    @property
    def ects_bounds(self) -> tuple[int, int]:
        if self is DegreeType.PHD:
            return (0, 0)
        if self is DegreeType.BACHELOR:
            return (90, 240)
        return (60, 120)

    @property
    def default_ects(self) -> int:
        return {DegreeType.BACHELOR: 180, DegreeType.MASTER: 120, DegreeType.PHD: 0}[self]

    def __str__(self) -> str:
        return self.value


class ScheduleType(str, Enum):
    LECTURE = "lecture"
    TUTORIUM = "tutorium"
    EXERCISE = "exercise"

    @classmethod
    def parse(cls, text: str) -> "ScheduleType":
        value = _norm(text)
        aliases = {
            "lecture": cls.LECTURE,
            "vorlesung": cls.LECTURE,
            "tutorium": cls.TUTORIUM,
            "tutorial": cls.TUTORIUM,
            "exercise": cls.EXERCISE,
            "uebung": cls.EXERCISE,
        }
        if value not in aliases:
            raise ValidationError(f"Invalid schedule type: {text!r} (expected lecture, tutorium or exercise)")
        return aliases[value]

    def __str__(self) -> str:
        return self.value


class EventType(str, Enum):
    ONE_TIME = "one_time"
    MAKEUP = "makeup"
    SPECIAL = "special"
    OVERRIDE = "override"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, text: str) -> "EventType":
        value = _norm(text)
        aliases = {
            "one_time": cls.ONE_TIME,
            "onetime": cls.ONE_TIME,
            "makeup": cls.MAKEUP,
            "make_up": cls.MAKEUP,
            "special": cls.SPECIAL,
            "override": cls.OVERRIDE,
            "room_change": cls.OVERRIDE,
            "roomchange": cls.OVERRIDE,
            "time_change": cls.OVERRIDE,
            "timechange": cls.OVERRIDE,
            "cancelled": cls.CANCELLED,
            "canceled": cls.CANCELLED,
            # legacy spelling found in older databases
            "cancellation": cls.CANCELLED,
        }
        if value not in aliases:
            raise ValidationError(f"Invalid event type: {text!r}")
        return aliases[value]

    def __str__(self) -> str:
        return self.value


class GradingScheme(str, Enum):
    GERMAN = "german"
    ECTS = "ects"
    US = "us"
    PERCENTAGE = "percentage"
    PASSFAIL = "passfail"

    @classmethod
    def parse(cls, text: str) -> "GradingScheme":
        value = str(text).strip().lower()
        aliases = {
            "german": cls.GERMAN,
            "de": cls.GERMAN,
            "ger": cls.GERMAN,
            "ects": cls.ECTS,
            "eu": cls.ECTS,
            "european": cls.ECTS,
            "us": cls.US,
            "gpa": cls.US,
            "american": cls.US,
            "percentage": cls.PERCENTAGE,
            "percent": cls.PERCENTAGE,
            "%": cls.PERCENTAGE,
            "passfail": cls.PASSFAIL,
            "pass/fail": cls.PASSFAIL,
            "pass_fail": cls.PASSFAIL,
            "pf": cls.PASSFAIL,
            "passed": cls.PASSFAIL,
        }
        if value not in aliases:
            raise ValidationError(f"Invalid grading scheme: {text!r}")
        return aliases[value]

    @property
    def label(self) -> str:
        return {
            GradingScheme.GERMAN: "German (1.0-5.0)",
            GradingScheme.ECTS: "ECTS (A-F)",
            GradingScheme.US: "US GPA (0.0-4.0)",
            GradingScheme.PERCENTAGE: "Percentage (0-100)",
            GradingScheme.PASSFAIL: "Pass/Fail",
        }[self]

    def __str__(self) -> str:
        return self.value


class ECTSGrade(str, Enum):
    """ECTS letter grades; numeric form A=1 ... F=6."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"

    @classmethod
    def parse(cls, text: str) -> "ECTSGrade":
        value = str(text).strip().upper()
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Invalid ECTS grade: {text!r}") from None

    @classmethod
    def from_numeric(cls, value: float) -> "ECTSGrade":
        if value <= 1.5:
            return cls.A
        if value <= 2.5:
            return cls.B
        if value <= 3.5:
            return cls.C
        if value <= 4.5:
            return cls.D
        if value <= 5.5:
            return cls.E
        return cls.F

    @classmethod
    def from_percentage(cls, pct: float) -> "ECTSGrade":
        if pct >= 90:
            return cls.A
        if pct >= 80:
            return cls.B
        if pct >= 70:
            return cls.C
        if pct >= 60:
            return cls.D
        if pct >= 50:
            return cls.E
        return cls.F

    @property
    def numeric(self) -> int:
        return "ABCDEF".index(self.value) + 1

    @property
    def midpoint(self) -> float:
        """Representative percentage of the band (used for the inverse map)."""
        return {"A": 95.0, "B": 85.0, "C": 75.0, "D": 65.0, "E": 55.0, "F": 40.0}[self.value]

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Semester:
    """
    One semester row. Its directory is <base>/<code>, e.g. ~/Studies/b3.
    """

    id: int
    type: SemesterType
    number: int
    directory_path: Path
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    university: Optional[str] = None
    default_location: Optional[str] = None
    is_current: bool = False
    is_archived: bool = False
    exists_on_disk: bool = True

    @property
    def code(self) -> str:
        return f"{self.type.prefix}{self.number}"

    def __str__(self) -> str:
        return f"{self.type.value.capitalize()} Semester {self.number}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Semester":
        return cls(
            id=row["id"],
            type=SemesterType.parse(row["type"]),
            number=row["number"],
            directory_path=Path(row["directory_path"]),
            start_date=_opt_date(row["start_date"]),
            end_date=_opt_date(row["end_date"]),
            university=row["university"],
            default_location=row["default_location"],
            is_current=bool(row["is_current"]),
            is_archived=bool(row["is_archived"]),
            exists_on_disk=bool(row["exists_on_disk"]),
        )


@dataclass
class Course:
    """
    One course row. short_name doubles as the directory name.
    """

    id: int
    semester_id: int
    short_name: str
    name: str
    directory_path: Path
    ects: int
    toml_path: Optional[Path] = None
    lecturer: Optional[str] = None
    lecturer_email: Optional[str] = None
    tutor: Optional[str] = None
    tutor_email: Optional[str] = None
    learning_platform_url: Optional[str] = None
    university: Optional[str] = None
    location: Optional[str] = None
    is_external: bool = False
    original_path: Optional[Path] = None
    has_git_repo: bool = False
    git_remote_url: Optional[str] = None
    is_archived: bool = False
    is_dropped: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Course":
        return cls(
            id=row["id"],
            semester_id=row["semester_id"],
            short_name=row["short_name"],
            name=row["name"],
            directory_path=Path(row["directory_path"]),
            ects=row["ects"],
            toml_path=_opt_path(row["toml_path"]),
            lecturer=row["lecturer"],
            lecturer_email=row["lecturer_email"],
            tutor=row["tutor"],
            tutor_email=row["tutor_email"],
            learning_platform_url=row["learning_platform_url"],
            university=row["university"],
            location=row["location"],
            is_external=bool(row["is_external"]),
            original_path=_opt_path(row["original_path"]),
            has_git_repo=bool(row["has_git_repo"]),
            git_remote_url=row["git_remote_url"],
            is_archived=bool(row["is_archived"]),
            is_dropped=bool(row["is_dropped"]),
        )


@dataclass
class Degree:
    id: int
    type: DegreeType
    name: str
    university: str
    total_ects_required: int
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    is_active: bool = True

    def __str__(self) -> str:
        return f"{self.type.value.capitalize()} {self.name} ({self.university})"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Degree":
        return cls(
            id=row["id"],
            type=DegreeType.parse(row["type"]),
            name=row["name"],
            university=row["university"],
            total_ects_required=row["total_ects_required"],
            start_date=_opt_date(row["start_date"]),
            expected_end_date=_opt_date(row["expected_end_date"]),
            is_active=bool(row["is_active"]),
        )


@dataclass
class DegreeArea:
    id: int
    degree_id: int
    category_name: str
    required_ects: int
    counts_towards_gpa: bool = True
    display_order: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DegreeArea":
        return cls(
            id=row["id"],
            degree_id=row["degree_id"],
            category_name=row["category_name"],
            required_ects=row["required_ects"],
            counts_towards_gpa=bool(row["counts_towards_gpa"]),
            display_order=row["display_order"],
        )


@dataclass
class CourseDegreeMapping:
    id: int
    course_id: int
    degree_id: int
    area_id: int
    ects_override: Optional[int] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CourseDegreeMapping":
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            degree_id=row["degree_id"],
            area_id=row["area_id"],
            ects_override=row["ects_override"],
        )


@dataclass
class CourseSchedule:
    """
    Weekly recurring slot. Times are kept as the stored 'HH:MM' text.
    """

    id: int
    course_id: int
    schedule_type: ScheduleType
    day_of_week: int
    start_time: str
    end_time: str
    start_date: date
    end_date: date
    room: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CourseSchedule":
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            schedule_type=ScheduleType.parse(row["schedule_type"]),
            day_of_week=row["day_of_week"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            room=row["room"],
            location=row["location"],
        )


@dataclass
class CourseEvent:
    """
    One-off deviation from the timetable on a single date.

    A cancellation without times cancels the whole day.
    """

    id: int
    course_id: int
    event_type: EventType
    date: date
    schedule_type: ScheduleType = ScheduleType.LECTURE
    schedule_id: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    room: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None

    @property
    def has_times(self) -> bool:
        return bool(self.start_time) and bool(self.end_time)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CourseEvent":
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            event_type=EventType.parse(row["event_type"]),
            date=date.fromisoformat(row["date"]),
            schedule_type=ScheduleType.parse(row["schedule_type"]),
            schedule_id=row["schedule_id"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            room=row["room"],
            location=row["location"],
            description=row["description"],
        )


@dataclass
class Holiday:
    id: int
    name: str
    start_date: date
    end_date: date
    semester_id: Optional[int] = None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Holiday":
        return cls(
            id=row["id"],
            name=row["name"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            semester_id=row["semester_id"],
        )


@dataclass
class HolidayException:
    id: int
    holiday_id: int
    course_id: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "HolidayException":
        return cls(id=row["id"], holiday_id=row["holiday_id"], course_id=row["course_id"])


@dataclass
class GradeComponent:
    id: int
    grade_id: int
    component_name: str
    weight: float
    points_earned: Optional[float] = None
    points_total: Optional[float] = None
    grade: Optional[float] = None
    is_bonus: bool = False
    bonus_points: Optional[float] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "GradeComponent":
        return cls(
            id=row["id"],
            grade_id=row["grade_id"],
            component_name=row["component_name"],
            weight=row["weight"],
            points_earned=row["points_earned"],
            points_total=row["points_total"],
            grade=row["grade"],
            is_bonus=bool(row["is_bonus"]),
            bonus_points=row["bonus_points"],
        )


@dataclass
class Grade:
    id: int
    course_id: int
    grade: float
    grading_scheme: GradingScheme
    passed: bool
    is_final: bool = True
    attempt_number: int = 1
    original_grade: Optional[float] = None
    original_scheme: Optional[GradingScheme] = None
    exam_date: Optional[date] = None
    notes: Optional[str] = None
    recorded_at: Optional[str] = None
    components: list[GradeComponent] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Grade":
        original_scheme = row["original_scheme"]
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            grade=row["grade"],
            grading_scheme=GradingScheme.parse(row["grading_scheme"]),
            passed=bool(row["passed"]),
            is_final=bool(row["is_final"]),
            attempt_number=row["attempt_number"],
            original_grade=row["original_grade"],
            original_scheme=GradingScheme.parse(original_scheme) if original_scheme else None,
            exam_date=_opt_date(row["exam_date"]),
            notes=row["notes"],
            recorded_at=row["recorded_at"],
        )


@dataclass
class ActivePointer:
    """The singleton row (id = 1) naming the current semester and course."""

    semester_id: Optional[int] = None
    course_id: Optional[int] = None
    lecture_id: Optional[int] = None
    activated_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ActivePointer":
        return cls(
            semester_id=row["semester_id"],
            course_id=row["course_id"],
            lecture_id=row["lecture_id"],
            activated_at=row["activated_at"],
            updated_at=row["updated_at"],
        )
