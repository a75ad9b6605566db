"""
Descriptor files.

Each semester directory carries a `.semester.toml`, each course directory a
`.course.toml`. They are a human-editable projection of the database row and
are rewritten after every create/update:

    # b3/.semester.toml
    type = "bachelor"
    number = 3
    start_date = 2024-10-14
    is_current = true
    is_archived = false

    # b3/algo/.course.toml
    short_name = "algo"
    name = "Algorithms"
    ects = 6
    is_external = false
    is_dropped = false
    has_git_repo = false
    exam_room = "A 104"        # unknown keys are preserved as-is

Optional fields are omitted instead of written as empty values (TOML has no
null). Reading uses tomllib, writing tomli_w.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

import tomli_w

from mms.errors import CorruptedDescriptorError, FilesystemError, ValidationError
from mms.model import Course, Semester, SemesterType
from mms.paths import COURSE_DESCRIPTOR, SEMESTER_DESCRIPTOR

logger = logging.getLogger(__name__)


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise FilesystemError(f"Failed to read descriptor ({e.strerror})", path) from e
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise CorruptedDescriptorError(path, str(e)) from e


def _write_toml(path: Path, data: dict[str, Any]) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tomli_w.dumps(data), encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Failed to write descriptor ({e.strerror})", path) from e
    logger.debug("Wrote descriptor %s", path)
    return path


# ---------------------------------------------------------------------------
# Semester
# ---------------------------------------------------------------------------


@dataclass
class SemesterDescriptor:
    type: SemesterType
    number: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    university: Optional[str] = None
    location: Optional[str] = None
    is_current: bool = False
    is_archived: bool = False

    @property
    def code(self) -> str:
        return f"{self.type.prefix}{self.number}"

    @classmethod
    def from_semester(cls, semester: Semester) -> "SemesterDescriptor":
        return cls(
            type=semester.type,
            number=semester.number,
            start_date=semester.start_date,
            end_date=semester.end_date,
            university=semester.university,
            location=semester.default_location,
            is_current=semester.is_current,
            is_archived=semester.is_archived,
        )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "type": self.type.value,
                "number": self.number,
                "start_date": self.start_date,
                "end_date": self.end_date,
                "university": self.university,
                "location": self.location,
                "is_current": self.is_current,
                "is_archived": self.is_archived,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SemesterDescriptor":
        return cls(
            type=SemesterType.parse(data["type"]),
            number=int(data["number"]),
            start_date=_as_date(data.get("start_date")),
            end_date=_as_date(data.get("end_date")),
            university=data.get("university"),
            location=data.get("location"),
            is_current=bool(data.get("is_current", False)),
            is_archived=bool(data.get("is_archived", False)),
        )


def write_semester_descriptor(directory: str | Path, descriptor: SemesterDescriptor) -> Path:
    return _write_toml(Path(directory) / SEMESTER_DESCRIPTOR, descriptor.to_dict())


def read_semester_descriptor(directory: str | Path) -> SemesterDescriptor:
    path = Path(directory) / SEMESTER_DESCRIPTOR
    data = _read_toml(path)
    try:
        return SemesterDescriptor.from_dict(data)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise CorruptedDescriptorError(path, f"bad or missing field: {e}") from e


# ---------------------------------------------------------------------------
# Course
# ---------------------------------------------------------------------------

COURSE_FIELDS = (
    "short_name",
    "name",
    "ects",
    "lecturer",
    "lecturer_email",
    "tutor",
    "tutor_email",
    "learning_platform_url",
    "university",
    "location",
    "is_external",
    "original_path",
    "is_dropped",
    "has_git_repo",
    "git_remote_url",
)


@dataclass
class CourseDescriptor:
    short_name: str
    name: str
    ects: int
    lecturer: Optional[str] = None
    lecturer_email: Optional[str] = None
    tutor: Optional[str] = None
    tutor_email: Optional[str] = None
    learning_platform_url: Optional[str] = None
    university: Optional[str] = None
    location: Optional[str] = None
    is_external: bool = False
    original_path: Optional[str] = None
    is_dropped: bool = False
    has_git_repo: bool = False
    git_remote_url: Optional[str] = None
    # keys we do not know about, written back unchanged
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_course(cls, course: Course, extra: Optional[dict[str, Any]] = None) -> "CourseDescriptor":
        return cls(
            short_name=course.short_name,
            name=course.name,
            ects=course.ects,
            lecturer=course.lecturer,
            lecturer_email=course.lecturer_email,
            tutor=course.tutor,
            tutor_email=course.tutor_email,
            learning_platform_url=course.learning_platform_url,
            university=course.university,
            location=course.location,
            is_external=course.is_external,
            original_path=str(course.original_path) if course.original_path else None,
            is_dropped=course.is_dropped,
            has_git_repo=course.has_git_repo,
            git_remote_url=course.git_remote_url,
            extra=dict(extra or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in COURSE_FIELDS}
        out = _drop_none(data)
        for key, value in self.extra.items():
            if key not in out and value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CourseDescriptor":
        known = {k: data[k] for k in COURSE_FIELDS if k in data}
        extra = {k: v for k, v in data.items() if k not in COURSE_FIELDS}
        return cls(
            short_name=str(known["short_name"]),
            name=str(known["name"]),
            ects=int(known["ects"]),
            lecturer=known.get("lecturer"),
            lecturer_email=known.get("lecturer_email"),
            tutor=known.get("tutor"),
            tutor_email=known.get("tutor_email"),
            learning_platform_url=known.get("learning_platform_url"),
            university=known.get("university"),
            location=known.get("location"),
            is_external=bool(known.get("is_external", False)),
            original_path=known.get("original_path"),
            is_dropped=bool(known.get("is_dropped", False)),
            has_git_repo=bool(known.get("has_git_repo", False)),
            git_remote_url=known.get("git_remote_url"),
            extra=extra,
        )


def write_course_descriptor(directory: str | Path, descriptor: CourseDescriptor) -> Path:
    return _write_toml(Path(directory) / COURSE_DESCRIPTOR, descriptor.to_dict())


def read_course_descriptor(path: str | Path) -> CourseDescriptor:
    """Read a .course.toml; `path` may be the file or its directory."""
    p = Path(path)
    if p.is_dir():
        p = p / COURSE_DESCRIPTOR
    data = _read_toml(p)
    try:
        return CourseDescriptor.from_dict(data)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise CorruptedDescriptorError(p, f"bad or missing field: {e}") from e
