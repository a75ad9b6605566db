"""
Course lifecycle.

A regular course lives in <semester dir>/<short_name> and carries a
`.course.toml`. External courses (taken at another university, kept
elsewhere on disk) may point at an existing `original_path`; in that case mms
neither creates nor deletes their directory. The rule is:

    create directory + descriptor  iff  not is_external or original_path is None

Renaming a course (changing short_name) renames its directory; if the
database update fails afterwards, the rename is undone.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from pathlib import Path
from typing import Any, Optional

from mms.config import Config
from mms.db import query, query_one, transaction, update_row, utc_now
from mms.descriptors import CourseDescriptor, read_course_descriptor, write_course_descriptor
from mms.errors import CorruptedDescriptorError, FilesystemError, NotFoundError, ValidationError
from mms.model import Course
from mms.paths import COURSE_DESCRIPTOR, expand_path
from mms.semester import get_current_semester, get_semester_by_id
from mms.validation import validate_course_code, validate_ects

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS = (
    "lecturer",
    "lecturer_email",
    "tutor",
    "tutor_email",
    "learning_platform_url",
    "university",
    "location",
    "git_remote_url",
)

FLAG_FIELDS = ("is_external", "has_git_repo", "is_archived", "is_dropped")

UPDATABLE_FIELDS = ("short_name", "name", "ects", "original_path") + OPTIONAL_FIELDS + FLAG_FIELDS


def _owns_directory(is_external: bool, original_path: Optional[Path]) -> bool:
    return not is_external or original_path is None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_course_by_id(con: sqlite3.Connection, course_id: int) -> Course:
    row = query_one(con, "SELECT * FROM courses WHERE id = ?", (course_id,))
    if row is None:
        raise NotFoundError("Course", course_id)
    return Course.from_row(row)


def get_course_by_short_name(
    con: sqlite3.Connection, short_name: str, semester_id: Optional[int] = None
) -> Course:
    """
    Look a course up by short name.

    Without a semester the current semester is searched first, then all
    others from newest to oldest.
    """
    if semester_id is not None:
        row = query_one(
            con, "SELECT * FROM courses WHERE semester_id = ? AND short_name = ?", (semester_id, short_name)
        )
    else:
        current = get_current_semester(con)
        row = query_one(
            con,
            """
            SELECT * FROM courses WHERE short_name = ?
            ORDER BY CASE WHEN semester_id = ? THEN 0 ELSE 1 END, semester_id DESC
            LIMIT 1
            """,
            (short_name, current.id if current else -1),
        )
    if row is None:
        raise NotFoundError("Course", short_name)
    return Course.from_row(row)


def resolve_course_ref(con: sqlite3.Connection, ref: str | int) -> Course:
    """Accept a numeric id or a short name."""
    text = str(ref).strip()
    if text.isdigit():
        return get_course_by_id(con, int(text))
    return get_course_by_short_name(con, text)


def list_courses(
    con: sqlite3.Connection,
    semester_id: Optional[int] = None,
    include_archived: bool = True,
    include_dropped: bool = True,
) -> list[Course]:
    clauses: list[str] = []
    params: list[Any] = []
    if semester_id is not None:
        clauses.append("semester_id = ?")
        params.append(semester_id)
    if not include_archived:
        clauses.append("is_archived = 0")
    if not include_dropped:
        clauses.append("is_dropped = 0")
    sql = "SELECT * FROM courses"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY short_name, id"
    return [Course.from_row(r) for r in query(con, sql, tuple(params))]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_course(
    con: sqlite3.Connection,
    config: Config,
    semester_id: int,
    short_name: str,
    name: str,
    ects: int,
    is_external: bool = False,
    original_path: str | Path | None = None,
    has_git_repo: bool = False,
    extra: Optional[dict[str, Any]] = None,
    **optional: Optional[str],
) -> Course:
    """
    Create a course row plus (for owned directories) its directory and descriptor.

    `optional` takes the text fields listed in OPTIONAL_FIELDS; university and
    location default to the semester's values. `extra` is stored verbatim in
    the descriptor.
    """
    unknown = set(optional) - set(OPTIONAL_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown course field(s): {', '.join(sorted(unknown))}")

    short_name = validate_course_code(short_name)
    ects = validate_ects(ects)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Course name must not be empty")

    semester = get_semester_by_id(con, semester_id)
    orig = expand_path(original_path) if original_path else None
    owns_dir = _owns_directory(is_external, orig)
    directory = orig if (is_external and orig is not None) else semester.directory_path / short_name
    existed_before = directory.exists()

    values = {k: (optional.get(k) or None) for k in OPTIONAL_FIELDS}
    values["university"] = values["university"] or semester.university
    values["location"] = values["location"] or semester.default_location or config.general.default_location

    now = utc_now()
    try:
        with transaction(con):
            try:
                cur = con.execute(
                    """
                    INSERT INTO courses (semester_id, short_name, name, directory_path, ects,
                                         lecturer, lecturer_email, tutor, tutor_email, learning_platform_url,
                                         university, location, is_external, original_path, has_git_repo,
                                         git_remote_url, is_archived, is_dropped, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?)
                    """,
                    (
                        semester_id,
                        short_name,
                        name,
                        str(directory),
                        ects,
                        values["lecturer"],
                        values["lecturer_email"],
                        values["tutor"],
                        values["tutor_email"],
                        values["learning_platform_url"],
                        values["university"],
                        values["location"],
                        int(is_external),
                        str(orig) if orig else None,
                        int(has_git_repo),
                        values["git_remote_url"],
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(f"Course {short_name!r} already exists in {semester.code}") from None

            course_id = cur.lastrowid
            if owns_dir:
                try:
                    directory.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise FilesystemError(f"Failed to create course directory ({e.strerror})", directory) from e
                course = get_course_by_id(con, course_id)
                toml_path = write_course_descriptor(directory, CourseDescriptor.from_course(course, extra))
                con.execute("UPDATE courses SET toml_path = ? WHERE id = ?", (str(toml_path), course_id))
            course = get_course_by_id(con, course_id)
    except Exception:
        if owns_dir and not existed_before and directory.exists():
            shutil.rmtree(directory, ignore_errors=True)
        raise

    logger.debug("Created course %s in %s (%s)", short_name, semester.code, directory)
    return course


def _load_descriptor(course: Course, force_recreate_toml: bool) -> Optional[CourseDescriptor]:
    """
    Existing descriptor of a course, or None if it has none.

    A corrupted file is an error unless force_recreate_toml is set, in which
    case the file is rebuilt from the database row (extra keys are lost).
    """
    path = course.directory_path / COURSE_DESCRIPTOR
    if not path.exists():
        return None
    try:
        return read_course_descriptor(path)
    except CorruptedDescriptorError:
        if not force_recreate_toml:
            raise
        logger.warning("Recreating corrupted descriptor %s", path)
        return CourseDescriptor.from_course(course)


def update_course(
    con: sqlite3.Connection,
    course_id: int,
    changes: dict[str, Any],
    force_recreate_toml: bool = False,
) -> Course:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update course field(s): {', '.join(sorted(unknown))}")

    values = dict(changes)
    if "short_name" in values:
        values["short_name"] = validate_course_code(values["short_name"])
    if "ects" in values:
        values["ects"] = validate_ects(values["ects"])
    if "name" in values and not str(values["name"] or "").strip():
        raise ValidationError("Course name must not be empty")
    if values.get("original_path"):
        values["original_path"] = str(expand_path(values["original_path"]))
    for flag in FLAG_FIELDS:
        if flag in values:
            values[flag] = int(bool(values[flag]))

    course = get_course_by_id(con, course_id)
    owns_dir = _owns_directory(course.is_external, course.original_path)
    descriptor = _load_descriptor(course, force_recreate_toml) if owns_dir else None

    old_dir = course.directory_path
    new_dir = old_dir
    renamed = False
    if owns_dir and values.get("short_name", course.short_name) != course.short_name:
        new_dir = old_dir.parent / values["short_name"]
        if new_dir.exists():
            raise ValidationError(f"Cannot rename course: {new_dir} already exists")
        values["directory_path"] = str(new_dir)
        if old_dir.exists():
            try:
                old_dir.rename(new_dir)
            except OSError as e:
                raise FilesystemError(f"Failed to rename course directory ({e.strerror})", old_dir) from e
            renamed = True

    try:
        with transaction(con):
            try:
                update_row(con, "courses", course_id, values)
            except sqlite3.IntegrityError:
                raise ValidationError(f"Course {values.get('short_name')!r} already exists in this semester") from None
            updated = get_course_by_id(con, course_id)
            if owns_dir and new_dir.is_dir():
                extra = descriptor.extra if descriptor else {}
                toml_path = write_course_descriptor(new_dir, CourseDescriptor.from_course(updated, extra))
                con.execute("UPDATE courses SET toml_path = ? WHERE id = ?", (str(toml_path), course_id))
                updated = get_course_by_id(con, course_id)
    except Exception:
        if renamed:
            try:
                new_dir.rename(old_dir)
            except OSError as e:
                logger.error("Could not undo rename %s -> %s: %s", old_dir, new_dir, e)
        raise

    return updated


def delete_course(con: sqlite3.Connection, course_id: int, delete_directory: bool = False) -> Course:
    """
    Delete the row (schedules, events, grades, mappings cascade).

    External courses never have their directory removed.
    """
    course = get_course_by_id(con, course_id)
    with transaction(con):
        con.execute("DELETE FROM courses WHERE id = ?", (course_id,))
        if delete_directory:
            if course.is_external:
                logger.info("Keeping directory of external course %s: %s", course.short_name, course.directory_path)
            elif course.directory_path.exists():
                try:
                    shutil.rmtree(course.directory_path)
                except OSError as e:
                    raise FilesystemError(
                        f"Failed to delete course directory ({e.strerror})", course.directory_path
                    ) from e
    return course
