"""
Semester lifecycle.

A semester exists three times: a row in `semesters`, a directory
<base>/<code> and the `.semester.toml` inside it. create/update keep all three
in step:

    validate -> BEGIN -> insert/update row -> mkdir -> write descriptor -> COMMIT

If the directory or descriptor step fails, the transaction is rolled back and
a directory created by this call is removed again. A crash between the
descriptor write and the commit leaves a directory without a row; `mms status`
reports it as "on disk only".

At most one semester is current. Making one current clears the flag on all
others in the same transaction (a partial unique index enforces it as well).
"""

from __future__ import annotations

import logging
import re
import shutil
import sqlite3
from datetime import date
from pathlib import Path
from typing import Any, Optional

from mms.config import Config
from mms.db import query, query_one, transaction, update_row, utc_now
from mms.descriptors import SemesterDescriptor, read_semester_descriptor, write_semester_descriptor
from mms.errors import FilesystemError, MmsError, NotFoundError, ValidationError
from mms.model import Semester, SemesterType
from mms.paths import SEMESTER_DESCRIPTOR, semester_dir
from mms.validation import validate_date_range, validate_semester_number

logger = logging.getLogger(__name__)

SEMESTER_CODE_RE = re.compile(r"^([bm])([0-9]+)$")

UPDATABLE_FIELDS = ("start_date", "end_date", "university", "default_location", "is_current", "is_archived")


def parse_semester_code(code: str) -> tuple[SemesterType, int]:
    """'b3' -> (BACHELOR, 3). Raises ValidationError for anything else."""
    m = SEMESTER_CODE_RE.match((code or "").strip().lower())
    if not m:
        raise ValidationError(f"Invalid semester code {code!r} (expected e.g. b3 or m1)")
    number = validate_semester_number(int(m.group(2)))
    return SemesterType.from_prefix(m.group(1)), number


def _remove_created_dir(directory: Path) -> None:
    try:
        shutil.rmtree(directory)
    except OSError as e:
        logger.warning("Could not remove %s after failed create: %s", directory, e)


def _write_descriptor(semester: Semester) -> None:
    write_semester_descriptor(semester.directory_path, SemesterDescriptor.from_semester(semester))


def _refresh_descriptors(con: sqlite3.Connection, semester_ids: list[int]) -> None:
    """Rewrite descriptors of other semesters whose row changed as a side effect."""
    for sid in semester_ids:
        semester = get_semester_by_id(con, sid)
        if not (semester.directory_path / SEMESTER_DESCRIPTOR).exists():
            continue
        try:
            _write_descriptor(semester)
        except MmsError as e:
            logger.warning("Could not refresh descriptor of %s: %s", semester.code, e)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_semester_by_id(con: sqlite3.Connection, semester_id: int) -> Semester:
    row = query_one(con, "SELECT * FROM semesters WHERE id = ?", (semester_id,))
    if row is None:
        raise NotFoundError("Semester", semester_id)
    return Semester.from_row(row)


def get_semester_by_code(con: sqlite3.Connection, code: str) -> Semester:
    semester_type, number = parse_semester_code(code)
    row = query_one(
        con, "SELECT * FROM semesters WHERE type = ? AND number = ?", (semester_type.value, number)
    )
    if row is None:
        raise NotFoundError("Semester", code)
    return Semester.from_row(row)


def resolve_semester_ref(con: sqlite3.Connection, ref: str | int) -> Semester:
    """Accept an id ('4') or a code ('b3')."""
    text = str(ref).strip()
    if text.isdigit():
        return get_semester_by_id(con, int(text))
    return get_semester_by_code(con, text)


def get_current_semester(con: sqlite3.Connection) -> Optional[Semester]:
    row = query_one(con, "SELECT * FROM semesters WHERE is_current = 1 ORDER BY id LIMIT 1")
    return Semester.from_row(row) if row else None


def list_semesters(con: sqlite3.Connection, include_archived: bool = True) -> list[Semester]:
    sql = "SELECT * FROM semesters"
    if not include_archived:
        sql += " WHERE is_archived = 0"
    sql += " ORDER BY type, number"
    return [Semester.from_row(r) for r in query(con, sql)]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_semester(
    con: sqlite3.Connection,
    config: Config,
    semester_type: SemesterType | str,
    number: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    university: Optional[str] = None,
    default_location: Optional[str] = None,
    is_current: bool = False,
    base_path: str | Path | None = None,
) -> Semester:
    """
    Create the row, the directory <base>/<code> and its descriptor.

    If the directory already exists with a descriptor (e.g. copied from
    another machine), its values fill in whatever was not given here.
    """
    if not isinstance(semester_type, SemesterType):
        semester_type = SemesterType.parse(semester_type)
    number = validate_semester_number(number)

    base = Path(base_path) if base_path is not None else config.university_base_path
    directory = semester_dir(base, semester_type, number).resolve()
    existed_before = directory.exists()

    if existed_before and (directory / SEMESTER_DESCRIPTOR).exists():
        on_disk = read_semester_descriptor(directory)
        start_date = start_date or on_disk.start_date
        end_date = end_date or on_disk.end_date
        university = university or on_disk.university
        default_location = default_location or on_disk.location

    validate_date_range(start_date, end_date, strict=True)
    location = default_location or config.general.default_location or None

    previously_current: list[int] = []
    now = utc_now()
    try:
        with transaction(con):
            if is_current:
                previously_current = [
                    r["id"] for r in con.execute("SELECT id FROM semesters WHERE is_current = 1")
                ]
                con.execute("UPDATE semesters SET is_current = 0, updated_at = ? WHERE is_current = 1", (now,))
            try:
                cur = con.execute(
                    """
                    INSERT INTO semesters (type, number, directory_path, exists_on_disk, start_date, end_date,
                                           university, default_location, is_current, is_archived,
                                           created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, 0, ?, ?)
                    """,
                    (
                        semester_type.value,
                        number,
                        str(directory),
                        start_date.isoformat() if start_date else None,
                        end_date.isoformat() if end_date else None,
                        university,
                        location,
                        int(is_current),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError:
                raise ValidationError(
                    f"Semester {semester_type.prefix}{number} already exists"
                ) from None

            semester = get_semester_by_id(con, cur.lastrowid)
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError(f"Failed to create semester directory ({e.strerror})", directory) from e
            _write_descriptor(semester)
    except Exception:
        if not existed_before and directory.exists():
            _remove_created_dir(directory)
        raise

    logger.debug("Created semester %s at %s", semester.code, directory)
    _refresh_descriptors(con, previously_current)
    return semester


def update_semester(con: sqlite3.Connection, semester_id: int, **changes: Any) -> Semester:
    """
    Update selected fields (see UPDATABLE_FIELDS) in the row and descriptor.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update semester field(s): {', '.join(sorted(unknown))}")

    semester = get_semester_by_id(con, semester_id)
    start = changes.get("start_date", semester.start_date)
    end = changes.get("end_date", semester.end_date)
    validate_date_range(start, end, strict=True)

    values: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, date):
            value = value.isoformat()
        if isinstance(value, bool):
            value = int(value)
        values[key] = value

    previously_current: list[int] = []
    with transaction(con):
        if changes.get("is_current"):
            previously_current = [
                r["id"]
                for r in con.execute("SELECT id FROM semesters WHERE is_current = 1 AND id <> ?", (semester_id,))
            ]
            con.execute(
                "UPDATE semesters SET is_current = 0, updated_at = ? WHERE is_current = 1 AND id <> ?",
                (utc_now(), semester_id),
            )
        update_row(con, "semesters", semester_id, values)
        semester = get_semester_by_id(con, semester_id)
        if semester.directory_path.is_dir():
            _write_descriptor(semester)

    _refresh_descriptors(con, previously_current)
    return semester


def set_current_semester(con: sqlite3.Connection, semester_id: int) -> Semester:
    return update_semester(con, semester_id, is_current=True)


def archive_semester(con: sqlite3.Connection, semester_id: int, archived: bool = True) -> Semester:
    return update_semester(con, semester_id, is_archived=archived)


def delete_semester(con: sqlite3.Connection, semester_id: int, delete_directory: bool = False) -> Semester:
    """
    Delete the row (courses, schedules, grades ... cascade).

    The directory is only removed on request; a failure to remove it rolls the
    row deletion back.
    """
    semester = get_semester_by_id(con, semester_id)
    with transaction(con):
        con.execute("DELETE FROM semesters WHERE id = ?", (semester_id,))
        if delete_directory and semester.directory_path.exists():
            try:
                shutil.rmtree(semester.directory_path)
            except OSError as e:
                raise FilesystemError(
                    f"Failed to delete semester directory ({e.strerror})", semester.directory_path
                ) from e
    logger.debug("Deleted semester %s (directory removed: %s)", semester.code, delete_directory)
    return semester
