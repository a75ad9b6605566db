"""
SQLite persistence layer.

One database file (<data dir>/mms/mms.db) holds every entity. The schema is
created by an ordered list of migration scripts; the number of applied
scripts is stored in PRAGMA user_version, so opening an old file upgrades it.

Conventions:
- booleans are 0/1, dates ISO 'YYYY-MM-DD', times 'HH:MM',
  created_at/updated_at/activated_at are UTC ISO-8601 timestamps
- enum columns hold the canonical lowercase value (see mms.model)
- every owning relation uses ON DELETE CASCADE, so deleting a semester
  removes its courses, their schedules, events, grades and mappings

The table "active" is a singleton: its primary key is pinned to 1 by a CHECK
constraint and the row is seeded by the migration itself.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from mms.errors import StorageError, ValidationError
from mms.model import ActivePointer
from mms.paths import database_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS semesters (
  id INTEGER PRIMARY KEY,
  type TEXT NOT NULL CHECK (type IN ('bachelor', 'master')),
  number INTEGER NOT NULL CHECK (number > 0),
  directory_path TEXT NOT NULL,
  exists_on_disk INTEGER NOT NULL DEFAULT 1,
  start_date TEXT,
  end_date TEXT,
  university TEXT,
  default_location TEXT,
  is_current INTEGER NOT NULL DEFAULT 0,
  is_archived INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (type, number)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_semesters_single_current
  ON semesters (is_current) WHERE is_current = 1;

CREATE TABLE IF NOT EXISTS courses (
  id INTEGER PRIMARY KEY,
  semester_id INTEGER NOT NULL REFERENCES semesters(id) ON DELETE CASCADE,
  short_name TEXT NOT NULL,
  name TEXT NOT NULL,
  directory_path TEXT NOT NULL,
  toml_path TEXT,
  ects INTEGER NOT NULL CHECK (ects BETWEEN 1 AND 30),
  lecturer TEXT,
  lecturer_email TEXT,
  tutor TEXT,
  tutor_email TEXT,
  learning_platform_url TEXT,
  university TEXT,
  location TEXT,
  is_external INTEGER NOT NULL DEFAULT 0,
  original_path TEXT,
  has_git_repo INTEGER NOT NULL DEFAULT 0,
  git_remote_url TEXT,
  is_archived INTEGER NOT NULL DEFAULT 0,
  is_dropped INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (semester_id, short_name)
);

CREATE TABLE IF NOT EXISTS degrees (
  id INTEGER PRIMARY KEY,
  type TEXT NOT NULL CHECK (type IN ('bachelor', 'master', 'phd')),
  name TEXT NOT NULL,
  university TEXT NOT NULL,
  total_ects_required INTEGER NOT NULL,
  start_date TEXT,
  expected_end_date TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE (type, name, university),
  CHECK (type <> 'phd' OR total_ects_required = 0)
);

CREATE TABLE IF NOT EXISTS degree_areas (
  id INTEGER PRIMARY KEY,
  degree_id INTEGER NOT NULL REFERENCES degrees(id) ON DELETE CASCADE,
  category_name TEXT NOT NULL,
  required_ects INTEGER NOT NULL CHECK (required_ects > 0),
  counts_towards_gpa INTEGER NOT NULL DEFAULT 1,
  display_order INTEGER NOT NULL DEFAULT 0,
  UNIQUE (degree_id, category_name)
);

CREATE TABLE IF NOT EXISTS course_degree_mappings (
  id INTEGER PRIMARY KEY,
  course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
  degree_id INTEGER NOT NULL REFERENCES degrees(id) ON DELETE CASCADE,
  area_id INTEGER NOT NULL REFERENCES degree_areas(id) ON DELETE CASCADE,
  ects_override INTEGER,
  created_at TEXT NOT NULL,
  UNIQUE (course_id, degree_id, area_id)
);

CREATE TABLE IF NOT EXISTS course_schedules (
  id INTEGER PRIMARY KEY,
  course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
  schedule_type TEXT NOT NULL DEFAULT 'lecture',
  day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),
  start_time TEXT NOT NULL,
  end_time TEXT NOT NULL,
  start_date TEXT NOT NULL,
  end_date TEXT NOT NULL,
  room TEXT,
  location TEXT,
  created_at TEXT NOT NULL,
  CHECK (start_time < end_time),
  CHECK (start_date <= end_date)
);

CREATE TABLE IF NOT EXISTS course_events (
  id INTEGER PRIMARY KEY,
  course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
  schedule_id INTEGER REFERENCES course_schedules(id) ON DELETE CASCADE,
  schedule_type TEXT NOT NULL DEFAULT 'lecture',
  event_type TEXT NOT NULL,
  date TEXT NOT NULL,
  start_time TEXT,
  end_time TEXT,
  room TEXT,
  location TEXT,
  description TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_course_events_date ON course_events (date);

CREATE TABLE IF NOT EXISTS holidays (
  id INTEGER PRIMARY KEY,
  name TEXT NOT NULL,
  start_date TEXT NOT NULL,
  end_date TEXT NOT NULL,
  semester_id INTEGER REFERENCES semesters(id) ON DELETE CASCADE,
  created_at TEXT NOT NULL,
  CHECK (start_date <= end_date)
);

CREATE TABLE IF NOT EXISTS holiday_exceptions (
  id INTEGER PRIMARY KEY,
  holiday_id INTEGER NOT NULL REFERENCES holidays(id) ON DELETE CASCADE,
  course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
  UNIQUE (holiday_id, course_id)
);

CREATE TABLE IF NOT EXISTS grades (
  id INTEGER PRIMARY KEY,
  course_id INTEGER NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
  grade REAL NOT NULL,
  grading_scheme TEXT NOT NULL,
  original_grade REAL,
  original_scheme TEXT,
  is_final INTEGER NOT NULL DEFAULT 1,
  passed INTEGER NOT NULL DEFAULT 0,
  attempt_number INTEGER NOT NULL DEFAULT 1,
  exam_date TEXT,
  notes TEXT,
  recorded_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS grade_components (
  id INTEGER PRIMARY KEY,
  grade_id INTEGER NOT NULL REFERENCES grades(id) ON DELETE CASCADE,
  component_name TEXT NOT NULL,
  weight REAL NOT NULL DEFAULT 0,
  points_earned REAL,
  points_total REAL,
  grade REAL,
  is_bonus INTEGER NOT NULL DEFAULT 0,
  bonus_points REAL
);

CREATE TABLE IF NOT EXISTS active (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  semester_id INTEGER REFERENCES semesters(id) ON DELETE SET NULL,
  course_id INTEGER REFERENCES courses(id) ON DELETE SET NULL,
  lecture_id INTEGER,
  activated_at TEXT,
  updated_at TEXT
);

INSERT OR IGNORE INTO active (id) VALUES (1);

-- Every final, passing grade expressed in the German scheme.
-- Pass/fail grades keep german_grade NULL: they earn ECTS but carry no grade.
CREATE VIEW IF NOT EXISTS v_final_grades AS
SELECT
  g.id AS grade_id,
  g.course_id AS course_id,
  g.grade AS grade,
  g.grading_scheme AS grading_scheme,
  CASE g.grading_scheme
    WHEN 'german' THEN g.grade
    WHEN 'percentage' THEN MAX(1.0, MIN(5.0, 1 + (100 - g.grade) * 3.0 / 50))
    WHEN 'us' THEN MAX(1.0, MIN(5.0, 1 + (100 - g.grade * 25.0) * 3.0 / 50))
    WHEN 'ects' THEN MAX(1.0, MIN(5.0, 1 + (100 - (
      CASE
        WHEN g.grade <= 1.5 THEN 95
        WHEN g.grade <= 2.5 THEN 85
        WHEN g.grade <= 3.5 THEN 75
        WHEN g.grade <= 4.5 THEN 65
        WHEN g.grade <= 5.5 THEN 55
        ELSE 40
      END)) * 3.0 / 50))
  END AS german_grade
FROM grades g
WHERE g.is_final = 1 AND g.passed = 1;

CREATE VIEW IF NOT EXISTS v_degree_progress AS
SELECT
  da.degree_id AS degree_id,
  da.id AS area_id,
  da.category_name AS category_name,
  da.required_ects AS required_ects,
  COALESCE(SUM(CASE WHEN f.grade_id IS NOT NULL THEN COALESCE(m.ects_override, c.ects) END), 0) AS earned_ects,
  CASE WHEN da.counts_towards_gpa = 1 THEN
    SUM(f.german_grade * COALESCE(m.ects_override, c.ects))
      / SUM(CASE WHEN f.german_grade IS NOT NULL THEN COALESCE(m.ects_override, c.ects) END)
  END AS area_gpa,
  da.counts_towards_gpa AS counts_towards_gpa
FROM degree_areas da
LEFT JOIN course_degree_mappings m ON m.area_id = da.id
LEFT JOIN courses c ON c.id = m.course_id
LEFT JOIN v_final_grades f ON f.course_id = c.id
GROUP BY da.id, da.degree_id, da.category_name, da.required_ects, da.counts_towards_gpa, da.display_order
ORDER BY da.degree_id, da.display_order, da.id;

CREATE VIEW IF NOT EXISTS v_unmapped_courses AS
SELECT c.*
FROM courses c
WHERE c.is_archived = 0
  AND c.is_dropped = 0
  AND NOT EXISTS (SELECT 1 FROM course_degree_mappings m WHERE m.course_id = c.id);
"""

# Index i holds the script that brings user_version from i to i + 1.
MIGRATIONS: list[str] = [SCHEMA_V1]


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

_connection: Optional[sqlite3.Connection] = None
_connection_path: Optional[Path] = None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def connect(path: str | Path | None = None) -> sqlite3.Connection:
    """
    Open (and if needed create/upgrade) the database.

    - enables foreign key enforcement
    - sets row_factory to sqlite3.Row so rows can be read by column name
    """
    db_path = Path(path) if path is not None else database_path()
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(db_path, timeout=10)
    except (OSError, sqlite3.Error) as e:
        raise StorageError(f"Cannot open database {db_path}: {e}") from e

    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON;")
    migrate(con)
    return con


def get_connection(path: str | Path | None = None) -> sqlite3.Connection:
    """Process-wide connection used by the CLI (one per run)."""
    global _connection, _connection_path
    db_path = Path(path) if path is not None else database_path()
    if _connection is None or _connection_path != db_path:
        close_connection()
        _connection = connect(db_path)
        _connection_path = db_path
    return _connection


def close_connection() -> None:
    global _connection, _connection_path
    if _connection is not None:
        _connection.close()
    _connection = None
    _connection_path = None


def schema_version(con: sqlite3.Connection) -> int:
    return con.execute("PRAGMA user_version").fetchone()[0]


def migrate(con: sqlite3.Connection) -> int:
    """Apply pending migrations; returns the resulting schema version."""
    version = schema_version(con)
    for target, script in enumerate(MIGRATIONS, start=1):
        if target <= version:
            continue
        logger.debug("Applying migration %d", target)
        try:
            con.executescript(f"BEGIN;\n{script}\nPRAGMA user_version = {target};\nCOMMIT;")
        except sqlite3.Error as e:
            con.rollback()
            raise StorageError(f"Migration {target} failed: {e}") from e
        version = target
    return version


@contextmanager
def transaction(con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Commit on success, roll back on any exception.

    Constraint violations surface as ValidationError, other database
    failures as StorageError; everything else propagates unchanged.
    """
    try:
        with con:
            yield con
    except sqlite3.IntegrityError as e:
        raise ValidationError(f"Constraint violated: {e}") from e
    except sqlite3.Error as e:
        raise StorageError(f"Database error: {e}") from e


def query(con: sqlite3.Connection, sql: str, params: tuple | dict = ()) -> list[sqlite3.Row]:
    try:
        return con.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        raise StorageError(f"Database error: {e}") from e


def query_one(con: sqlite3.Connection, sql: str, params: tuple | dict = ()) -> Optional[sqlite3.Row]:
    try:
        return con.execute(sql, params).fetchone()
    except sqlite3.Error as e:
        raise StorageError(f"Database error: {e}") from e


def update_row(
    con: sqlite3.Connection, table: str, row_id: int, values: dict[str, object], touch: bool = True
) -> None:
    """UPDATE <table> SET ... WHERE id = ?; column names come from our own code, never from users."""
    values = dict(values)
    if touch:
        values["updated_at"] = utc_now()
    if not values:
        return
    assignments = ", ".join(f"{col} = ?" for col in values)
    con.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*values.values(), row_id))


# ---------------------------------------------------------------------------
# Active pointer singleton
# ---------------------------------------------------------------------------


def get_active(con: sqlite3.Connection) -> ActivePointer:
    row = query_one(con, "SELECT * FROM active WHERE id = 1")
    if row is None:
        # table emptied by hand: restore the singleton
        with transaction(con):
            con.execute("INSERT OR IGNORE INTO active (id) VALUES (1)")
        return ActivePointer()
    return ActivePointer.from_row(row)


def set_active(con: sqlite3.Connection, semester_id: Optional[int], course_id: Optional[int]) -> None:
    now = utc_now()
    with transaction(con):
        con.execute("INSERT OR IGNORE INTO active (id) VALUES (1)")
        con.execute(
            "UPDATE active SET semester_id = ?, course_id = ?, activated_at = ?, updated_at = ? WHERE id = 1",
            (semester_id, course_id, now, now),
        )


def clear_active_course(con: sqlite3.Connection) -> None:
    """Forget the active course; the active semester stays."""
    with transaction(con):
        con.execute("INSERT OR IGNORE INTO active (id) VALUES (1)")
        con.execute(
            "UPDATE active SET course_id = NULL, lecture_id = NULL, updated_at = ? WHERE id = 1",
            (utc_now(),),
        )
