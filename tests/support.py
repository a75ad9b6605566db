"""
Shared fixtures for the test modules.

Every test runs against a throw-away workspace: a temporary university base
directory, a temporary symlink directory and a fresh SQLite file, so no test
touches the user's real config, database or ~/cs and ~/cc links.
"""

from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path

from mms.config import Config
from mms.course import create_course
from mms.db import connect
from mms.schedule import add_schedule
from mms.semester import create_semester


class Workspace:
    def __init__(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self.base = self.root / "university"
        self.links = self.root / "links"
        self.db_path = self.root / "mms.db"
        self.config = Config()
        self.config.general.university_base_path = str(self.base)
        self.config.general.symlink_path = str(self.links)
        self.config.general.default_location = "Campus"
        self.con = connect(self.db_path)

    def close(self) -> None:
        self.con.close()
        self._tmp.cleanup()

    def semester(self, number: int = 3, kind: str = "bachelor", current: bool = True):
        return create_semester(
            self.con,
            self.config,
            kind,
            number,
            start_date=date(2024, 10, 1),
            end_date=date(2025, 2, 1),
            is_current=current,
        )

    def course(self, semester_id: int, short_name: str, ects: int = 6, **kwargs):
        return create_course(self.con, self.config, semester_id, short_name, short_name.capitalize(), ects, **kwargs)

    def monday_lecture(self, course_id: int, start: str = "14:00", end: str = "16:00"):
        return add_schedule(self.con, course_id, "lecture", 0, start, end)
