"""
Filesystem / database reconciliation.

Semesters are compared by code (b3, m1) between the database and the
directories directly under the university base path:

    synced     row and directory <base>/<code> both exist
    db_only    row exists, directory is missing   -> sync creates it
    disk_only  directory without a row; names that are not a semester code
               (^[bm][0-9]+$, number > 0) are listed with parsed = None

sync never deletes anything and never creates rows; directories without a
row are only reported (importing them is a manual `mms semester add`).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mms.db import transaction
from mms.descriptors import SemesterDescriptor, write_semester_descriptor
from mms.errors import FilesystemError, MmsError
from mms.model import Semester, SemesterType
from mms.semester import SEMESTER_CODE_RE, list_semesters

logger = logging.getLogger(__name__)


@dataclass
class DiskSemester:
    name: str
    path: Path
    parsed: Optional[tuple[SemesterType, int]] = None


def scan_disk_semesters(base: str | Path) -> list[DiskSemester]:
    base = Path(base)
    if not base.is_dir():
        return []
    found: list[DiskSemester] = []
    try:
        entries = sorted(base.iterdir())
    except OSError as e:
        raise FilesystemError(f"Cannot list directory ({e.strerror})", base) from e
    for entry in entries:
        if entry.name.startswith(".") or not entry.is_dir():
            continue
        m = SEMESTER_CODE_RE.match(entry.name)
        parsed = None
        if m and int(m.group(2)) > 0:
            parsed = (SemesterType.from_prefix(m.group(1)), int(m.group(2)))
        found.append(DiskSemester(name=entry.name, path=entry, parsed=parsed))
    return found


@dataclass
class SyncStatus:
    synced: list[Semester] = field(default_factory=list)
    db_only: list[Semester] = field(default_factory=list)
    disk_only: list[DiskSemester] = field(default_factory=list)

    def is_synced(self) -> bool:
        return not self.db_only and not self.disk_only


def check_status(con: sqlite3.Connection, base: str | Path) -> SyncStatus:
    base = Path(base)
    status = SyncStatus()
    semesters = list_semesters(con)
    codes = {s.code for s in semesters}

    for semester in semesters:
        on_disk = base / semester.code
        if on_disk.is_dir():
            status.synced.append(semester)
        else:
            status.db_only.append(semester)

    for disk in scan_disk_semesters(base):
        if disk.name not in codes:
            status.disk_only.append(disk)
    return status


@dataclass
class SyncReport:
    actions: list[str] = field(default_factory=list)
    failures: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return not self.actions and not self.failures


def sync_to_filesystem(con: sqlite3.Connection, base: str | Path, dry_run: bool = False) -> SyncReport:
    """
    Create missing semester directories (with descriptor) for db-only rows.

    Each entry is independent: a failure is recorded and the next one is tried.
    """
    base = Path(base)
    report = SyncReport()
    for semester in check_status(con, base).db_only:
        target = base / semester.code
        report.actions.append(f"Create folder: {target}")
        if dry_run:
            continue
        try:
            target.mkdir(parents=True, exist_ok=True)
            write_semester_descriptor(target, SemesterDescriptor.from_semester(semester))
            with transaction(con):
                con.execute(
                    "UPDATE semesters SET directory_path = ?, exists_on_disk = 1 WHERE id = ?",
                    (str(target), semester.id),
                )
        except OSError as e:
            logger.error("Failed to create %s: %s", target, e)
            report.failures.append((target, e.strerror or str(e)))
        except MmsError as e:
            logger.error("Failed to create %s: %s", target, e)
            report.failures.append((target, str(e)))
    return report
