"""
Path service.

Every location mms touches is derived here:

    <config dir>/mms/config.toml      configuration
    <data dir>/mms/mms.db             database
    <data dir>/mms/daemon.pid         daemon PID file
    <data dir>/mms/mms-daemon.log     daemon log
    <base>/<semester code>/           semester directory (e.g. b3, m1)
    <base>/<semester code>/<course>/  course directory

Short codes are the bridge between database ids and directory names, so the
functions that build them live next to the directory helpers.

Both user directories can be overridden with MMS_CONFIG_DIR / MMS_DATA_DIR,
which is how the tests keep away from real user data.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from mms.model import SemesterType

APP_NAME = "mms"

SEMESTER_DESCRIPTOR = ".semester.toml"
COURSE_DESCRIPTOR = ".course.toml"


# ---------------------------------------------------------------------------
# User directories
# ---------------------------------------------------------------------------


def user_config_dir() -> Path:
    env_override = os.getenv("MMS_CONFIG_DIR")
    if env_override:
        return Path(env_override)

    if os.name == "nt":
        base = Path(os.getenv("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / APP_NAME


def user_data_dir() -> Path:
    env_override = os.getenv("MMS_DATA_DIR")
    if env_override:
        return Path(env_override)

    if os.name == "nt":
        base = Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / APP_NAME


def config_path() -> Path:
    return user_config_dir() / "config.toml"


def database_path() -> Path:
    return user_data_dir() / "mms.db"


def pid_path() -> Path:
    return user_data_dir() / "daemon.pid"


def daemon_log_path() -> Path:
    return user_data_dir() / "mms-daemon.log"


def expand_path(path: str | Path) -> Path:
    """Expand ~ and environment variables; relative paths stay relative."""
    return Path(os.path.expandvars(os.path.expanduser(str(path))))


# ---------------------------------------------------------------------------
# Workspace layout
# ---------------------------------------------------------------------------


def semester_code(semester_type: SemesterType, number: int) -> str:
    """'b' or 'm' followed by the number, no padding: (Bachelor, 3) -> 'b3'."""
    return f"{semester_type.prefix}{number}"


def semester_dir(base: str | Path, semester_type: SemesterType, number: int) -> Path:
    return Path(base) / semester_code(semester_type, number)


def course_dir(base: str | Path, semester_type: SemesterType, number: int, short_name: str) -> Path:
    return semester_dir(base, semester_type, number) / short_name
