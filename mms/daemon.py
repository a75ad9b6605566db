"""
Background service that keeps the active pointer in step with the timetable.

Every `service.schedule_check_interval_minutes` the daemon runs one tick:

    open a fresh connection -> resolve the active course -> compare with the
    active row -> write the row -> update the cs/cc symlinks

A tick never raises: errors are logged and the next tick tries again. Since
each tick also checks the symlinks against the active row, a failed
symlink update is repaired on the next tick without a transition.

Single instance is enforced by a PID file. A PID file whose process is gone
(crash, reboot) is stale and simply replaced.

On macOS the daemon can be installed as a launchd agent
(~/Library/LaunchAgents/com.mms.daemon.plist) so it starts at login.
"""

from __future__ import annotations

import logging
import os
import plistlib
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from mms.config import Config
from mms.db import connect, get_active, set_active
from mms.errors import (
    AlreadyRunningError,
    DaemonStateError,
    FilesystemError,
    MmsError,
    NotRunningError,
    UnsupportedPlatformError,
)
from mms.model import Course, Semester
from mms.paths import daemon_log_path, pid_path
from mms.resolver import current_semester_id, resolve_active_course
from mms.symlinks import (
    check_symlinks,
    remove_course_symlink,
    remove_semester_symlink,
    update_course_symlink,
    update_semester_symlink,
)

logger = logging.getLogger(__name__)

LAUNCHD_LABEL = "com.mms.daemon"

# seconds; the stop flag is checked at least this often while sleeping
SLEEP_SLICE = 0.5


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def launchd_plist_path() -> Path:
    return Path.home() / "Library" / "LaunchAgents" / f"{LAUNCHD_LABEL}.plist"


@dataclass
class DaemonStatus:
    running: bool
    pid: Optional[int] = None


@dataclass
class Transition:
    """What a tick changed. Names are course names; None means no course."""

    previous: Optional[str]
    current: Optional[str]

    @property
    def message(self) -> str:
        if self.previous is None:
            return f"Course started: {self.current}"
        if self.current is None:
            return f"No active course (was: {self.previous})"
        return f"Switched: {self.previous} -> {self.current}"


class Daemon:
    def __init__(
        self,
        config: Config,
        db_path: str | Path | None = None,
        pid_path: str | Path | None = None,
        config_path: str | Path | None = None,
    ) -> None:
        self.config = config
        self.db_path = Path(db_path) if db_path is not None else None
        self.pid_path = Path(pid_path) if pid_path is not None else _default_pid_path()
        self.config_path = Path(config_path) if config_path is not None else None
        self._stop_requested = False

    # -- PID file -----------------------------------------------------------

    def _read_pid(self) -> Optional[int]:
        try:
            text = self.pid_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemError(f"Cannot read PID file ({e.strerror})", self.pid_path) from e
        try:
            return int(text)
        except ValueError:
            logger.warning("Ignoring invalid PID file %s: %r", self.pid_path, text)
            return None

    def _write_pid(self) -> None:
        try:
            self.pid_path.parent.mkdir(parents=True, exist_ok=True)
            self.pid_path.write_text(f"{os.getpid()}\n", encoding="utf-8")
        except OSError as e:
            raise FilesystemError(f"Cannot write PID file ({e.strerror})", self.pid_path) from e

    def _remove_pid(self) -> None:
        try:
            self.pid_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove PID file %s: %s", self.pid_path, e)

    def status(self) -> DaemonStatus:
        pid = self._read_pid()
        if pid is not None and _pid_alive(pid):
            return DaemonStatus(running=True, pid=pid)
        return DaemonStatus(running=False)

    # -- main loop ----------------------------------------------------------

    def request_stop(self, signum: int | None = None, frame: object = None) -> None:
        if signum is not None:
            logger.info("Received signal %s, stopping", signum)
        self._stop_requested = True

    def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Run until SIGINT/SIGTERM (or until max_ticks ticks have run).

        Raises AlreadyRunningError when another live daemon owns the PID file.
        """
        existing = self._read_pid()
        if existing is not None and existing != os.getpid() and _pid_alive(existing):
            raise AlreadyRunningError(existing)
        if existing is not None:
            logger.info("Replacing stale PID file (PID %s)", existing)

        self._write_pid()
        self._stop_requested = False
        previous_handlers = {
            sig: signal.signal(sig, self.request_stop) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        interval = self.config.check_interval_seconds
        logger.info("Daemon started (PID %s, checking every %s s)", os.getpid(), interval)

        ticks = 0
        try:
            while not self._stop_requested:
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._sleep(interval)
        finally:
            for sig, handler in previous_handlers.items():
                signal.signal(sig, handler)
            self._remove_pid()
            logger.info("Daemon stopped")

    def _sleep(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(SLEEP_SLICE, remaining))

    # -- one tick -----------------------------------------------------------

    def tick(self, now: Optional[datetime] = None) -> Optional[Transition]:
        """Resolve, compare, apply. Never raises."""
        now = now or datetime.now()
        try:
            con = connect(self.db_path)
        except MmsError:
            logger.exception("Cannot open database")
            return None
        try:
            return self._apply(con, now)
        except Exception:
            logger.exception("Tick failed")
            return None
        finally:
            con.close()

    def _apply(self, con, now: datetime) -> Optional[Transition]:
        semester_id = current_semester_id(con)
        resolved = resolve_active_course(con, now)
        active = get_active(con)

        course = _course(con, resolved)
        transition: Optional[Transition] = None
        if resolved != active.course_id or semester_id != active.semester_id:
            set_active(con, semester_id, resolved)
            if resolved != active.course_id:
                previous = _course(con, active.course_id)
                transition = Transition(
                    previous=previous.name if previous else None,
                    current=course.name if course else None,
                )
                logger.info(transition.message)

        semester = _semester(con, semester_id)
        try:
            self._sync_links(semester, course)
        except MmsError as e:
            logger.error("Symlink update failed, retrying next tick: %s", e)
        return transition

    def _sync_links(self, semester: Optional[Semester], course: Optional[Course]) -> None:
        cs, cc = check_symlinks(self.config)
        if semester is None:
            if cs.exists:
                remove_semester_symlink(self.config)
        elif cs.target != semester.directory_path:
            update_semester_symlink(self.config, semester.directory_path)
        if course is None:
            if cc.exists:
                remove_course_symlink(self.config)
        elif cc.target != course.directory_path:
            update_course_symlink(self.config, course.directory_path)

    # -- control from another process ---------------------------------------

    def stop(self) -> int:
        """SIGTERM the running daemon and wait up to 5 s. Returns its PID."""
        state = self.status()
        if not state.running or state.pid is None:
            raise NotRunningError()
        pid = state.pid
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._remove_pid()
            return pid
        except OSError as e:
            raise DaemonStateError(f"Cannot signal daemon (PID {pid}): {e}") from e

        for _ in range(50):
            if not _pid_alive(pid):
                self._remove_pid()
                return pid
            time.sleep(0.1)
        raise DaemonStateError(f"Daemon (PID {pid}) did not stop within 5 seconds")

    def _run_command(self) -> list[str]:
        cmd = [sys.executable, "-m", "mms"]
        if self.db_path is not None:
            cmd += ["--db", str(self.db_path)]
        if self.config_path is not None:
            cmd += ["--config", str(self.config_path)]
        return cmd + ["service", "run"]

    def start_background(self) -> subprocess.Popen:
        """Spawn `mms service run` detached from this terminal."""
        state = self.status()
        if state.running and state.pid is not None:
            raise AlreadyRunningError(state.pid)
        try:
            return subprocess.Popen(
                self._run_command(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise DaemonStateError(f"Failed to start daemon: {e}") from e

    # -- launchd ------------------------------------------------------------

    def install(self) -> Path:
        if sys.platform != "darwin":
            raise UnsupportedPlatformError("Service installation is only supported on macOS (launchd)")
        plist = launchd_plist_path()
        log_file = str(daemon_log_path())
        payload = {
            "Label": LAUNCHD_LABEL,
            "ProgramArguments": self._run_command(),
            "RunAtLoad": True,
            "KeepAlive": True,
            "StandardOutPath": log_file,
            "StandardErrorPath": log_file,
        }
        try:
            plist.parent.mkdir(parents=True, exist_ok=True)
            with plist.open("wb") as fh:
                plistlib.dump(payload, fh)
        except OSError as e:
            raise FilesystemError(f"Cannot write launch agent ({e.strerror})", plist) from e

        result = subprocess.run(["launchctl", "load", str(plist)], capture_output=True, text=True)
        if result.returncode != 0:
            raise DaemonStateError(f"launchctl load failed: {result.stderr.strip()}")
        return plist

    def uninstall(self) -> Path:
        if sys.platform != "darwin":
            raise UnsupportedPlatformError("Service installation is only supported on macOS (launchd)")
        plist = launchd_plist_path()
        if not plist.exists():
            raise DaemonStateError(f"Service is not installed ({plist} not found)")
        result = subprocess.run(["launchctl", "unload", str(plist)], capture_output=True, text=True)
        if result.returncode != 0:
            logger.warning("launchctl unload failed: %s", result.stderr.strip())
        try:
            plist.unlink()
        except OSError as e:
            raise FilesystemError(f"Cannot remove launch agent ({e.strerror})", plist) from e
        return plist


def _default_pid_path() -> Path:
    return pid_path()


def _course(con, course_id: Optional[int]) -> Optional[Course]:
    if course_id is None:
        return None
    row = con.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
    return Course.from_row(row) if row else None


def _semester(con, semester_id: Optional[int]) -> Optional[Semester]:
    if semester_id is None:
        return None
    row = con.execute("SELECT * FROM semesters WHERE id = ?", (semester_id,)).fetchone()
    return Semester.from_row(row) if row else None
