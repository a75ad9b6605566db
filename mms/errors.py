"""
Error types shared by every layer.

Domain operations raise these exceptions; the CLI turns them into a red
message and an exit code:

    0  success
    1  validation or not-found
    2  I/O or database failure
    3  daemon state (already running, not running, unsupported platform)

The daemon never lets them escape a tick: it logs and retries.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable


class MmsError(Exception):
    """Base class for all errors raised by mms."""

    exit_code = 2


# ---------------------------------------------------------------------------
# Exit code 1: user input
# ---------------------------------------------------------------------------


class ValidationError(MmsError):
    exit_code = 1


class DateRangeError(ValidationError):
    def __init__(self, start: Any, end: Any, strict: bool = True) -> None:
        rel = "before" if strict else "on or before"
        super().__init__(f"Invalid date range: start {start} must be {rel} end {end}")
        self.start = start
        self.end = end


class NotFoundError(MmsError):
    exit_code = 1

    def __init__(self, kind: str, key: Any) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class MissingConfigFieldError(MmsError):
    exit_code = 1

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = list(fields)
        super().__init__("Missing configuration fields: " + ", ".join(self.fields))


# ---------------------------------------------------------------------------
# Exit code 2: I/O and storage
# ---------------------------------------------------------------------------


class ConfigParseError(MmsError):
    pass


class StorageError(MmsError):
    pass


class FilesystemError(MmsError):
    def __init__(self, message: str, path: str | Path | None = None) -> None:
        if path is not None:
            message = f"{message}: {path}"
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class CorruptedDescriptorError(MmsError):
    def __init__(self, path: str | Path, reason: str) -> None:
        super().__init__(
            f"Descriptor file is corrupted: {path} ({reason}). "
            "Fix it manually or re-run with --force-recreate."
        )
        self.path = Path(path)


# ---------------------------------------------------------------------------
# Exit code 3: daemon state
# ---------------------------------------------------------------------------


class DaemonStateError(MmsError):
    exit_code = 3


class AlreadyRunningError(DaemonStateError):
    def __init__(self, pid: int) -> None:
        super().__init__(f"Daemon is already running (PID {pid})")
        self.pid = pid


class NotRunningError(DaemonStateError):
    def __init__(self) -> None:
        super().__init__("Daemon is not running")


class UnsupportedPlatformError(DaemonStateError):
    pass
