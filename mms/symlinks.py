"""
The two workspace pointers.

    <symlink_path>/cs -> current semester directory
    <symlink_path>/cc -> current course directory

Shell aliases like `cd ~/cc` rely on them. Updating a link removes whatever
is at the link path (stale link or plain file) and creates a fresh one; a
real directory at that path is never removed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mms.config import Config
from mms.errors import FilesystemError

logger = logging.getLogger(__name__)

SEMESTER_LINK = "cs"
COURSE_LINK = "cc"


def semester_link(config: Config) -> Path:
    return config.symlink_dir / SEMESTER_LINK


def course_link(config: Config) -> Path:
    return config.symlink_dir / COURSE_LINK


def _replace_link(link: Path, target: Path) -> Path:
    try:
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.exists():
            raise FilesystemError("Refusing to replace a directory with a symlink", link)
        os.symlink(target, link, target_is_directory=True)
    except OSError as e:
        raise FilesystemError(f"Failed to update symlink ({e.strerror})", link) from e
    logger.debug("Linked %s -> %s", link, target)
    return link


def _remove_link(link: Path) -> bool:
    if not link.is_symlink():
        return False
    try:
        link.unlink()
    except OSError as e:
        raise FilesystemError(f"Failed to remove symlink ({e.strerror})", link) from e
    return True


def update_semester_symlink(config: Config, target: str | Path) -> Path:
    return _replace_link(semester_link(config), Path(target))


def update_course_symlink(config: Config, target: str | Path) -> Path:
    return _replace_link(course_link(config), Path(target))


def remove_semester_symlink(config: Config) -> bool:
    return _remove_link(semester_link(config))


def remove_course_symlink(config: Config) -> bool:
    return _remove_link(course_link(config))


@dataclass
class LinkState:
    path: Path
    target: Optional[Path]

    @property
    def exists(self) -> bool:
        return self.target is not None

    @property
    def is_broken(self) -> bool:
        return self.target is not None and not self.target.exists()


def _read_link(link: Path) -> LinkState:
    if not link.is_symlink():
        return LinkState(link, None)
    target = Path(os.readlink(link))
    if not target.is_absolute():
        target = link.parent / target
    return LinkState(link, target)


def check_symlinks(config: Config) -> tuple[LinkState, LinkState]:
    """Current state of (cs, cc)."""
    return _read_link(semester_link(config)), _read_link(course_link(config))
