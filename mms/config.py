"""
Configuration file handling.

The configuration lives in <config dir>/mms/config.toml:

    [general]
    university_base_path = "~/Documents/02_university"
    default_location = "Uni Tübingen"
    symlink_path = "~/cc"
    student_name = "..."
    student_id = "..."
    default_editor = "vim"
    default_pdf_viewer = "zathura"

    [service]
    schedule_check_interval_minutes = 2
    auto_commit_on_lecture_end = false
    auto_clear_todos_on_next_lecture = true

    [git]
    author_name = "Student"
    author_email = "student@example.com"

    [categories.ML_FOUND]
    required_ects = 24
    counts_towards_average = true

Design rationale:
- a missing file is not an error: defaults are returned and the CLI asks for
  the required personal fields on first use (see missing_fields())
- a file that is not valid TOML IS an error (ConfigParseError), so a typo
  never silently resets the user's settings
- unknown keys are ignored so older/newer files keep loading
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from mms.errors import ConfigParseError, FilesystemError, MissingConfigFieldError
from mms.paths import config_path, expand_path

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "student_name",
    "student_id",
    "university_base_path",
    "default_editor",
    "default_pdf_viewer",
    "default_location",
)


@dataclass
class GeneralConfig:
    university_base_path: str = "~/Documents/02_university"
    default_location: str = "Uni Tübingen"
    symlink_path: str = "~/cc"
    student_name: str = ""
    student_id: str = ""
    default_editor: str = ""
    default_pdf_viewer: str = ""


@dataclass
class ServiceConfig:
    schedule_check_interval_minutes: int = 2
    auto_commit_on_lecture_end: bool = False
    auto_clear_todos_on_next_lecture: bool = True


@dataclass
class GitConfig:
    author_name: str = "Student"
    author_email: str = "student@example.com"


@dataclass
class CategoryConfig:
    required_ects: int
    counts_towards_average: bool = True


@dataclass
class Config:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    git: GitConfig = field(default_factory=GitConfig)
    categories: dict[str, CategoryConfig] = field(default_factory=dict)

    # -- derived values -----------------------------------------------------

    @property
    def university_base_path(self) -> Path:
        return expand_path(self.general.university_base_path)

    @property
    def symlink_dir(self) -> Path:
        return expand_path(self.general.symlink_path)

    @property
    def editor(self) -> str:
        """$EDITOR wins over the configured editor."""
        return os.environ.get("EDITOR", "").strip() or self.general.default_editor

    @property
    def check_interval_seconds(self) -> int:
        return max(1, int(self.service.schedule_check_interval_minutes)) * 60

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        for name in REQUIRED_FIELDS:
            value = self.editor if name == "default_editor" else getattr(self.general, name)
            if not str(value or "").strip():
                missing.append(name)
        return missing

    def require_complete(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise MissingConfigFieldError(missing)

    # -- persistence --------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        cfg_path = Path(path) if path is not None else config_path()
        if not cfg_path.exists():
            logger.debug("No config file at %s, using defaults", cfg_path)
            return cls()

        try:
            data = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
        except OSError as e:
            raise FilesystemError(f"Failed to read config file ({e.strerror})", cfg_path) from e
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
            raise ConfigParseError(f"Failed to parse config file {cfg_path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        try:
            general = GeneralConfig(**_known(GeneralConfig, data.get("general", {})))
            service = ServiceConfig(**_known(ServiceConfig, data.get("service", {})))
            git = GitConfig(**_known(GitConfig, data.get("git", {})))
            categories = {
                str(name): CategoryConfig(
                    required_ects=int(raw.get("required_ects", 0)),
                    counts_towards_average=bool(raw.get("counts_towards_average", True)),
                )
                for name, raw in (data.get("categories") or {}).items()
                if isinstance(raw, dict)
            }
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigParseError(f"Invalid configuration values: {e}") from e

        return cls(general=general, service=service, git=git, categories=categories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "general": asdict(self.general),
            "service": asdict(self.service),
            "git": asdict(self.git),
            "categories": {name: asdict(cat) for name, cat in sorted(self.categories.items())},
        }

    def save(self, path: str | Path | None = None) -> Path:
        cfg_path = Path(path) if path is not None else config_path()
        try:
            cfg_path.parent.mkdir(parents=True, exist_ok=True)
            cfg_path.write_text(tomli_w.dumps(self.to_dict()), encoding="utf-8")
        except OSError as e:
            raise FilesystemError(f"Failed to write config file ({e.strerror})", cfg_path) from e
        logger.debug("Saved config to %s", cfg_path)
        return cfg_path


def _known(kind: type, raw: Any) -> dict[str, Any]:
    """Keep only keys the dataclass knows about."""
    if not isinstance(raw, dict):
        return {}
    names = kind.__dataclass_fields__.keys()
    return {k: v for k, v in raw.items() if k in names}


def init_default_config() -> Config:
    """Defaults plus the example degree categories of a typical ML master."""
    config = Config()
    config.categories = {
        "ML_FOUND": CategoryConfig(required_ects=24, counts_towards_average=True),
        "ML_DIV": CategoryConfig(required_ects=36, counts_towards_average=True),
        "ML_CS": CategoryConfig(required_ects=18, counts_towards_average=True),
        "ML_EXP": CategoryConfig(required_ects=12, counts_towards_average=False),
        "ML_THESIS": CategoryConfig(required_ects=30, counts_towards_average=True),
    }
    return config
