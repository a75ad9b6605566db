"""
Logging setup.

Every module logs through logging.getLogger(__name__), i.e. below the "mms"
logger. This module decides where those records go:

- interactive commands: a rich console handler on stderr
- the daemon: additionally a plain log file in the data directory
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "mms"


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # calling twice (tests, `service run` after `main`) must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
        markup=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def enable_console_info() -> None:
    """Show INFO records on the console (used by `service run` in the foreground)."""
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        if isinstance(handler, RichHandler) and handler.level > logging.INFO:
            handler.setLevel(logging.INFO)
