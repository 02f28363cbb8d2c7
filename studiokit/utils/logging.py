"""
Package-level logging configuration.

* Rich console output (colourised, nicely formatted).
* Rotating **JSON** log file under ``<studios_home>/logs`` (or
  ``$STUDIOKIT_LOG_DIR`` when set).

The public helper :func:`setup_logging` wires everything and should be the
sole entry-point used by the CLI.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

import structlog
from rich.logging import RichHandler
from structlog.dev import ConsoleRenderer as StructlogConsoleRenderer
from structlog.stdlib import LoggerFactory

from studiokit.models import Verbosity

__all__ = ["setup_logging", "log_dir_for"]

_LEVELS = {
    Verbosity.QUIET: logging.WARNING,
    Verbosity.NORMAL: logging.INFO,
    Verbosity.VERBOSE: logging.DEBUG,
}


def log_dir_for(studios_home: Path | None) -> Path:
    """Return the directory that receives the JSON log file.

    ``$STUDIOKIT_LOG_DIR`` wins; otherwise ``<studios_home>/logs``; otherwise
    the package-local ``logs/`` folder.
    """
    env_dir = os.environ.get("STUDIOKIT_LOG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    if studios_home is not None:
        return Path(studios_home) / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _json_file_handler(logdir: Path, level: int) -> logging.Handler:
    """Return a rotating handler writing ``studiokit.log`` inside *logdir*."""
    logdir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=logdir / "studiokit.log",
        maxBytes=5_000_000,  # ~5 MB before rollover
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    verbosity: Verbosity = Verbosity.NORMAL,
    *,
    studios_home: Path | None = None,
    log_dir: Optional[Path] = None,
) -> None:
    """Configure rich console logging plus the rotating JSON file.

    Args:
        verbosity: Console verbosity; ``quiet`` shows warnings only and
            ``verbose`` adds debug events.
        studios_home: Used to place the log directory when *log_dir* is
            not given.
        log_dir: Explicit log directory.
    """
    console_lvl = _LEVELS[Verbosity(verbosity)]

    handlers: list[logging.Handler] = [
        RichHandler(
            level=console_lvl,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
            show_path=False,
        ),
        _json_file_handler(log_dir or log_dir_for(studios_home), logging.DEBUG),
    ]

    logging.basicConfig(
        level=logging.DEBUG,  # root logger stays at DEBUG
        handlers=handlers,
        format="%(message)s",  # Rich/structlog handle formatting
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            (
                StructlogConsoleRenderer(colors=False)
                if verbosity is not Verbosity.QUIET
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(console_lvl),
        logger_factory=LoggerFactory(),
    )
