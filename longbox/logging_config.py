"""Logging setup for Longbox.

The console gets a Rich handler at the configured level; everything down to
DEBUG also goes to a rotating ``longbox.log`` in the data directory so a scan
can be reconstructed after the fact.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


LOG_FILE_NAME = "longbox.log"
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"

# Third-party loggers that drown out scan output at DEBUG.
NOISY_LOGGERS = ("sqlalchemy.engine", "PIL", "rarfile")

_configured = False


def _default_log_dir() -> Path:
    # Mirrors config.DATA_DIR; importing config here would be circular.
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


def _file_handler(log_dir: Path, max_mb: int, backups: int) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: int) -> RichHandler:
    theme = Theme({"logging.level.info": "bold cyan", "logging.level.warning": "yellow"})
    handler = RichHandler(
        console=Console(theme=theme, stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    max_mb: int = 10,
    backups: int = 5,
) -> None:
    """Attach the file and console handlers to the root logger.

    Only the first call has any effect, so every CLI command can call it
    without stacking handlers.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(_file_handler(log_dir or _default_log_dir(), max_mb, backups))
    root.addHandler(_console_handler(getattr(logging, level.upper(), logging.INFO)))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # alembic attaches its own handlers when run from alembic.ini
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
