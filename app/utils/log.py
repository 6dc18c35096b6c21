"""Root logging for the pipeline, CLI and API.

``get_logger`` installs a stdout handler the first time any module asks for a
logger. Entry points call ``configure_logging`` once settings are loaded to
apply ``LOG_LEVEL`` and attach the dated file under ``LOG_DIR``.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import date
from pathlib import Path

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console_ready = False
_file_handler: logging.FileHandler | None = None


def _level(name: str | None) -> int:
    resolved = logging.getLevelName((name or "INFO").strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _install_console() -> None:
    global _console_ready
    _console_ready = True
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(_level(os.environ.get("LOG_LEVEL")))


def get_logger(name: str) -> logging.Logger:
    if not _console_ready:
        _install_console()
    return logging.getLogger(name)


def log_file_for(log_dir: str | Path, day: date | None = None) -> Path:
    return Path(log_dir).expanduser() / f"job_sync_{(day or date.today()).isoformat()}.log"


def configure_logging(level: str | None, log_dir: str | Path | None) -> Path | None:
    """Set the root level and point the file handler at today's file in ``log_dir``.

    Safe to call repeatedly; the handler is only swapped when the target file
    changes. An empty ``log_dir`` removes file logging. Returns the file in use.
    """
    global _file_handler
    if not _console_ready:
        _install_console()
    root = logging.getLogger()
    root.setLevel(_level(level))

    target = log_file_for(log_dir) if log_dir else None
    if _file_handler is not None:
        if target is not None and _file_handler.baseFilename == os.path.abspath(target):
            return target
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if target is None:
        return None

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(target, encoding="utf-8")
    except OSError as exc:
        root.warning("File logging disabled: %s", exc)
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    _file_handler = handler
    return target
