"""
Process-wide diagnostic log.

Recoverable failures (unreadable descriptor or snapshot files) are appended
here with a timestamp. Library modules log through child loggers of
``vmaudit`` and never attach handlers themselves; the CLI calls
``setup_logger`` once at startup.
"""

import logging
import os
from pathlib import Path
from typing import Optional


APP_NAME = "vmaudit"
DEFAULT_LOG_FILE = Path.home() / ".local" / "share" / APP_NAME / "vmaudit.log"
FALLBACK_LOG_FILE = Path("/tmp") / APP_NAME / "vmaudit.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger or one of its children."""
    if name:
        return logging.getLogger(f"{APP_NAME}.{name}")
    return logging.getLogger(APP_NAME)


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def setup_logger(log_file: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Attach the append-only file handler to the package logger.

    Calling this more than once keeps the first handler.

    Args:
        log_file: Log file path (default: ~/.local/share/vmaudit/vmaudit.log)
        level: Minimum level written to the log

    Returns:
        The configured ``vmaudit`` logger
    """
    logger = get_logger()
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    chosen = Path(log_file) if log_file else DEFAULT_LOG_FILE
    try:
        _ensure_parent(chosen)
        if chosen.exists() and not os.access(chosen, os.W_OK):
            raise PermissionError(f"Log file not writable: {chosen}")
        handler = logging.FileHandler(chosen, mode="a", encoding="utf-8")
    except OSError:
        chosen = FALLBACK_LOG_FILE
        _ensure_parent(chosen)
        handler = logging.FileHandler(chosen, mode="a", encoding="utf-8")

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.setLevel(level)
    logger.addHandler(handler)
    return logger


def current_log_file() -> Optional[str]:
    """Path of the active diagnostic log file, if one is configured"""
    for handler in get_logger().handlers:
        if isinstance(handler, logging.FileHandler):
            return handler.baseFilename
    return None
