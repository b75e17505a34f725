"""Logging for the ``querychat`` package.

Modules log through ``get_logger(__name__)``; the CLI calls ``setup_logger``
once per process. The console only shows warnings unless ``--verbose`` is
given, while the rotating file keeps turn transitions and skipped chunks.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__all__ = ["setup_logger", "get_logger", "LOG_FILE"]

PACKAGE_LOGGER = "querychat"
LOG_FILE = Path("~/.querychat/logs/querychat.log").expanduser()
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3

# SDK and HTTP client loggers that are chatty at INFO.
NOISY_LOGGERS = ("litellm", "LiteLLM", "httpx", "urllib3", "google_genai")


def setup_logger(verbose: bool = False, log_file: Optional[Path] = LOG_FILE) -> logging.Logger:
    """Attach console and file handlers to the package logger.

    Passing ``log_file=None`` keeps everything on the console. Calling this
    again replaces the previous handlers.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("[%(levelname).1s] %(message)s"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
