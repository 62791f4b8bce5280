"""
Append-only error log shared by both tools.

One line per handler failure: ``<timestamp> - <message> - <details>``.
The log directory and file are only created when the first failure is written.
"""

import logging
from pathlib import Path

from .config import DEFAULT_LOG_DIR

LOGGER_NAME = "entra_toolkit.errors"
LOG_FILE_NAME = "error_log.txt"


class _LazyFileHandler(logging.FileHandler):
    """FileHandler that also creates the parent directory on first emit."""

    def _open(self):
        Path(self.baseFilename).parent.mkdir(parents=True, exist_ok=True)
        return super()._open()


def configure_error_log(log_dir: Path = DEFAULT_LOG_DIR) -> Path:
    """Point the error logger at log_dir/error_log.txt and return that path."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_path = Path(log_dir) / LOG_FILE_NAME
    handler = _LazyFileHandler(log_path, encoding="utf-8", delay=True)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.ERROR)
    # Console output is rendered by rich; keep log records out of stderr
    logger.propagate = False
    return log_path


def log_error(message: str, details: object = "") -> None:
    logging.getLogger(LOGGER_NAME).error("%s - %s", message, details)
