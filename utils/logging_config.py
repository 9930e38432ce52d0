"""
Logging setup for ordr-fm.

A run logs to the console and to a rotating ``ordr.log`` in the output
directory. In worker-pool mode each worker thread additionally gets a
private ``worker.log`` next to its databases, filtered to that thread.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

APP_LOGGER_NAME = 'ordr'

# Loggers of libraries that are chatty at INFO level
QUIET_LIBRARIES = ('mutagen', 'sqlite3')


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def _parse_level(level: str) -> int:
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")
    return numeric_level


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console_output: bool = True
) -> logging.Logger:
    """
    Route every record of the run to the console and the run log.

    Handlers already on the root logger are detached.

    Args:
        level: Level name such as 'INFO' or 'DEBUG'
        log_file: Run log path; rotated once it reaches max_file_size
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated run logs to keep
        console_output: Also echo records to stdout

    Returns:
        The application logger
    """
    numeric_level = _parse_level(level)

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            str(log_file), maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'
        ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(_formatter())
        root_logger.addHandler(handler)

    configure_library_logging()

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.debug(f"Logging at {logging.getLevelName(numeric_level)}, run log: {log_file or 'none'}")
    return app_logger


class _ThreadFilter(logging.Filter):
    """Only pass records emitted from one thread."""

    def __init__(self, thread_id: int):
        super().__init__()
        self.thread_id = thread_id

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread_id


def add_worker_log_file(log_file: Path, thread_id: int, level: int = logging.DEBUG) -> logging.Handler:
    """
    Attach a private log file that only receives one worker thread's records.

    The caller is responsible for removing the returned handler with
    ``remove_log_handler`` once the worker finishes.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(str(log_file), encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    handler.addFilter(_ThreadFilter(thread_id))

    logging.getLogger().addHandler(handler)
    return handler


def remove_log_handler(handler: logging.Handler):
    """Detach and close a handler added by ``add_worker_log_file``."""
    logging.getLogger().removeHandler(handler)
    handler.close()


def _progress_step(total: int) -> int:
    # Roughly ten reports for small batches, twenty for medium, a hundred for large
    divisor = 10 if total <= 100 else 20 if total <= 1000 else 100
    return max(1, total // divisor)


def log_processing_progress(
    current: int,
    total: int,
    logger: logging.Logger,
    message_template: str = "Processed {current}/{total} albums ({percentage:.1f}%)"
):
    """Log batch progress every few percent and on the last item."""
    if total <= 0:
        return

    if current == total or current % _progress_step(total) == 0:
        logger.info(message_template.format(
            current=current, total=total, percentage=100.0 * current / total
        ))


def configure_library_logging():
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
