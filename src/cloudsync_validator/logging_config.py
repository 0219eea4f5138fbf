"""
Logging Configuration

Log lines carry the id of the task being validated, so a batch log read
after a cron run can be followed task by task.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, TextIO

LOGGER_NAME = "cloudsync_validator"

_current_task: ContextVar[Optional[int]] = ContextVar("cloudsync_task_id", default=None)


@contextmanager
def task_context(task_id: int) -> Iterator[None]:
    """Tag every log record emitted inside the block with task_id"""
    token = _current_task.set(task_id)
    try:
        yield
    finally:
        _current_task.reset(token)


class TaskContextFilter(logging.Filter):
    """Copies the current task id onto each record as `task_id`"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "task_id"):
            record.task_id = _current_task.get()
        return True


class ValidatorFormatter(logging.Formatter):
    """[2024-05-01 02:00:13] WARNING  [task 3] [cloudsync_validator.engines.rclone] message"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        super().__init__()
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, "isatty") and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        line = f"[{when}] {level}"
        task_id = getattr(record, "task_id", None)
        if task_id is not None:
            line += f" [task {task_id}]"
        line += f" [{record.name}] {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging for the validator.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for log output (never colored)
        use_colors: Enable colored console output

    Console output goes to stderr; stdout is reserved for reports.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    # Filters sit on the handlers so records from child loggers are tagged too
    handlers = [(logging.StreamHandler(sys.stderr), ValidatorFormatter(use_colors, sys.stderr))]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append((logging.FileHandler(path), ValidatorFormatter(use_colors=False)))

    for handler, formatter in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(TaskContextFilter())
        logger.addHandler(handler)

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.debug("Logging configured")
    return logger
