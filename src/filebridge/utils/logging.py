"""
Logging configuration for FileBridge.

Console output through Rich (or a plain / JSON formatter), optional file
output, and job/run correlation fields attached to every record emitted while
a transfer run is in progress.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "filebridge"

# (job_id, run_id) of the run currently executing in this context
_job_context: ContextVar[tuple[int | None, int | None]] = ContextVar("filebridge_job_context", default=(None, None))


@contextmanager
def job_context(job_id: int | None, run_id: int | None = None) -> Iterator[None]:
    """
    Tag every log record emitted inside the block with job_id / run_id.

    Usage:
        with job_context(job.id, run.id):
            logger.info("Transferring file")  # record.job_id, record.run_id set
    """
    token = _job_context.set((job_id, run_id))
    try:
        yield
    finally:
        _job_context.reset(token)


def current_job_context() -> tuple[int | None, int | None]:
    return _job_context.get()


class JobContextFilter(logging.Filter):
    """Copy the active job/run ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        job_id, run_id = _job_context.get()
        record.job_id = job_id
        record.run_id = run_id
        return True


def _context_prefix(record: logging.LogRecord) -> str:
    job_id = getattr(record, "job_id", None)
    run_id = getattr(record, "run_id", None)
    if job_id is None:
        return ""
    if run_id is None:
        return f"[job={job_id}] "
    return f"[job={job_id} run={run_id}] "


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        prefix = _context_prefix(record)
        if prefix:
            head, sep, tail = result.partition(": ")
            result = f"{head}{sep}{prefix}{tail}"
        return result


class PlainFormatter(logging.Formatter):
    """``level: timestamp - msg``; errors also carry file:line."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        message = f"{_context_prefix(record)}{record.getMessage()}"
        if record.levelno >= logging.ERROR and record.pathname:
            location = f"{Path(record.pathname).name}:{record.lineno}"
            return f"{record.levelname}: {self.formatTime(record)} - {location} - {message}"
        return f"{record.levelname}: {self.formatTime(record)} - {message}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "filebridge",
        }
        job_id = getattr(record, "job_id", None)
        run_id = getattr(record, "run_id", None)
        if job_id is not None:
            data["job_id"] = job_id
        if run_id is not None:
            data["run_id"] = run_id
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


# Map string level names to logging constants
LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.upper() in LEVEL_MAP:
        return LEVEL_MAP[level.upper()]
    return logging.INFO


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    console_type: str = "rich",
    console_enabled: bool = True,
    file_mode: str = "a",
) -> logging.Logger:
    """
    Configure the ``filebridge`` logger tree.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int
        log_file: Optional file path; parent directories are created
        console_type: ``rich``, ``plain`` or ``json``
        console_enabled: Whether to log to the console at all
        file_mode: ``a`` to append, ``w`` to overwrite

    Returns:
        The configured ``filebridge`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.filters.clear()

    level_int = _parse_level(level)
    logger.setLevel(level_int)
    context_filter = JobContextFilter()

    if console_enabled:
        handler: logging.Handler
        if console_type == "rich":
            handler = RichHandler(
                console=Console(stderr=True),
                level=level_int,
                show_time=True,
                show_path=False,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                log_time_format="[%X]",
            )
            # RichHandler renders the message only, so the prefix goes in the format
            handler.setFormatter(_RichContextFormatter())
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(level_int)
            handler.setFormatter(JSONFormatter() if console_type == "json" else PlainFormatter())
        handler.addFilter(context_filter)
        logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode=file_mode)
        # File captures everything the logger lets through
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        file_handler.addFilter(context_filter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


class _RichContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return f"{_context_prefix(record)}{record.getMessage()}"


def setup_logging_from_config(config: dict[str, Any], project_dir: Path | None = None) -> logging.Logger:
    """
    Configure logging from the ``logging`` section of the FileBridge config.

    Keys: ``level``, ``file`` (relative paths resolve against project_dir),
    ``file_mode``, ``console_enabled``, ``console_type``.
    """
    logging_config = config.get("logging", {}) or {}

    log_file = logging_config.get("file")
    if log_file and project_dir is not None:
        log_path = Path(log_file)
        if not log_path.is_absolute():
            log_file = project_dir / log_path

    return setup_logging(
        level=logging_config.get("level", logging.INFO),
        log_file=log_file,
        console_type=logging_config.get("console_type", "rich"),
        console_enabled=logging_config.get("console_enabled", True),
        file_mode=logging_config.get("file_mode", "a"),
    )


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get a logger in the ``filebridge`` tree.

    Args:
        name: Logger name (default: "filebridge")

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
