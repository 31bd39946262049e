# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Leveled console logging and job-scoped log files.

Every record is rendered as ``[timestamp] [LEVEL] message``. ERROR records
go to stderr, everything else to stdout. Threshold comes from ``LOG_LEVEL``
(0=DEBUG, 1=INFO, 2=WARN, 3=ERROR) unless passed explicitly.

Once ``setup_job_logging`` runs, ``sys.stdout`` and ``sys.stderr`` are
replaced with tee writers, so anything printed afterwards (log records,
``typer.echo``, plain ``print``) also lands in the job's log files.
"""

import logging
import os
import shlex
import socket
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, IO, List, Optional, Union

import typer

ROOT_LOGGER = "slurmctl"
LOG_LEVEL_ENV = "LOG_LEVEL"

# Index in this tuple is the numeric LOG_LEVEL value
LEVELS = (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR)
LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}
LEVEL_COLORS = {
    logging.DEBUG: typer.colors.CYAN,
    logging.INFO: typer.colors.GREEN,
    logging.WARNING: typer.colors.YELLOW,
    logging.ERROR: typer.colors.RED,
    logging.CRITICAL: typer.colors.RED,
}
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
FILE_STAMP_FORMAT = "%Y%m%d_%H%M%S"

logger = logging.getLogger(__name__)


def resolve_level(value: Optional[Union[int, str]] = None) -> int:
    """
    Map a LOG_LEVEL value to a logging level.

    Accepts 0-3 (as int or string) or a level name. Anything unrecognised
    falls back to INFO.

    Example:
        >>> resolve_level("0") == logging.DEBUG
        True
        >>> resolve_level("WARN") == logging.WARNING
        True
    """
    if value is None:
        value = os.environ.get(LOG_LEVEL_ENV)
    if value is None or value == "":
        return logging.INFO

    text = str(value).strip().upper()
    if text.isdigit():
        index = int(text)
        if 0 <= index < len(LEVELS):
            return LEVELS[index]
        return logging.INFO

    by_name = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING,
               "WARNING": logging.WARNING, "ERROR": logging.ERROR}
    return by_name.get(text, logging.INFO)


class ConsoleFormatter(logging.Formatter):
    """Formats ``[timestamp] [LEVEL] message``, optionally colourised."""

    def __init__(self, color: bool = False):
        super().__init__(datefmt=TIMESTAMP_FORMAT)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = LEVEL_NAMES.get(record.levelno, record.levelname)
        line = f"[{timestamp}] [{level}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        if self.color:
            line = typer.style(line, fg=LEVEL_COLORS.get(record.levelno))
        return line


class ConsoleHandler(logging.Handler):
    """Writes to whatever sys.stdout/sys.stderr are at emit time.

    Resolving the streams late means tee redirection and test capture both
    see the records.
    """

    def __init__(self, level: int = logging.NOTSET):
        super().__init__(level)
        self._plain = ConsoleFormatter(color=False)
        self._color = ConsoleFormatter(color=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = sys.stderr if record.levelno >= logging.ERROR else sys.stdout
            formatter = self._color if _isatty(stream) else self._plain
            stream.write(formatter.format(record) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


def _isatty(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Install the console handler on the ``slurmctl`` logger.

    Safe to call repeatedly; only the threshold changes on later calls.

    Args:
        level: LOG_LEVEL-style value; defaults to the environment setting

    Returns:
        The configured ``slurmctl`` logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(resolve_level(level))
    if not any(isinstance(h, ConsoleHandler) for h in root.handlers):
        root.addHandler(ConsoleHandler())
    return root


class TeeStream:
    """Text stream that duplicates every write to a console and a file."""

    def __init__(self, console: IO[str], file: IO[str]):
        self.console = console
        self.file = file

    def write(self, data: str) -> int:
        self.console.write(data)
        self.file.write(data)
        return len(data)

    def writelines(self, lines) -> None:
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        self.console.flush()
        self.file.flush()

    def isatty(self) -> bool:
        return _isatty(self.console)

    def fileno(self) -> int:
        return self.console.fileno()

    @property
    def encoding(self) -> str:
        return getattr(self.console, "encoding", "utf-8")


@dataclass
class JobLogSession:
    """Active job logging: paths plus the streams that were replaced."""

    job_name: str
    log_dir: Path
    log_file: Path
    error_file: Path
    _stdout: Optional[IO[str]] = None
    _stderr: Optional[IO[str]] = None
    _log_fh: Optional[IO[str]] = None
    _err_fh: Optional[IO[str]] = None

    @property
    def active(self) -> bool:
        return self._log_fh is not None

    def close(self) -> None:
        """Restore the original streams and close the log files."""
        if not self.active:
            return
        sys.stdout.flush()
        sys.stderr.flush()
        sys.stdout = self._stdout
        sys.stderr = self._stderr
        self._log_fh.close()
        self._err_fh.close()
        self._log_fh = None
        self._err_fh = None

    def __enter__(self) -> "JobLogSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _file_stamp() -> str:
    return datetime.now().strftime(FILE_STAMP_FORMAT)


def setup_job_logging(
    job_name: str,
    base_dir: Union[str, Path] = "logs",
    job_id: Optional[str] = None,
) -> JobLogSession:
    """
    Create the job log directory and tee stdout/stderr into it.

    Files are ``<base_dir>/jobs/<job_name>/job_<id>_<timestamp>.log`` and
    ``.err``, where ``<id>`` is the scheduler job id or ``local``. Both are
    opened in append mode.

    Args:
        job_name: Job name used for the directory
        base_dir: Base log directory
        job_id: Scheduler job id (defaults to $SLURM_JOB_ID, then "local")

    Returns:
        JobLogSession; call ``close()`` to stop teeing
    """
    if not job_name:
        raise ValueError("Job name required")

    log_dir = Path(base_dir) / "jobs" / job_name
    log_dir.mkdir(parents=True, exist_ok=True)

    job_id = job_id or os.environ.get("SLURM_JOB_ID") or "local"
    stamp = _file_stamp()
    log_file = log_dir / f"job_{job_id}_{stamp}.log"
    error_file = log_dir / f"job_{job_id}_{stamp}.err"

    log_fh = open(log_file, "a", buffering=1)
    err_fh = open(error_file, "a", buffering=1)

    session = JobLogSession(
        job_name=job_name,
        log_dir=log_dir,
        log_file=log_file,
        error_file=error_file,
        _stdout=sys.stdout,
        _stderr=sys.stderr,
        _log_fh=log_fh,
        _err_fh=err_fh,
    )
    sys.stdout = TeeStream(session._stdout, log_fh)
    sys.stderr = TeeStream(session._stderr, err_fh)

    logger.info(f"Logging initialized for job: {job_name}")
    logger.info(f"Log file: {log_file}")
    logger.info(f"Error file: {error_file}")
    return session


def setup_script_logging(script_name: str, base_dir: Union[str, Path] = "logs") -> Path:
    """
    Attach an append-mode file handler for a helper script.

    Returns:
        Path of ``<base_dir>/scripts/<script_name>/script_<timestamp>.log``
    """
    if not script_name:
        raise ValueError("Script name required")

    script_dir = Path(base_dir) / "scripts" / script_name
    script_dir.mkdir(parents=True, exist_ok=True)
    log_file = script_dir / f"script_{_file_stamp()}.log"

    handler = logging.FileHandler(log_file, mode="a")
    handler.setFormatter(ConsoleFormatter(color=False))
    logging.getLogger(ROOT_LOGGER).addHandler(handler)

    logger.info(f"Script logging initialized: {script_name}")
    logger.info(f"Log file: {log_file}")
    return log_file


def log_duration(description: str, operation: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Run an operation and log how long it took and whether it succeeded.

    The operation fails if it raises or returns False; any other result,
    including a non-zero int, counts as success. Exceptions are logged
    and re-raised.

    Returns:
        Whatever the operation returned
    """
    logger.info(f"Starting: {description}")
    start = time.monotonic()
    try:
        result = operation(*args, **kwargs)
    except Exception as e:
        duration = int(time.monotonic() - start)
        logger.error(f"Failed: {description} (duration: {duration}s, error: {e})")
        raise

    duration = int(time.monotonic() - start)
    if result is not False:
        logger.info(f"Completed: {description} (duration: {duration}s)")
    else:
        logger.error(f"Failed: {description} (duration: {duration}s, result: {result})")
    return result


def log_separator(char: str = "=", length: int = 80) -> None:
    typer.echo(char * length)


def log_job_header(job_name: str, job_id: Optional[str] = None) -> None:
    log_separator("=")
    logger.info(f"Job Name: {job_name}")
    logger.info(f"Job ID: {job_id or os.environ.get('SLURM_JOB_ID', 'N/A')}")
    logger.info(f"Node: {os.environ.get('SLURM_NODELIST') or socket.gethostname()}")
    logger.info(f"User: {os.environ.get('USER', 'unknown')}")
    logger.info(f"Working Directory: {Path.cwd()}")
    logger.info(f"Start Time: {datetime.now().strftime(TIMESTAMP_FORMAT)}")
    log_separator("=")


def log_job_footer(exit_code: int = 0) -> None:
    log_separator("=")
    if exit_code == 0:
        logger.info("Job completed successfully")
    else:
        logger.error(f"Job failed with exit code: {exit_code}")
    logger.info(f"End Time: {datetime.now().strftime(TIMESTAMP_FORMAT)}")
    log_separator("=")


def log_command(args: List[str]) -> None:
    logger.info(f"Executing: {shlex.join(args)}")


def log_file_op(operation: str, path: Union[str, Path]) -> None:
    logger.info(f"File {operation}: {path}")
