# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Deferred cleanup for jobs and CLI programs.

Tasks run once, in registration order, at process exit or when SIGINT /
SIGTERM arrives. A failing task is logged and counted; it never stops the
tasks after it.

Typical use inside a job entry point::

    registry = CleanupRegistry()
    with registry.scope():
        ...
        registry.register(f"remove {tmp}", cleanup_files, tmp)
"""

import atexit
import json
import logging
import shutil
import signal
import sys
import tarfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from slurmctl.context import JobContext
from slurmctl.logger import log_file_op

logger = logging.getLogger(__name__)

# Conventional 128 + signal number exit codes
SIGNAL_EXIT_CODES = {
    signal.SIGINT: 130,
    signal.SIGTERM: 143,
}


@dataclass
class CleanupTask:
    """A deferred action with a human-readable description."""

    description: str
    action: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)

    def __call__(self) -> Any:
        return self.action(*self.args, **self.kwargs)


class CleanupRegistry:
    """Collects shutdown actions and runs them exactly once."""

    def __init__(self):
        self.tasks: List[CleanupTask] = []
        self._trap_installed = False
        self._running = False
        self._pending_exit: Optional[int] = None

    def __len__(self) -> int:
        return len(self.tasks)

    def register(self, description: str, action: Callable[..., Any], *args, **kwargs) -> CleanupTask:
        """
        Append a cleanup task.

        Args:
            description: What the task does, used in log lines
            action: Callable to invoke at cleanup time
            *args, **kwargs: Passed to the callable

        Returns:
            The registered task
        """
        task = CleanupTask(description=description, action=action, args=args, kwargs=kwargs)
        self.tasks.append(task)
        logger.debug(f"Registered cleanup task: {description}")
        return task

    def execute_all(self, exit_code: int = 0) -> int:
        """
        Run every registered task, then clear the registry.

        A task fails if it raises or returns False. Calling this again with
        nothing registered is a no-op.

        Args:
            exit_code: Exit code of the program being cleaned up (logged only)

        Returns:
            Number of failed tasks
        """
        if not self.tasks:
            logger.debug("No cleanup tasks registered")
            return 0

        tasks, self.tasks = self.tasks, []
        total = len(tasks)
        logger.info(f"Executing cleanup tasks ({total} tasks, exit code {exit_code})...")

        failed = 0
        self._running = True
        try:
            for task in tasks:
                logger.debug(f"Cleanup: {task.description}")
                try:
                    result = task()
                except Exception as e:
                    logger.warning(f"Cleanup task failed: {task.description} ({e})")
                    failed += 1
                    continue
                if result is False:
                    logger.warning(f"Cleanup task failed: {task.description}")
                    failed += 1
                else:
                    logger.debug(f"Cleanup task succeeded: {task.description}")
        finally:
            self._running = False

        if failed == 0:
            logger.info("All cleanup tasks completed successfully")
        else:
            logger.warning(f"Some cleanup tasks failed ({failed}/{total} failed)")

        if self._pending_exit is not None:
            code, self._pending_exit = self._pending_exit, None
            sys.exit(code)
        return failed

    def _handle_signal(self, signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        code = SIGNAL_EXIT_CODES.get(signum, 128 + signum)
        if self._running:
            # Exit once the current cleanup pass has finished every task
            logger.warning(f"Received {name} during cleanup; exiting when cleanup completes")
            self._pending_exit = code
            return
        logger.warning(f"Received {name}")
        # SystemExit unwinds through scope() / atexit, which run the tasks
        sys.exit(code)

    def _run_at_exit(self) -> None:
        self.execute_all(0)

    def install_trap(self) -> None:
        """Run cleanup at interpreter exit and turn SIGINT/SIGTERM into exits 130/143."""
        if self._trap_installed:
            return
        atexit.register(self._run_at_exit)
        for signum in SIGNAL_EXIT_CODES:
            signal.signal(signum, self._handle_signal)
        self._trap_installed = True
        logger.debug("Cleanup trap registered")

    @contextmanager
    def scope(self) -> Iterator["CleanupRegistry"]:
        """Guarantee a cleanup pass on every exit path of the wrapped block."""
        self.install_trap()
        exit_code = 0
        try:
            yield self
        except SystemExit as e:
            exit_code = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
            raise
        except BaseException:
            exit_code = 1
            raise
        finally:
            self.execute_all(exit_code)


def cleanup_files(*paths: Union[str, Path]) -> None:
    """Remove files or directory trees; missing paths are skipped."""
    logger.info("Cleaning up temporary files...")
    for item in paths:
        path = Path(item)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            log_file_op("removed", path)
        elif path.exists() or path.is_symlink():
            path.unlink()
            log_file_op("removed", path)
        else:
            logger.debug(f"Already removed or doesn't exist: {path}")


def cleanup_temp_dir(context: JobContext) -> None:
    if context.temp_dir and context.temp_dir.is_dir():
        logger.info(f"Cleaning up temporary directory: {context.temp_dir}")
        shutil.rmtree(context.temp_dir)


def archive_logs(
    log_dir: Union[str, Path],
    dest: Optional[Union[str, Path]] = None,
    job_id: Optional[str] = None,
) -> Optional[Path]:
    """
    Archive a log directory as ``logs_<job_id>_<timestamp>.tar.gz``.

    Args:
        log_dir: Directory to archive
        dest: Archive directory (defaults to a sibling ``archive`` directory)
        job_id: Id used in the archive name (defaults to "local")

    Returns:
        Path of the archive, or None if the log directory does not exist
    """
    log_dir = Path(log_dir)
    if not log_dir.is_dir():
        logger.warning(f"Log directory not found: {log_dir}")
        return None

    dest = Path(dest) if dest else log_dir.parent / "archive"
    dest.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    archive = dest / f"logs_{job_id or 'local'}_{stamp}.tar.gz"

    logger.info(f"Archiving logs to: {archive}")
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(log_dir, arcname=log_dir.name)
    logger.info("Log archive created successfully")
    return archive


def cleanup_old_logs(log_dir: Union[str, Path], days_to_keep: int = 30) -> int:
    """
    Delete files under ``log_dir`` last modified more than ``days_to_keep`` days ago.

    Returns:
        Number of files removed (0 if the directory does not exist)
    """
    log_dir = Path(log_dir)
    if not log_dir.is_dir():
        logger.warning(f"Log directory not found: {log_dir}")
        return 0

    logger.info(f"Cleaning up logs older than {days_to_keep} days in: {log_dir}")
    cutoff = time.time() - days_to_keep * 86400
    old_files = [p for p in log_dir.rglob("*") if p.is_file() and p.stat().st_mtime < cutoff]

    if not old_files:
        logger.info("No old logs to clean up")
        return 0

    logger.info(f"Found {len(old_files)} old log files to remove")
    for path in old_files:
        path.unlink()
    logger.info("Old logs cleaned up")
    return len(old_files)


def save_job_metadata(output_file: Union[str, Path], context: JobContext, exit_code: int = 0) -> Path:
    """Write a JSON summary of the job (id, name, node, user, times, exit code)."""
    output_file = Path(output_file)
    logger.info(f"Saving job metadata to: {output_file}")

    start = context.env.get("SLURM_JOB_START_TIME")
    now = datetime.now()
    started = datetime.fromtimestamp(int(start)) if start and start.isdigit() else now

    metadata = {
        "job_id": context.job_id or "N/A",
        "job_name": context.env.get("SLURM_JOB_NAME", "N/A"),
        "node": context.node,
        "user": context.user,
        "start_time": started.strftime("%Y-%m-%d %H:%M:%S"),
        "end_time": now.strftime("%Y-%m-%d %H:%M:%S"),
        "working_directory": str(Path.cwd()),
        "exit_code": exit_code,
    }
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(json.dumps(metadata, indent=2) + "\n")
    logger.info("Job metadata saved")
    return output_file
