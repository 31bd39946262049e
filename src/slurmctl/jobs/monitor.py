# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Job status, details, logs and the watch loop."""

import logging
import time
from collections import deque
from pathlib import Path
from typing import List

import click
import typer

from slurmctl.logger import log_separator
from slurmctl.scheduler import JobHandle, Scheduler

logger = logging.getLogger(__name__)

ACTIVE_STATES = ("PENDING", "RUNNING")
ALL_STATES = ("all",)

# (header, width); 0 means the column is not padded
COLUMNS = (
    ("JOBID", 18),
    ("PARTITION", 9),
    ("NAME", 30),
    ("USER", 8),
    ("STATE", 8),
    ("TIME", 10),
    ("TIME_LIMI", 9),
    ("NODES", 6),
    ("NODELIST(REASON)", 0),
)

STATE_LEGEND = "Job states: PD=Pending, R=Running, CG=Completing, CD=Completed"


def _cell(value: str, width: int) -> str:
    if not width:
        return value
    return value[:width].rjust(width)


def format_job_table(jobs: List[JobHandle]) -> List[str]:
    """Render jobs as fixed-width lines, header first."""
    lines = [" ".join(_cell(header, width) for header, width in COLUMNS)]
    for job in jobs:
        values = (
            job.id,
            job.partition,
            job.name,
            job.user,
            job.state.value,
            job.elapsed,
            job.time_limit,
            job.node_count,
            job.reason,
        )
        lines.append(" ".join(_cell(v, w) for v, (_, w) in zip(values, COLUMNS)))
    return lines


def tail(path: Path, lines: int = 50) -> List[str]:
    """Last ``lines`` lines of a text file."""
    with open(path, errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]


class JobMonitor:
    """Read-only views of the scheduler queue and the job log tree."""

    def __init__(
        self,
        scheduler: Scheduler,
        logs_dir: Path,
        tail_lines: int = 50,
        watch_interval: float = 5.0,
    ):
        self.scheduler = scheduler
        self.logs_dir = Path(logs_dir)
        self.tail_lines = tail_lines
        self.watch_interval = watch_interval

    def list(self, user: str, include_completed: bool = False) -> List[JobHandle]:
        """
        Print a user's jobs as a table.

        Only PENDING and RUNNING jobs are shown unless ``include_completed``.

        Returns:
            The jobs that were displayed
        """
        logger.info(f"Jobs for user: {user}")
        log_separator("=")

        states = ALL_STATES if include_completed else ACTIVE_STATES
        jobs = self.scheduler.list_jobs(user, states=states)
        for line in format_job_table(jobs):
            typer.echo(line)

        typer.echo()
        logger.info(STATE_LEGEND)
        return jobs

    def details(self, job_id: str) -> str:
        """
        Print the full scheduler record of a job.

        Raises:
            NotFoundError: If the scheduler reports no such job
        """
        logger.info(f"Job details for: {job_id}")
        log_separator("=")
        record = self.scheduler.show_job(job_id)
        typer.echo(record)
        return record

    def find_logs(self, job_id: str) -> List[Path]:
        """Files anywhere under the log tree whose name contains the job id."""
        if not self.logs_dir.is_dir():
            return []
        return sorted(
            p for p in self.logs_dir.rglob(f"*{job_id}*") if p.is_file()
        )

    def logs(self, job_id: str) -> List[Path]:
        """
        Print the tail of every log file matching a job id.

        Missing logs are reported as a warning, not an error.

        Returns:
            The log files that were shown
        """
        logger.info(f"Searching for logs of job: {job_id}")
        log_separator("=")

        files = self.find_logs(job_id)
        if not files:
            logger.warning(f"No log files found for job {job_id} in {self.logs_dir}")
            return []

        for path in files:
            typer.echo()
            logger.info(f"Log file: {path}")
            log_separator("-")
            try:
                for line in tail(path, self.tail_lines):
                    typer.echo(line)
            except OSError as e:
                logger.warning(f"Could not read {path}: {e}")
            log_separator("-")
        return files

    def watch(self, user: str) -> None:
        """Redraw ``list(user)`` every ``watch_interval`` seconds until interrupted."""
        logger.info(f"Watching jobs for user: {user} (press Ctrl+C to stop)")
        logger.info(f"Updating every {self.watch_interval:g} seconds...")

        while True:
            click.clear()
            self.list(user, include_completed=False)
            time.sleep(self.watch_interval)
