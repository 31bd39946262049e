# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Monitor command for slurmctl.

Shows the job queue, a single job's record, a job's logs, or a live view.
"""

import logging
from typing import Optional

import typer

from slurmctl.commands import bootstrap, fail, require_commands
from slurmctl.config import current_user
from slurmctl.errors import SlurmctlError
from slurmctl.jobs.monitor import JobMonitor
from slurmctl.scheduler import CONTROL, QUEUE, Scheduler

logger = logging.getLogger(__name__)

app = typer.Typer(help="Monitor Slurm jobs and view their status")


@app.command()
def monitor(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Show jobs for a specific user (default: $USER)"),
    job: Optional[str] = typer.Option(None, "--job", "-j", help="Show details for a specific job ID"),
    logs: Optional[str] = typer.Option(None, "--logs", "-l", help="Show logs for a specific job ID"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Watch jobs in real-time"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Show all jobs (including completed)"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Monitor Slurm jobs.

    Examples:
        slurm-monitor                  # Show your running jobs
        slurm-monitor --watch          # Watch jobs in real-time
        slurm-monitor --job 12345      # Show details for job 12345
        slurm-monitor --logs 12345     # Show logs for job 12345
    """
    settings = bootstrap(config_path)
    scheduler = Scheduler()
    job_monitor = JobMonitor(
        scheduler,
        settings.logs_dir,
        tail_lines=settings.monitor.tail_lines,
        watch_interval=settings.monitor.watch_interval,
    )
    user = user or current_user()

    if logs:
        job_monitor.logs(logs)
        return

    if job:
        require_commands(scheduler, CONTROL)
        try:
            job_monitor.details(job)
        except SlurmctlError as e:
            fail(e)
        return

    require_commands(scheduler, QUEUE)
    try:
        if watch:
            try:
                job_monitor.watch(user)
            except KeyboardInterrupt:
                typer.echo()
                logger.info("Stopped watching")
        else:
            job_monitor.list(user, include_completed=show_all)
    except SlurmctlError as e:
        fail(e)


def main():
    """Entry point for slurm-monitor."""
    app()


if __name__ == "__main__":
    main()
