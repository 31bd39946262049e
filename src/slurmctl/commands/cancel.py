# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Cancel command for slurmctl.

Cancels jobs by id, by name, or every job of the current user.
"""

import logging
from typing import List, Optional

import typer

from slurmctl.commands import bootstrap, fail, require_commands
from slurmctl.config import current_user
from slurmctl.errors import SlurmctlError
from slurmctl.jobs.canceller import JobCanceller
from slurmctl.scheduler import CANCEL, QUEUE, Scheduler

logger = logging.getLogger(__name__)

app = typer.Typer(help="Cancel one or more Slurm jobs")

USAGE = "Usage: slurm-cancel <job_id>... [--all] [--name NAME] [--force]"


@app.command()
def cancel(
    job_ids: Optional[List[str]] = typer.Argument(None, help="Job ID(s) to cancel"),
    cancel_all: bool = typer.Option(False, "--all", "-a", help="Cancel all your jobs"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Cancel all jobs with a specific name"),
    force: bool = typer.Option(False, "--force", "-f", help="Cancel without confirmation"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Cancel Slurm jobs.

    Examples:
        slurm-cancel 12345
        slurm-cancel 12345 12346 12347
        slurm-cancel --name egraphs-dataset
        slurm-cancel --all
    """
    bootstrap(config_path)
    scheduler = Scheduler()
    require_commands(scheduler, CANCEL)
    canceller = JobCanceller(scheduler, current_user())

    try:
        if cancel_all:
            ok = canceller.cancel_all(force)
        elif name:
            require_commands(scheduler, QUEUE)
            ok = canceller.cancel_by_name(name, force)
        elif job_ids:
            ok = canceller.cancel_many(job_ids, force)
        else:
            logger.error("No job ID specified")
            typer.echo()
            typer.echo(USAGE)
            raise typer.Exit(1)
    except SlurmctlError as e:
        fail(e)

    if not ok:
        raise typer.Exit(1)


def main():
    """Entry point for slurm-cancel."""
    app()


if __name__ == "__main__":
    main()
