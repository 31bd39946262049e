"""
Submit command for slurmctl.

Submits a job descriptor from the jobs/ directory, optionally rendering it
with ``--set key=value`` template variables first.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import logging
from typing import List, Optional

import typer

from slurmctl.commands import bootstrap, fail
from slurmctl.errors import NotFoundError, SlurmctlError
from slurmctl.jobs.descriptors import DescriptorStore, parse_kv_args
from slurmctl.jobs.submitter import JobSubmitter
from slurmctl.scheduler import Scheduler

logger = logging.getLogger(__name__)

app = typer.Typer(help="Submit a Slurm job from the jobs/ directory")


def _list_jobs(store: DescriptorStore) -> None:
    logger.info("Available jobs:")
    typer.echo()
    try:
        names = store.names()
    except NotFoundError as e:
        fail(e)
    for name in names:
        typer.echo(f"  - {name}")
    typer.echo()
    logger.info(f"Total jobs: {len(names)}")


@app.command()
def submit(
    job_name: Optional[str] = typer.Argument(None, help="Name of the job (without .sbatch extension)"),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-d", help="Show what would be submitted without actually submitting"
    ),
    list_only: bool = typer.Option(False, "--list", "-l", help="List available jobs"),
    set_vars: Optional[List[str]] = typer.Option(
        None, "--set", "-s", help="key=value template variable (repeatable)"
    ),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Submit a Slurm job.

    Examples:
        slurm-submit egraphs_dataset
        slurm-submit egraphs_dataset --dry-run
        slurm-submit vllm_server --set partition=gpu
        slurm-submit --list
    """
    settings = bootstrap(config_path)
    store = DescriptorStore(settings.jobs_dir, settings.descriptor_suffix)

    if list_only:
        _list_jobs(store)
        return

    if not job_name:
        logger.error("Job name is required")
        typer.echo()
        typer.echo("Usage: slurm-submit <job_name> [--dry-run] [--list] [--set key=value]")
        raise typer.Exit(1)

    submitter = JobSubmitter(store, Scheduler(), render_dir=settings.logs_dir / "rendered")
    try:
        variables = parse_kv_args(set_vars)
        submitter.submit(job_name, dry_run=dry_run, variables=variables)
    except NotFoundError as e:
        fail(e, "Use --list to see available jobs")
    except SlurmctlError as e:
        logger.error(f"Failed to submit job: {e}")
        raise typer.Exit(1)


def main():
    """Entry point for slurm-submit."""
    app()


if __name__ == "__main__":
    main()
