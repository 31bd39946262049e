# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Service-info command for slurmctl.

Finds the running inference server job, prints where it lives, and
optionally checks that it answers HTTP.
"""

import logging
from typing import Optional

import typer

from slurmctl.commands import bootstrap, fail, require_commands
from slurmctl.config import current_user
from slurmctl.errors import NotFoundError, SlurmctlError
from slurmctl.jobs.service import ServiceInfoProbe
from slurmctl.logger import log_separator
from slurmctl.scheduler import CONTROL, QUEUE, Scheduler

logger = logging.getLogger(__name__)

app = typer.Typer(help="Get information about the running inference server")


@app.command("service-info")
def service_info(
    job_id: Optional[str] = typer.Argument(None, help="Slurm job ID (default: search for a running server job)"),
    test: bool = typer.Option(False, "--test", "-t", help="Test server connection"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port (default: 8000)"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Show the service job's node, state and PID, and optionally probe it.

    Examples:
        service-info              # Find running server
        service-info 12345        # Get info for specific job
        service-info 12345 --test # Test server connection
    """
    settings = bootstrap(config_path)
    scheduler = Scheduler()
    probe = ServiceInfoProbe(
        scheduler,
        current_user(),
        settings=settings.service,
        log_dir=settings.service_log_dir,
    )

    if not job_id:
        require_commands(scheduler, QUEUE)
        try:
            job_id = probe.discover().id
        except NotFoundError as e:
            logger.warning(str(e))
            raise typer.Exit(1)
        except SlurmctlError as e:
            fail(e)

    require_commands(scheduler, CONTROL)
    logger.info(f"Job information for: {job_id}")
    log_separator("=")
    try:
        info = probe.info(job_id)
    except SlurmctlError as e:
        fail(e)

    typer.echo(f"Job ID: {info.job_id}")
    typer.echo(f"State: {info.state}")
    typer.echo(f"Node: {info.node}")
    typer.echo(f"Partition: {info.partition}")
    if info.pid is not None:
        typer.echo(f"Process ID: {info.pid}")
        typer.echo(f"PID file: {info.pid_file}")

    if not test:
        return

    typer.echo()
    try:
        result = probe.probe(job_id, port)
    except SlurmctlError as e:
        fail(e)

    if not result.reachable:
        raise typer.Exit(1)

    if result.version:
        typer.echo(f"Response: {result.version}")
    log_separator("-")
    logger.info(f"Server URL: {result.endpoint.url}")
    logger.info(f"OpenAI-compatible endpoint: {result.endpoint.openai_url}")
    log_separator("-")
    typer.echo(f"export VLLM_BASE_URL={result.endpoint.openai_url}")


def main():
    """Entry point for service-info."""
    app()


if __name__ == "__main__":
    main()
