# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Config command for slurmctl.

Provides basic configuration validation.
"""

import typer

from slurmctl.config import load_config
from slurmctl.errors import ConfigurationError

app = typer.Typer(help="Manage and validate configuration")


@app.command()
def validate(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """
    Validate configuration file.

    Checks that the config file exists, is valid YAML, and has no unknown keys.
    """
    typer.echo("Validating configuration...")
    typer.echo()

    try:
        settings = load_config(config_path)
    except ConfigurationError as e:
        typer.echo(f"Validation failed: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Config file: {settings.source or '(none, using defaults)'}")
    typer.echo(f"Project root: {settings.project_root}")
    typer.echo(f"Jobs directory: {settings.jobs_dir}")
    if not settings.jobs_dir.is_dir():
        typer.echo("  warning: jobs directory does not exist")
    typer.echo(f"Logs directory: {settings.logs_dir}")
    typer.echo(f"Service job: {settings.service.job_name} (port {settings.service.port})")
    typer.echo()
    typer.echo("Configuration validation complete!")
