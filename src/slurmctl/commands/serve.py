# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Serve command for slurmctl.

The body of the service job descriptor: runs inside the allocation and
keeps the inference server alive until it dies or the job is cancelled.
"""

import logging
from typing import Optional

import typer

from slurmctl.commands import bootstrap, fail
from slurmctl.errors import SlurmctlError
from slurmctl.jobs.serve import ServerConfig, run_service_job

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run the inference server inside a Slurm allocation")


@app.command()
def serve(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model path (default: $MODEL_PATH)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port (default: $PORT or 8000)"),
    conda_env: Optional[str] = typer.Option(None, "--conda-env", help="Conda environment (default: $CONDA_ENV)"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Launch and supervise the inference server.

    Meant to be called from an sbatch descriptor, e.g.:

        srun service-serve --model openai/gpt-oss-120b
    """
    settings = bootstrap(config_path)
    try:
        server = ServerConfig.from_env()
    except SlurmctlError as e:
        fail(e)

    if model:
        server.model_path = model
    if port:
        server.port = port
    if conda_env:
        server.conda_env = conda_env

    raise typer.Exit(run_service_job(settings, server))


def main():
    """Entry point for service-serve."""
    app()


if __name__ == "__main__":
    main()
