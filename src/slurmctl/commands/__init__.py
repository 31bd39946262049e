# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Typer commands for slurmctl.

Each module exposes a single-command ``app`` (installed as its own console
script) and the command function itself, which ``slurmctl.cli`` registers
on the umbrella app.
"""

import logging
from typing import Optional

import typer

from slurmctl.config import Settings, load_config
from slurmctl.errors import EnvironmentSetupError, SlurmctlError
from slurmctl.logger import configure_logging
from slurmctl.scheduler import Scheduler

logger = logging.getLogger(__name__)


def bootstrap(config_path: Optional[str]) -> Settings:
    """Configure logging and load settings, exiting 1 on a bad config."""
    configure_logging()
    try:
        return load_config(config_path)
    except SlurmctlError as e:
        logger.error(str(e))
        raise typer.Exit(1)


def require_commands(scheduler: Scheduler, *commands: str) -> None:
    """Exit 1 with guidance when a scheduler client is not on PATH."""
    try:
        scheduler.require(*commands)
    except EnvironmentSetupError as e:
        logger.error(str(e))
        logger.info("Run this on a cluster login node, or load the Slurm module first")
        raise typer.Exit(1)


def fail(error: Exception, hint: Optional[str] = None) -> None:
    """Log an error (and optional hint) and exit 1."""
    logger.error(str(error))
    if hint:
        logger.info(hint)
    raise typer.Exit(1)
