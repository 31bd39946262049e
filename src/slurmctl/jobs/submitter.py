# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Resolve job names to descriptors and hand them to sbatch."""

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from slurmctl.jobs.descriptors import DescriptorStore, JobDescriptor
from slurmctl.logger import log_separator
from slurmctl.scheduler import SUBMIT, Scheduler

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    descriptor: JobDescriptor
    command: List[str]
    job_id: Optional[str] = None
    dry_run: bool = False


class JobSubmitter:
    """Lists and submits descriptors from a DescriptorStore."""

    def __init__(
        self,
        store: DescriptorStore,
        scheduler: Scheduler,
        render_dir: Optional[Path] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.render_dir = render_dir or Path("logs") / "rendered"

    def list(self) -> List[str]:
        """Names of all descriptors, in directory order."""
        return self.store.names()

    def submit(
        self,
        job_name: str,
        dry_run: bool = False,
        variables: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        """
        Submit a job by name.

        The descriptor's directives are always displayed. With ``dry_run``
        the sbatch command is printed instead of executed.

        Args:
            job_name: Descriptor name (without suffix)
            dry_run: Show the submit command without running it
            variables: Template variables; when given the descriptor is
                rendered before submission

        Returns:
            SubmitResult with the scheduler job id (None for dry runs)

        Raises:
            NotFoundError: If no descriptor matches
            ConfigurationError: If the name or template is invalid
            ExternalCommandError: If sbatch fails
        """
        descriptor = self.store.get(job_name)
        logger.info(f"Job file: {descriptor.file_path}")

        if variables:
            descriptor = self.store.render(descriptor, variables, self.render_dir)

        self.show(descriptor)
        command = [SUBMIT, str(descriptor.file_path)]

        if dry_run:
            logger.info("DRY RUN: Would submit job with command:")
            typer.echo(f"  {shlex.join(command)}")
            logger.info("Use without --dry-run to actually submit")
            return SubmitResult(descriptor=descriptor, command=command, dry_run=True)

        logger.info("Submitting job...")
        job_id = self.scheduler.submit(descriptor.file_path)
        logger.info(f"Job submitted successfully (job id: {job_id})")
        return SubmitResult(descriptor=descriptor, command=command, job_id=job_id)

    def show(self, descriptor: JobDescriptor) -> None:
        """Print a descriptor's resource directives."""
        log_separator("-")
        logger.info("Job configuration:")
        lines = descriptor.directive_lines()
        if not lines:
            typer.echo("  (no #SBATCH directives)")
        for line in lines:
            typer.echo(f"  {line}")
        log_separator("-")
