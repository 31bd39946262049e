# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Cancel jobs by id, by name, or all at once, with confirmation gating."""

import logging
from typing import List

import typer

from slurmctl.errors import ExternalCommandError, UserDeclined
from slurmctl.scheduler import Scheduler

logger = logging.getLogger(__name__)


def _prompt_confirmation(message: str) -> bool:
    """Ask a yes/no question; anything but yes (or EOF) is no."""
    try:
        return typer.confirm(message, default=False)
    except typer.Abort:
        return False


def require_confirmation(message: str, force: bool = False) -> None:
    """
    Raises:
        UserDeclined: If not forced and the user answers no
    """
    if force:
        return
    if not _prompt_confirmation(message):
        raise UserDeclined(message)


class JobCanceller:
    """Requests cancellation from the scheduler on behalf of one user."""

    def __init__(self, scheduler: Scheduler, user: str):
        self.scheduler = scheduler
        self.user = user

    def _cancel(self, job_id: str) -> bool:
        logger.info(f"Cancelling job: {job_id}")
        try:
            self.scheduler.cancel(job_id)
        except ExternalCommandError as e:
            logger.error(f"Failed to cancel job {job_id}: {e}")
            return False
        logger.info(f"Job {job_id} cancelled")
        return True

    def cancel_one(self, job_id: str, force: bool = False) -> bool:
        """
        Cancel a single job, asking first unless forced.

        Returns:
            False only if the scheduler rejected the cancel; declining is True
        """
        try:
            require_confirmation(f"Cancel job {job_id}?", force)
        except UserDeclined:
            logger.info(f"Skipped job {job_id}")
            return True
        return self._cancel(job_id)

    def cancel_many(self, job_ids: List[str], force: bool = False) -> bool:
        """Cancel each id in turn (confirming each unless forced)."""
        results = [self.cancel_one(job_id, force) for job_id in job_ids]
        return all(results)

    def cancel_by_name(self, name: str, force: bool = False) -> bool:
        """
        Cancel every job of this user whose name matches exactly.

        Zero matches is a warning, not a failure. The batch is confirmed
        once; individual ids are not re-confirmed.
        """
        logger.info(f"Finding jobs with name: {name}")
        job_ids = [job.id for job in self.scheduler.list_jobs(self.user, name=name) if job.name == name]

        if not job_ids:
            logger.warning(f"No jobs found with name: {name}")
            return True

        logger.info(f"Found {len(job_ids)} job(s) with name: {name}")
        if not force:
            for job_id in job_ids:
                typer.echo(job_id)
        try:
            require_confirmation("Cancel these jobs?", force)
        except UserDeclined:
            logger.info("Cancelled operation")
            return True

        results = [self._cancel(job_id) for job_id in job_ids]
        return all(results)

    def cancel_all(self, force: bool = False) -> bool:
        """Cancel every job owned by this user with one bulk request."""
        logger.warning("This will cancel ALL your running jobs")
        try:
            require_confirmation("Are you sure?", force)
        except UserDeclined:
            logger.info("Cancelled operation")
            return True

        logger.info(f"Cancelling all jobs for user: {self.user}")
        try:
            self.scheduler.cancel_user(self.user)
        except ExternalCommandError as e:
            logger.error(f"Failed to cancel jobs: {e}")
            return False
        logger.info("All jobs cancelled")
        return True
