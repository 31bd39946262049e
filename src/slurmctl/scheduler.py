# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Thin client for the Slurm command-line tools.

sbatch, squeue, scontrol and scancel are treated as an opaque service: this
module builds their argument lists, runs them through CommandRunner, and
parses the text they print. Nothing here is persisted.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from slurmctl.errors import EnvironmentSetupError, ExternalCommandError, NotFoundError
from slurmctl.runner import CommandRunner

logger = logging.getLogger(__name__)

SUBMIT = "sbatch"
QUEUE = "squeue"
CONTROL = "scontrol"
CANCEL = "scancel"

# Unit separator; job names and reasons may contain "|"
FIELD_SEP = "\x1f"
# Reason is last because it is the only field that may contain spaces
QUEUE_FIELDS = ("%i", "%P", "%j", "%u", "%T", "%M", "%l", "%D", "%N", "%R")
QUEUE_FORMAT = FIELD_SEP.join(QUEUE_FIELDS)


class JobState(Enum):
    """Job states as observed from the scheduler.

    PENDING -> RUNNING -> {COMPLETING -> COMPLETED | CANCELLED | FAILED}.
    UNKNOWN means the scheduler has no record of the job.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, text: Optional[str]) -> "JobState":
        """
        Map squeue/scontrol state text onto a JobState.

        Example:
            >>> JobState.parse("PD")
            <JobState.PENDING: 'PENDING'>
            >>> JobState.parse("CANCELLED by 1234")
            <JobState.CANCELLED: 'CANCELLED'>
        """
        parts = (text or "").split()
        if not parts:
            return cls.UNKNOWN
        token = parts[0].upper().rstrip("+")
        return _STATE_ALIASES.get(token, cls.UNKNOWN)


_STATE_ALIASES: Dict[str, JobState] = {
    "PENDING": JobState.PENDING,
    "PD": JobState.PENDING,
    "CONFIGURING": JobState.PENDING,
    "CF": JobState.PENDING,
    "RUNNING": JobState.RUNNING,
    "R": JobState.RUNNING,
    "COMPLETING": JobState.COMPLETING,
    "CG": JobState.COMPLETING,
    "COMPLETED": JobState.COMPLETED,
    "CD": JobState.COMPLETED,
    "CANCELLED": JobState.CANCELLED,
    "CA": JobState.CANCELLED,
    "FAILED": JobState.FAILED,
    "F": JobState.FAILED,
    "TIMEOUT": JobState.FAILED,
    "TO": JobState.FAILED,
    "NODE_FAIL": JobState.FAILED,
    "NF": JobState.FAILED,
    "OUT_OF_MEMORY": JobState.FAILED,
    "OOM": JobState.FAILED,
    "PREEMPTED": JobState.FAILED,
    "PR": JobState.FAILED,
    "BOOT_FAIL": JobState.FAILED,
    "BF": JobState.FAILED,
    "DEADLINE": JobState.FAILED,
    "DL": JobState.FAILED,
}


@dataclass
class JobHandle:
    """One scheduler job as seen by a single query."""

    id: str
    name: str
    state: JobState = JobState.UNKNOWN
    node: str = ""
    partition: str = ""
    user: str = ""
    elapsed: str = ""
    time_limit: str = ""
    node_count: str = ""
    reason: str = ""


def parse_queue_line(line: str) -> Optional[JobHandle]:
    """Parse one ``squeue --format QUEUE_FORMAT`` line."""
    parts = line.rstrip("\n").split(FIELD_SEP, len(QUEUE_FIELDS) - 1)
    if len(parts) != len(QUEUE_FIELDS) or not parts[0].strip():
        return None
    job_id, partition, name, user, state, elapsed, limit, count, node, reason = (
        p.strip() for p in parts
    )
    return JobHandle(
        id=job_id,
        name=name,
        state=JobState.parse(state),
        node="" if node in ("", "(null)") else node,
        partition=partition,
        user=user,
        elapsed=elapsed,
        time_limit=limit,
        node_count=count,
        reason=reason,
    )


def parse_job_record(text: str) -> Dict[str, str]:
    """
    Tokenise ``scontrol show job`` output into a key/value dict.

    Values run until the next whitespace; keys seen twice keep the first value.

    Example:
        >>> parse_job_record("JobId=42 JobName=demo\\n   JobState=RUNNING Reason=None")["JobState"]
        'RUNNING'
    """
    record: Dict[str, str] = {}
    for key, value in re.findall(r"(?:^|\s)([A-Za-z][\w:/]*)=(\S*)", text):
        record.setdefault(key, value)
    return record


def extract_field(text: str, key: str) -> str:
    """Pull a single ``Key=value`` value out of scheduler output ("" if absent)."""
    match = re.search(rf"(?:^|\s){re.escape(key)}=(\S+)", text)
    return match.group(1) if match else ""


class Scheduler:
    """Slurm client built on CommandRunner."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def available(self, *commands: str) -> bool:
        """Check that every named scheduler command is on PATH."""
        return all(self.runner.which(c) for c in commands)

    def require(self, *commands: str) -> None:
        """
        Raises:
            EnvironmentSetupError: naming the first missing command
        """
        for command in commands:
            if not self.runner.which(command):
                raise EnvironmentSetupError(f"{command} command not found")

    def submit(self, descriptor: Path) -> str:
        """
        Submit a descriptor with sbatch.

        Returns:
            The scheduler-assigned job id

        Raises:
            ExternalCommandError: If sbatch fails
        """
        result = self.runner.run([SUBMIT, "--parsable", str(descriptor)])
        # --parsable prints "jobid" or "jobid;cluster"
        return result.stdout.strip().split(";")[0]

    def list_jobs(
        self,
        user: str,
        states: Optional[Iterable[str]] = None,
        name: Optional[str] = None,
    ) -> List[JobHandle]:
        """
        List a user's jobs in scheduler order.

        Args:
            user: Job owner
            states: squeue state filter (e.g. ["PENDING", "RUNNING"] or ["all"])
            name: Exact job name filter
        """
        args = [QUEUE, "--noheader", "--user", user, "--format", QUEUE_FORMAT]
        if states:
            args += ["--states", ",".join(states)]
        if name:
            args += ["--name", name]

        result = self.runner.run(args)
        jobs = []
        for line in result.stdout.splitlines():
            job = parse_queue_line(line)
            if job is not None:
                jobs.append(job)
        logger.debug(f"squeue returned {len(jobs)} job(s) for {user}")
        return jobs

    def show_job(self, job_id: str) -> str:
        """
        Get the full scheduler record for a job.

        Raises:
            NotFoundError: If the scheduler has no record of the job
            ExternalCommandError: For any other scontrol failure
        """
        try:
            result = self.runner.run([CONTROL, "show", "job", str(job_id)])
        except ExternalCommandError as e:
            if "invalid job id" in e.stderr.lower():
                raise NotFoundError(f"No such job: {job_id}")
            raise
        text = result.stdout.strip()
        if not text or "JobId=" not in text:
            raise NotFoundError(f"No such job: {job_id}")
        return text

    def job_state(self, job_id: str) -> JobState:
        """Current state of a job; UNKNOWN once the scheduler has purged it."""
        try:
            record = parse_job_record(self.show_job(job_id))
        except NotFoundError:
            return JobState.UNKNOWN
        return JobState.parse(record.get("JobState"))

    def cancel(self, job_id: str) -> None:
        """Raises ExternalCommandError if scancel fails."""
        self.runner.run([CANCEL, str(job_id)])

    def cancel_user(self, user: str) -> None:
        """Cancel every job owned by a user in one request."""
        self.runner.run([CANCEL, "--user", user])
