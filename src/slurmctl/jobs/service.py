# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Discovery and health probing for the long-running service job.

The service job (an OpenAI-compatible inference server) runs on whatever
node the scheduler placed it on. Its endpoint is recomputed from the job's
node list on every call and never cached.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from slurmctl.config import ServiceSettings
from slurmctl.errors import NotFoundError
from slurmctl.scheduler import JobHandle, Scheduler, extract_field

logger = logging.getLogger(__name__)

PID_FILE_NAME = "vllm_server.pid"


def pid_file_name(job_id: Optional[str] = None) -> str:
    """``vllm_server.pid``, or ``vllm_server_<job_id>.pid`` when keyed by job."""
    if job_id:
        return PID_FILE_NAME.replace(".pid", f"_{job_id}.pid")
    return PID_FILE_NAME


@dataclass(frozen=True)
class ServiceEndpoint:
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def openai_url(self) -> str:
        return f"{self.url}/v1"


@dataclass
class ServiceInfo:
    job_id: str
    state: str
    node: str
    partition: str
    pid: Optional[int] = None
    pid_file: Optional[Path] = None


@dataclass
class ProbeResult:
    endpoint: ServiceEndpoint
    reachable: bool
    status_code: Optional[int] = None
    version: Optional[str] = None
    error: Optional[str] = None


def check_health(
    session: requests.Session,
    endpoint: ServiceEndpoint,
    settings: Optional[ServiceSettings] = None,
) -> ProbeResult:
    """
    GET the health path; any HTTP answer counts as responding.

    Connection failures and timeouts are reported, never raised. A
    responding server is also asked for its version, best-effort.
    """
    settings = settings or ServiceSettings()
    health_url = f"{endpoint.url}{settings.health_path}"
    logger.info(f"Testing {settings.health_path} endpoint at {health_url}...")
    try:
        response = session.get(health_url, timeout=settings.timeout)
    except requests.RequestException as e:
        logger.error("Server is not responding")
        return ProbeResult(endpoint=endpoint, reachable=False, error=str(e))

    logger.info(f"Server is responding (HTTP {response.status_code})")
    result = ProbeResult(endpoint=endpoint, reachable=True, status_code=response.status_code)

    logger.info("Getting server info...")
    try:
        version = session.get(f"{endpoint.url}{settings.version_path}", timeout=settings.timeout)
        body = version.text.strip()
        if version.ok and body and body != "{}":
            result.version = body
    except requests.RequestException as e:
        logger.debug(f"Version request failed: {e}")
    return result


class ServiceInfoProbe:
    """Finds the running service job and checks that its server answers."""

    def __init__(
        self,
        scheduler: Scheduler,
        user: str,
        settings: Optional[ServiceSettings] = None,
        log_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
    ):
        self.scheduler = scheduler
        self.user = user
        self.settings = settings or ServiceSettings()
        self.log_dir = Path(log_dir) if log_dir else Path("logs") / "jobs" / self.settings.log_name
        self.session = session or requests.Session()

    def discover(self) -> JobHandle:
        """
        First RUNNING service job of this user, in scheduler listing order.

        Raises:
            NotFoundError: If none is running
        """
        logger.info("Searching for service jobs...")
        jobs = self.scheduler.list_jobs(self.user, states=["RUNNING"], name=self.settings.job_name)
        if not jobs:
            raise NotFoundError(f"No running {self.settings.job_name} jobs found")

        logger.info("Found service job(s):")
        for job in jobs:
            logger.info(f"  Job ID: {job.id}  Node: {job.node or 'N/A'}")
        return jobs[0]

    def find_pid_file(self, job_id: str) -> Optional[Path]:
        """
        Locate the server's PID marker.

        A marker keyed by job id wins. Otherwise fall back to the newest
        ``vllm_server.pid`` modified within ``pid_max_age_days``; that
        fallback may pick up a marker from another recent run.
        """
        if not self.log_dir.is_dir():
            return None

        keyed = self.log_dir / pid_file_name(job_id)
        if keyed.is_file():
            return keyed

        cutoff = time.time() - self.settings.pid_max_age_days * 86400
        candidates = [
            p for p in self.log_dir.rglob(PID_FILE_NAME)
            if p.is_file() and p.stat().st_mtime > cutoff
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.stat().st_mtime)

    def info(self, job_id: str) -> ServiceInfo:
        """
        Scheduler facts about the job plus the server PID if a marker exists.

        Raises:
            NotFoundError: If the scheduler has no record of the job
        """
        record = self.scheduler.show_job(job_id)
        info = ServiceInfo(
            job_id=job_id,
            state=extract_field(record, "JobState"),
            node=extract_field(record, "NodeList"),
            partition=extract_field(record, "Partition"),
        )

        pid_file = self.find_pid_file(job_id)
        if pid_file is not None:
            text = pid_file.read_text().strip()
            if text.isdigit():
                info.pid = int(text)
                info.pid_file = pid_file
            else:
                logger.warning(f"Ignoring malformed PID file: {pid_file}")
        return info

    def endpoint(self, job_id: str, port: Optional[int] = None) -> ServiceEndpoint:
        """
        Raises:
            NotFoundError: If the job has no node assigned yet
        """
        node = extract_field(self.scheduler.show_job(job_id), "NodeList")
        if not node or node == "(null)":
            raise NotFoundError(f"Could not determine node for job {job_id}")
        return ServiceEndpoint(host=node, port=port or self.settings.port)

    def probe_endpoint(self, endpoint: ServiceEndpoint) -> ProbeResult:
        return check_health(self.session, endpoint, self.settings)

    def probe(self, job_id: str, port: Optional[int] = None) -> ProbeResult:
        """
        Resolve the job's endpoint and probe it.

        Raises:
            NotFoundError: If the job or its node cannot be resolved
        """
        logger.info("Testing server connection...")
        return self.probe_endpoint(self.endpoint(job_id, port))
