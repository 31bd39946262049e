"""Job lifecycle operations: submit, monitor, cancel and the service job.

Each class wraps a Scheduler and holds no state between invocations; the
scheduler is the only source of truth about jobs.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

from slurmctl.jobs.canceller import JobCanceller, require_confirmation
from slurmctl.jobs.descriptors import (
    DescriptorStore,
    JobDescriptor,
    parse_directives,
    parse_kv_args,
    validate_name,
)
from slurmctl.jobs.monitor import JobMonitor, format_job_table
from slurmctl.jobs.serve import ServerConfig, ServiceSupervisor, build_serve_args, run_service_job
from slurmctl.jobs.service import ProbeResult, ServiceEndpoint, ServiceInfo, ServiceInfoProbe, check_health
from slurmctl.jobs.submitter import JobSubmitter, SubmitResult

__all__ = [
    "JobDescriptor",
    "DescriptorStore",
    "parse_directives",
    "parse_kv_args",
    "validate_name",
    "JobSubmitter",
    "SubmitResult",
    "JobMonitor",
    "format_job_table",
    "JobCanceller",
    "require_confirmation",
    "ServiceInfoProbe",
    "ServiceEndpoint",
    "ServiceInfo",
    "ProbeResult",
    "check_health",
    "ServerConfig",
    "ServiceSupervisor",
    "build_serve_args",
    "run_service_job",
]
