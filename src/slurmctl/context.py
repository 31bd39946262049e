# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Per-invocation job context threaded between components."""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional


@dataclass
class JobContext:
    """Facts about the current process and the directories it prepared.

    EnvironmentPreparer fills in ``env``, ``temp_dir`` and ``scratch_dir``;
    CleanupRegistry helpers and the service supervisor read them back.
    """

    job_id: str
    user: str
    node: str
    env: Dict[str, str] = field(default_factory=dict)
    temp_dir: Optional[Path] = None
    scratch_dir: Optional[Path] = None
    log_dir: Optional[Path] = None

    @classmethod
    def from_environment(cls, env: Optional[Dict[str, str]] = None) -> "JobContext":
        """Build a context from the process environment (copied, not shared)."""
        env = dict(os.environ if env is None else env)
        return cls(
            job_id=env.get("SLURM_JOB_ID", ""),
            user=env.get("USER") or env.get("LOGNAME") or "unknown",
            node=env.get("SLURM_NODELIST") or socket.gethostname(),
            env=env,
        )

    @property
    def run_id(self) -> str:
        """Scheduler job id, or this process id when running outside a job."""
        return self.job_id or str(os.getpid())
