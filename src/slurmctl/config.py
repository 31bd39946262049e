# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Configuration loading for slurmctl.

Settings come from an optional YAML file plus a handful of environment
variables. The file is looked up in this order:

1. The explicit path passed by the caller (``--config``)
2. ``$SLURMCTL_CONFIG``
3. ``./slurmctl.yaml``

Example file::

    project_root: ~/projects/egraphs
    jobs_dir: jobs
    logs_dir: logs
    service:
      job_name: vllm-server
      port: 8000
    monitor:
      watch_interval: 5
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from slurmctl.errors import ConfigurationError

CONFIG_ENV_VAR = "SLURMCTL_CONFIG"
DEFAULT_CONFIG_NAME = "slurmctl.yaml"


@dataclass
class ServiceSettings:
    """Where and how to find the long-running service job."""

    job_name: str = "vllm-server"
    log_name: str = "vllm_server"
    port: int = 8000
    health_path: str = "/health"
    version_path: str = "/version"
    timeout: float = 5.0
    pid_max_age_days: int = 2


@dataclass
class MonitorSettings:
    watch_interval: float = 5.0
    tail_lines: int = 50


@dataclass
class Settings:
    """Resolved slurmctl settings.

    Directory fields are always absolute after ``load_config``.
    """

    project_root: Path = field(default_factory=Path.cwd)
    jobs_dir: Optional[Path] = None
    logs_dir: Optional[Path] = None
    descriptor_suffix: str = ".sbatch"
    service: ServiceSettings = field(default_factory=ServiceSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    source: Optional[Path] = None

    def __post_init__(self):
        self.project_root = Path(self.project_root).expanduser().resolve()
        self.jobs_dir = self._resolve(self.jobs_dir, "jobs")
        self.logs_dir = self._resolve(self.logs_dir, "logs")

    def _resolve(self, value: Optional[Union[str, Path]], default: str) -> Path:
        path = Path(value).expanduser() if value else Path(default)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    @property
    def service_log_dir(self) -> Path:
        """Directory the service job writes its logs and PID marker into."""
        return self.logs_dir / "jobs" / self.service.log_name


def current_user() -> str:
    """Get the scheduler user identity from the environment."""
    return os.environ.get("USER") or os.environ.get("LOGNAME") or "unknown"


def _find_config_file(config_path: Optional[Union[str, Path]]) -> Optional[Path]:
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        return path

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Config file from ${CONFIG_ENV_VAR} not found: {path}")
        return path

    local = Path.cwd() / DEFAULT_CONFIG_NAME
    if local.exists():
        return local
    return None


def _build_section(cls, data: Any, section: str):
    """Build a nested settings dataclass, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid '{section}' section: {e}")


def load_config(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load slurmctl settings.

    Args:
        config_path: Explicit path to a YAML config file (optional)

    Returns:
        Settings with all directories resolved

    Raises:
        ConfigurationError: If the file is missing (when named explicitly),
            is not valid YAML, or contains unknown keys
    """
    path = _find_config_file(config_path)
    if path is None:
        return Settings()

    try:
        data: Dict[str, Any] = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a YAML mapping")

    top_level = {"project_root", "jobs_dir", "logs_dir", "descriptor_suffix", "service", "monitor"}
    unknown = sorted(set(data) - top_level)
    if unknown:
        raise ConfigurationError(f"Unknown key(s) in {path}: {', '.join(unknown)}")

    project_root = data.get("project_root")
    if project_root is not None:
        project_root = Path(str(project_root)).expanduser()
        if not project_root.is_absolute():
            project_root = path.parent / project_root
    else:
        project_root = path.parent

    return Settings(
        project_root=project_root,
        jobs_dir=data.get("jobs_dir"),
        logs_dir=data.get("logs_dir"),
        descriptor_suffix=data.get("descriptor_suffix", ".sbatch"),
        service=_build_section(ServiceSettings, data.get("service"), "service"),
        monitor=_build_section(MonitorSettings, data.get("monitor"), "monitor"),
        source=path,
    )
