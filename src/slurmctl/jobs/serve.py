# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Supervisor for the service job.

Runs inside the scheduler allocation: prepares modules, caches and the
conda environment, launches ``vllm serve`` in the background, records its
PID, and then checks once a minute that the process is still alive. The
job exits non-zero as soon as the server dies, which hands the allocation
back to the scheduler.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests

from slurmctl.cleanup import CleanupRegistry
from slurmctl.config import Settings
from slurmctl.context import JobContext
from slurmctl.environment import EnvironmentPreparer
from slurmctl.errors import ConfigurationError
from slurmctl.jobs.service import PID_FILE_NAME, ServiceEndpoint, check_health, pid_file_name
from slurmctl.logger import log_command, log_job_footer, log_job_header, log_separator, setup_job_logging
from slurmctl.runner import CommandRunner

logger = logging.getLogger(__name__)

SERVER_COMMAND = "vllm"

# Engine workarounds for A100-class GPUs
ENGINE_ENV = {
    "VLLM_USE_V1": "0",
    "VLLM_DISABLE_FRONTEND_MULTIPROCESSING": "1",
    "VLLM_ATTENTION_BACKEND": "FLASH_ATTN",
    "VLLM_USE_TRITON_FLASH_ATTN": "0",
}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Server launch parameters; every field has an environment override."""

    model_path: str = "openai/gpt-oss-120b"
    dtype: str = "bfloat16"
    max_model_len: int = 131072
    gpu_memory_utilization: float = 0.92
    tensor_parallel_size: int = 2
    enable_chunked_prefill: bool = False
    max_num_seqs: int = 1
    trust_remote_code: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    conda_env: str = "vllm"
    cache_base_dir: Optional[str] = None
    optional_modules: Tuple[str, ...] = ("cuda/12.2.0",)
    required_modules: Tuple[str, ...] = ("miniconda/3-4.11.0",)
    extra_env: Dict[str, str] = field(default_factory=lambda: dict(ENGINE_ENV))

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "ServerConfig":
        """
        Build a config from MODEL_PATH, DTYPE, MAX_MODEL_LEN, ... variables.

        Raises:
            ConfigurationError: If a numeric variable does not parse
        """
        env = os.environ if env is None else env
        config = cls()
        casts = {
            "MODEL_PATH": ("model_path", str),
            "DTYPE": ("dtype", str),
            "MAX_MODEL_LEN": ("max_model_len", int),
            "GPU_MEMORY_UTILIZATION": ("gpu_memory_utilization", float),
            "TENSOR_PARALLEL_SIZE": ("tensor_parallel_size", int),
            "ENABLE_CHUNKED_PREFILL": ("enable_chunked_prefill", _env_bool),
            "MAX_NUM_SEQS": ("max_num_seqs", int),
            "TRUST_REMOTE_CODE": ("trust_remote_code", _env_bool),
            "HOST": ("host", str),
            "PORT": ("port", int),
            "CONDA_ENV": ("conda_env", str),
            "CACHE_BASE_DIR": ("cache_base_dir", str),
        }
        for variable, (attr, cast) in casts.items():
            raw = env.get(variable)
            if raw is None or raw == "":
                continue
            try:
                setattr(config, attr, cast(raw))
            except ValueError:
                raise ConfigurationError(f"Invalid value for {variable}: {raw!r}")
        return config


def build_serve_args(config: ServerConfig) -> List[str]:
    """The ``vllm serve`` command line as a list of discrete arguments."""
    args = [
        SERVER_COMMAND, "serve", config.model_path,
        "--dtype", config.dtype,
        "--tensor-parallel-size", str(config.tensor_parallel_size),
        "--max-model-len", str(config.max_model_len),
        "--gpu-memory-utilization", str(config.gpu_memory_utilization),
        "--enforce-eager",
        "--disable-frontend-multiprocessing",
    ]
    if config.enable_chunked_prefill:
        args.append("--enable-chunked-prefill")
    args += ["--max-num-seqs", str(config.max_num_seqs)]
    if config.trust_remote_code:
        args.append("--trust-remote-code")
    args += ["--host", config.host, "--port", str(config.port)]
    return args


def stop_server(process: subprocess.Popen, timeout: float = 30.0) -> None:
    """Terminate the server, escalating to SIGKILL after ``timeout`` seconds."""
    if process.poll() is not None:
        return
    logger.info(f"Stopping server (PID: {process.pid})")
    process.terminate()
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Server did not exit after {timeout:g}s, killing it")
        process.kill()
        process.wait()


class ServiceSupervisor:
    """Prepares, launches and watches the server process."""

    def __init__(
        self,
        config: ServerConfig,
        context: JobContext,
        registry: CleanupRegistry,
        log_dir: Path,
        runner: Optional[CommandRunner] = None,
        startup_wait: float = 10.0,
        poll_interval: float = 60.0,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.config = config
        self.context = context
        self.registry = registry
        self.log_dir = Path(log_dir)
        self.preparer = EnvironmentPreparer(context, runner)
        self.startup_wait = startup_wait
        self.poll_interval = poll_interval
        self.popen = popen

    def prepare(self) -> bool:
        """Load modules, point caches at scratch, activate conda, verify vllm."""
        if not self.preparer.load_modules(*self.config.optional_modules):
            logger.warning(
                f"Could not load module(s) {', '.join(self.config.optional_modules)}; continuing without them"
            )

        cache_base = self.config.cache_base_dir or str(
            Path(self.context.env.get("SCRATCH_BASE", "/scratch")) / self.context.user / "cache"
        )
        if not self.preparer.setup_cache_environment(cache_base):
            logger.error("Failed to setup cache environment")
            return False

        if not self.preparer.load_modules(*self.config.required_modules):
            logger.error(f"Failed to load module(s): {', '.join(self.config.required_modules)}")
            return False

        if not self.preparer.activate_runtime("conda", self.config.conda_env):
            logger.error(f"Failed to activate conda env: {self.config.conda_env}")
            return False

        if not self.preparer.verify_command(SERVER_COMMAND):
            logger.error("vllm command not found. Make sure vllm is installed.")
            logger.info("Install with: pip install vllm or activate appropriate environment")
            return False

        self.preparer.export(self.config.extra_env)
        self.preparer.check_gpu()
        return True

    def log_configuration(self) -> None:
        log_separator("=")
        logger.info("Server Configuration:")
        logger.info(f"  Model: {self.config.model_path}")
        logger.info(f"  Data type: {self.config.dtype}")
        logger.info(f"  Max model length: {self.config.max_model_len}")
        logger.info(f"  GPU memory utilization: {self.config.gpu_memory_utilization}")
        logger.info(f"  Tensor parallel size: {self.config.tensor_parallel_size}")
        logger.info(f"  Enable chunked prefill: {self.config.enable_chunked_prefill}")
        logger.info(f"  Max num seqs: {self.config.max_num_seqs}")
        logger.info(f"  Trust remote code: {self.config.trust_remote_code}")
        logger.info(f"  Host: {self.config.host}")
        logger.info(f"  Port: {self.config.port}")
        logger.info(f"  Node: {self.context.node}")
        log_separator("=")

    def write_pid_files(self, pid: int) -> List[Path]:
        """Write the bare PID to the shared marker and the job-keyed marker."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        paths = [self.log_dir / PID_FILE_NAME]
        if self.context.job_id:
            paths.append(self.log_dir / pid_file_name(self.context.job_id))
        for path in paths:
            path.write_text(f"{pid}\n")
            logger.info(f"PID saved to: {path}")
        return paths

    def launch(self, stdout=None, stderr=None) -> subprocess.Popen:
        """Start the server in the background and register its shutdown."""
        args = build_serve_args(self.config)
        logger.info(f"Starting server; it will be accessible at http://{self.context.node}:{self.config.port}")
        log_command(args)
        process = self.popen(args, env=self.context.env, stdout=stdout, stderr=stderr)
        logger.info(f"Server started with PID: {process.pid}")
        self.write_pid_files(process.pid)
        self.registry.register(f"stop server (PID {process.pid})", stop_server, process)
        return process

    def supervise(self, process: subprocess.Popen) -> int:
        """
        Block while the server is alive.

        Returns:
            1 once the server process has exited (it is never expected to)
        """
        logger.info("Waiting for server to initialize...")
        time.sleep(self.startup_wait)

        if process.poll() is not None:
            logger.error(f"Server failed to start (exit code {process.returncode})")
            return 1

        logger.info("Server is running")
        with requests.Session() as session:
            result = check_health(session, ServiceEndpoint(host="localhost", port=self.config.port))
        if result.reachable:
            logger.info("Server health check: OK")
        else:
            logger.warning("Server health check failed (server may still be initializing)")

        logger.info("Server is running. Monitoring...")
        log_separator("=")
        while process.poll() is None:
            time.sleep(self.poll_interval)
            logger.debug(f"Server still running (PID: {process.pid})")

        logger.error(f"Server process terminated unexpectedly (exit code {process.returncode})")
        return 1


def run_service_job(
    settings: Settings,
    config: Optional[ServerConfig] = None,
    job_name: Optional[str] = None,
) -> int:
    """
    Full service job: logging, cleanup scope, preparation, launch, supervision.

    Returns:
        Process exit code for the job
    """
    job_name = job_name or settings.service.log_name
    context = JobContext.from_environment()
    config = config or ServerConfig.from_env(context.env)
    registry = CleanupRegistry()

    session = setup_job_logging(job_name, settings.logs_dir, job_id=context.job_id or None)
    context.log_dir = session.log_dir
    log_job_header(job_name, context.job_id)
    exit_code = 1
    try:
        with registry.scope():
            supervisor = ServiceSupervisor(config, context, registry, session.log_dir)
            if supervisor.prepare():
                supervisor.log_configuration()
                with open(session.log_file, "a") as out, open(session.error_file, "a") as err:
                    process = supervisor.launch(stdout=out, stderr=err)
                    exit_code = supervisor.supervise(process)
            else:
                logger.error("Service job preparation failed")
    finally:
        log_job_footer(exit_code)
        session.close()
    return exit_code
