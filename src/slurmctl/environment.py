# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Environment preparation for jobs running under the scheduler.

Every public operation logs what it did and returns True/False; nothing
raises to the caller. Activation steps that only exist as shell code
(``module load``, ``source ~/.cargo/env``, ``conda activate``) run in a bash
child and the resulting environment is imported into ``JobContext.env``.
The snippets below are fixed strings; user values reach bash only as
positional arguments.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from slurmctl.cleanup import CleanupRegistry, cleanup_temp_dir
from slurmctl.context import JobContext
from slurmctl.errors import EnvironmentSetupError, ExternalCommandError
from slurmctl.runner import CommandRunner

logger = logging.getLogger(__name__)

ENV_MARKER = "__SLURMCTL_ENV__"
_DUMP_ENV = f"printf '%s\\0' {ENV_MARKER}; env -0"

MODULE_LOAD = 'module load "$1" >/dev/null 2>&1'
SOURCE_FILE = 'source "$1" >/dev/null 2>&1'
CONDA_FROM_SCRIPT = 'source "$1" >/dev/null 2>&1 && conda activate "$2" >/dev/null 2>&1'
CONDA_FROM_HOOK = 'eval "$(conda shell.bash hook)" >/dev/null 2>&1 && conda activate "$1" >/dev/null 2>&1'

RUST = "rust"
PYTHON = "python"
CONDA = "conda"

DEFAULT_CACHE_SUBDIRS = ("hf", "torch", "vllm", "torch_compile")


def conda_script_candidates(env: Dict[str, str]) -> List[Path]:
    """Ordered list of places a conda.sh initialisation script may live."""
    home = Path(env.get("HOME", str(Path.home())))
    candidates = [
        home / "miniconda3" / "etc" / "profile.d" / "conda.sh",
        home / "anaconda3" / "etc" / "profile.d" / "conda.sh",
        Path("/share/apps/NYUAD5/miniconda/3-4.11.0/etc/profile.d/conda.sh"),
    ]
    if env.get("CONDA_PREFIX"):
        candidates.append(Path(env["CONDA_PREFIX"]).parent / "etc" / "profile.d" / "conda.sh")
    return candidates


def parse_env_dump(output: str) -> Dict[str, str]:
    """Parse ``env -0`` output that follows ENV_MARKER."""
    _, found, dump = output.partition(ENV_MARKER + "\0")
    if not found:
        raise ValueError("environment marker missing from shell output")
    env = {}
    for entry in dump.split("\0"):
        key, sep, value = entry.partition("=")
        if sep and key:
            env[key] = value
    return env


def _human_size(size: int) -> str:
    """Format a byte count the way ``du -h`` does (1K, 2.5M, ...)."""
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{unit}" if value < 10 else f"{value:.0f}{unit}"
        value /= 1024
    return f"{size}B"


class EnvironmentPreparer:
    """Verifies and activates the runtime environment for a job."""

    def __init__(self, context: JobContext, runner: Optional[CommandRunner] = None):
        self.context = context
        self.runner = runner or CommandRunner()

    @property
    def env(self) -> Dict[str, str]:
        return self.context.env

    def _capture_env(self, snippet: str, *args: str, login: bool = False) -> None:
        """Run a bash snippet and adopt the environment it leaves behind.

        Raises:
            ExternalCommandError: If the snippet fails
            EnvironmentSetupError: If bash is unavailable
        """
        script = f"{snippet} && {_DUMP_ENV}"
        argv = ["bash", "-lc" if login else "-c", script, "bash", *args]
        result = self.runner.run(argv, env=self.env)
        self.context.env = parse_env_dump(result.stdout)

    def load_modules(self, *names: str) -> bool:
        """
        Load environment modules in order, stopping at the first failure.

        Returns:
            True if every module loaded
        """
        logger.info("Loading modules...")
        for name in names:
            logger.info(f"Loading module: {name}")
            try:
                self._capture_env(MODULE_LOAD, name, login=True)
            except (ExternalCommandError, EnvironmentSetupError, ValueError) as e:
                logger.error(f"Failed to load module: {name} ({e})")
                return False
            logger.info(f"Successfully loaded: {name}")
        logger.info("All modules loaded successfully")
        return True

    def activate_runtime(self, kind: str, locator: Optional[str] = None) -> bool:
        """
        Activate a language runtime.

        Args:
            kind: "rust" (cargo env file), "python" (optional virtualenv
                directory) or "conda" (environment name or prefix)
            locator: Env file, virtualenv path, or conda environment

        Returns:
            True if the runtime's command is available afterwards
        """
        if kind == RUST:
            return self.setup_rust_env(locator)
        if kind == PYTHON:
            return self.setup_python_env(locator)
        if kind == CONDA:
            if not locator:
                logger.error("Conda environment name required")
                return False
            return self.setup_conda_env(locator)
        logger.error(f"Unknown runtime kind: {kind}")
        return False

    def setup_rust_env(self, env_file: Optional[str] = None) -> bool:
        logger.info("Setting up Rust environment...")
        path = Path(env_file) if env_file else Path(self.env.get("HOME", str(Path.home()))) / ".cargo" / "env"

        if path.is_file():
            try:
                self._capture_env(SOURCE_FILE, str(path))
                logger.info(f"Loaded cargo environment from {path}")
            except (ExternalCommandError, EnvironmentSetupError, ValueError) as e:
                logger.warning(f"Could not source {path}: {e}")
        else:
            logger.warning(f"Cargo environment file not found: {path}")

        if not self._verify_toolchain("cargo"):
            logger.error(f"PATH: {self.env.get('PATH', '')}")
            return False
        return True

    def setup_python_env(self, venv_path: Optional[str] = None) -> bool:
        logger.info("Setting up Python environment...")
        if venv_path and Path(venv_path).is_dir():
            logger.info(f"Activating virtual environment: {venv_path}")
            try:
                self._capture_env(SOURCE_FILE, str(Path(venv_path) / "bin" / "activate"))
            except (ExternalCommandError, EnvironmentSetupError, ValueError) as e:
                logger.error(f"Failed to activate virtual environment {venv_path}: {e}")
                return False
            logger.info("Virtual environment activated")
        return self._verify_toolchain("python")

    def setup_conda_env(self, env_name: str) -> bool:
        logger.info(f"Setting up Conda environment: {env_name}")
        candidates = conda_script_candidates(self.env)
        conda_sh = next((c for c in candidates if c.is_file()), None)

        try:
            if conda_sh is not None:
                logger.info(f"Found conda.sh at: {conda_sh}")
                self._capture_env(CONDA_FROM_SCRIPT, str(conda_sh), env_name)
            elif self.runner.which("conda", path=self.env.get("PATH")):
                logger.info(f"Conda command already available: {self.runner.which('conda', path=self.env.get('PATH'))}")
                self._capture_env(CONDA_FROM_HOOK, env_name)
            else:
                logger.error("Conda installation not found")
                logger.error(f"Tried locations: {' '.join(str(c) for c in candidates)}")
                return False
        except (ExternalCommandError, EnvironmentSetupError, ValueError) as e:
            logger.error(f"Failed to activate conda environment: {env_name} ({e})")
            return False

        logger.info(f"Conda environment activated: {env_name}")
        return self._verify_toolchain("python")

    def _verify_toolchain(self, command: str) -> bool:
        if not self.verify_command(command):
            return False
        try:
            result = self.runner.run([command, "--version"], check=False, env=self.env)
        except EnvironmentSetupError:
            return True
        if result is not None:
            version = (result.stdout or result.stderr).strip()
            logger.info(f"{command} version: {version or 'unknown'}")
        return True

    def verify_command(self, name: str) -> bool:
        location = self.runner.which(name, path=self.env.get("PATH"))
        if location:
            logger.info(f"Command verified: {name} ({location})")
            return True
        logger.error(f"Command not found: {name}")
        return False

    def verify_file(self, path: Union[str, Path], description: str = "File") -> bool:
        path = Path(path)
        if path.is_file():
            size = _human_size(path.stat().st_size)
            logger.info(f"{description} verified: {path} (size: {size})")
            return True
        logger.error(f"{description} not found: {path}")
        return False

    def verify_directory(self, path: Union[str, Path], description: str = "Directory") -> bool:
        path = Path(path)
        if path.is_dir():
            logger.info(f"{description} verified: {path}")
            return True
        logger.error(f"{description} not found: {path}")
        return False

    def ensure_directory(self, path: Union[str, Path]) -> bool:
        """Create a directory tree if missing."""
        path = Path(path)
        if path.is_dir():
            logger.debug(f"Directory already exists: {path}")
            return True
        try:
            logger.info(f"Creating directory: {path}")
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create directory {path}: {e}")
            return False
        return True

    def setup_scratch_dir(self, project_name: str) -> bool:
        """Prepare ``$SCRATCH_BASE/<user>/<project>`` (default base /scratch)."""
        base = Path(self.env.get("SCRATCH_BASE", "/scratch"))
        scratch_dir = base / self.context.user / project_name
        if not self.ensure_directory(scratch_dir):
            return False
        self.context.scratch_dir = scratch_dir
        logger.info(f"Scratch directory: {scratch_dir}")
        return True

    def setup_temp_dir(self, registry: Optional[CleanupRegistry] = None) -> bool:
        """
        Prepare ``$TMPDIR/slurm_job_<job id or pid>``.

        When a registry is given, deletion of the directory is registered
        as a cleanup task.
        """
        base = Path(self.env.get("TMPDIR") or "/tmp")
        temp_dir = base / f"slurm_job_{self.context.run_id}"
        if not self.ensure_directory(temp_dir):
            return False
        self.context.temp_dir = temp_dir
        logger.info(f"Temporary directory: {temp_dir}")
        if registry is not None:
            registry.register(f"remove temporary directory {temp_dir}", cleanup_temp_dir, self.context)
        return True

    def setup_cache_environment(
        self,
        base_dir: Union[str, Path],
        subdirs: Sequence[str] = DEFAULT_CACHE_SUBDIRS,
    ) -> bool:
        """Point HF, torch, vLLM and XDG caches at subdirectories of ``base_dir``."""
        logger.info("Setting up cache environments...")
        base = Path(base_dir)
        for name in subdirs:
            if not self.ensure_directory(base / name):
                logger.error(f"Failed to create cache directory: {base / name}")
                return False

        cache_vars = {
            "HF_HOME": base / "hf",
            "HF_DATASETS_CACHE": base / "hf",
            "TORCH_HOME": base / "torch",
            "VLLM_CACHE_DIR": base / "vllm",
            "TORCH_COMPILE_CACHE_DIR": base / "torch_compile",
            "TORCHDYNAMO_CACHE_DIR": base / "torch_compile",
            "XDG_CACHE_HOME": base,
        }
        logger.info("Cache directories configured:")
        for key, value in cache_vars.items():
            self.env[key] = str(value)
            logger.info(f"  {key}: {value}")
        return True

    def check_gpu(self) -> bool:
        logger.info("Checking GPU availability...")
        if not self.runner.which("nvidia-smi", path=self.env.get("PATH")):
            logger.warning("nvidia-smi not found, cannot verify GPU")
            return False
        try:
            result = self.runner.run(
                ["nvidia-smi", "--query-gpu=index,name,memory.total,memory.free", "--format=csv"],
                env=self.env,
            )
        except (ExternalCommandError, EnvironmentSetupError) as e:
            logger.warning(f"GPU query failed: {e}")
            return False
        logger.info("GPU Information:")
        for line in result.stdout.strip().splitlines():
            logger.info(f"  {line}")
        return True

    def export(self, values: Dict[str, str]) -> None:
        """Set variables in the job environment, logging each one."""
        for key, value in values.items():
            self.env[key] = value
            logger.info(f"Set {key}={shlex.quote(value)}")

    def print_env_summary(self) -> None:
        logger.info("Environment Summary:")
        logger.info(f"  Hostname: {self.context.node}")
        logger.info(f"  User: {self.context.user}")
        logger.info(f"  PWD: {os.getcwd()}")
        logger.info(f"  Shell: {self.env.get('SHELL', 'N/A')}")
        logger.info(f"  Job ID: {self.context.job_id or 'N/A'}")
        logger.info(f"  Node: {self.env.get('SLURM_NODELIST', 'N/A')}")
        logger.info(f"  CPUs: {self.env.get('SLURM_CPUS_PER_TASK', 'N/A')}")
        logger.info(f"  Memory: {self.env.get('SLURM_MEM_PER_NODE', 'N/A')}")
