"""
Command runner for slurmctl.

Executes external commands from argument lists (never through a shell)
with dry-run support and consistent error reporting.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import logging
import shlex
import shutil
import subprocess
from typing import Dict, List, Optional

from slurmctl.errors import EnvironmentSetupError, ExternalCommandError


class CommandRunner:
    """Executes argv-style commands."""

    def __init__(self, dry_run: bool = False, verbose: bool = False):
        """
        Initialize command runner.

        Args:
            dry_run: If True, only show what would be executed
            verbose: Log captured stdout at DEBUG level
        """
        self.dry_run = dry_run
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def which(name: str, path: Optional[str] = None) -> Optional[str]:
        """Return the full path of an executable, or None."""
        return shutil.which(name, path=path)

    def run(
        self,
        args: List[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[subprocess.CompletedProcess]:
        """
        Execute a command.

        Args:
            args: Program and arguments, one list item per argument
            check: Raise ExternalCommandError on non-zero exit code
            env: Environment for the child (defaults to the current one)
            timeout: Seconds before the child is killed

        Returns:
            CompletedProcess if executed, None if dry_run

        Raises:
            ExternalCommandError: If the command fails and check=True
            EnvironmentSetupError: If the program does not exist
        """
        command_line = shlex.join(args)

        if self.dry_run:
            self.logger.info("[DRY RUN] Would execute:")
            self.logger.info(f"  {command_line}")
            return None

        if len(command_line) > 100:
            self.logger.debug(f"Executing: {command_line[:100]}...")
        else:
            self.logger.debug(f"Executing: {command_line}")

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                env=env,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise EnvironmentSetupError(f"{args[0]} command not found")
        except subprocess.TimeoutExpired:
            raise ExternalCommandError(args, -1, f"timed out after {timeout}s")

        if self.verbose and result.stdout:
            self.logger.debug(f"STDOUT:\n{result.stdout}")

        if result.returncode != 0 and check:
            self.logger.debug(f"Command failed with exit code {result.returncode}")
            raise ExternalCommandError(args, result.returncode, result.stderr)

        return result
