# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Error types shared by the slurmctl components."""

from typing import List, Optional


class SlurmctlError(Exception):
    """Base class for all slurmctl errors."""

    pass


class ConfigurationError(SlurmctlError):
    """Raised for a missing or invalid descriptor, config file, or model path."""

    pass


class EnvironmentSetupError(SlurmctlError):
    """Raised when a required command, module, or toolchain is unavailable."""

    pass


class NotFoundError(SlurmctlError):
    """Raised when no matching job, descriptor, or log exists."""

    pass


class ExternalCommandError(SlurmctlError):
    """Raised when an external command exits non-zero."""

    def __init__(
        self,
        args: List[str],
        returncode: int,
        stderr: Optional[str] = None,
    ):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"{self.command[0] if self.command else 'command'} exited with code {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class UserDeclined(SlurmctlError):
    """Raised when the user refuses an interactive confirmation.

    Callers treat this as a successful no-op, never as a failure.
    """

    pass
