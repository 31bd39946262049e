# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Tests for runner.py module."""

import logging
import subprocess
from unittest.mock import patch

import pytest

from slurmctl.errors import EnvironmentSetupError, ExternalCommandError
from slurmctl.runner import CommandRunner


class TestCommandRunner:
    """Test command execution functionality."""

    def test_init_creates_runner(self):
        """Test CommandRunner initialization."""
        runner = CommandRunner(dry_run=False)
        assert runner.dry_run is False
        assert runner.logger is not None

    def test_run_command_dry_run(self, caplog):
        """Test command execution in dry-run mode."""
        runner = CommandRunner(dry_run=True)

        with caplog.at_level(logging.INFO):
            result = runner.run(["scancel", "12345"])

        assert result is None
        assert "[DRY RUN]" in caplog.text
        assert "scancel 12345" in caplog.text

    def test_run_command_success(self, caplog):
        """Test successful command execution."""
        runner = CommandRunner(dry_run=False)

        with caplog.at_level(logging.DEBUG):
            result = runner.run(["echo", "test output"])

        assert result.stdout == "test output\n"
        assert "Executing:" in caplog.text
        assert "echo 'test output'" in caplog.text

    def test_arguments_are_not_shell_interpreted(self):
        """Test that metacharacters reach the program literally."""
        runner = CommandRunner()

        result = runner.run(["echo", "$HOME; rm -rf /"])

        assert result.stdout == "$HOME; rm -rf /\n"

    def test_run_command_failure(self):
        """Test failed command raises ExternalCommandError."""
        runner = CommandRunner(dry_run=False)

        with pytest.raises(ExternalCommandError) as exc_info:
            runner.run(["sh", "-c", "echo oops >&2; exit 3"])

        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "oops"
        assert "sh exited with code 3: oops" in str(exc_info.value)

    def test_run_command_failure_unchecked(self):
        """Test check=False returns the failed result."""
        runner = CommandRunner()

        result = runner.run(["sh", "-c", "exit 4"], check=False)

        assert result.returncode == 4

    def test_missing_program(self):
        """Test a missing executable raises EnvironmentSetupError."""
        runner = CommandRunner()

        with pytest.raises(EnvironmentSetupError, match="no-such-tool-xyz command not found"):
            runner.run(["no-such-tool-xyz"])

    def test_timeout(self):
        """Test a timeout is reported as an external command failure."""
        runner = CommandRunner()

        with patch(
            "slurmctl.runner.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["squeue"], 5),
        ):
            with pytest.raises(ExternalCommandError) as exc_info:
                runner.run(["squeue"], timeout=5)

        assert exc_info.value.returncode == -1

    def test_which(self):
        """Test which finds real executables and rejects missing ones."""
        assert CommandRunner.which("sh")
        assert CommandRunner.which("no-such-tool-xyz") is None
