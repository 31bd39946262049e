"""Tests for logger module."""

import logging
import re
import sys

import pytest

from slurmctl.logger import (
    ConsoleFormatter,
    TeeStream,
    configure_logging,
    log_command,
    log_duration,
    log_file_op,
    log_job_footer,
    resolve_level,
    setup_job_logging,
    setup_script_logging,
)

log = logging.getLogger("slurmctl.tests")


def _emit_all():
    log.debug("debug message")
    log.info("info message")
    log.warning("warn message")
    log.error("error message")


class TestResolveLevel:
    """Tests for LOG_LEVEL resolution."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("0", logging.DEBUG),
            ("1", logging.INFO),
            ("2", logging.WARNING),
            ("3", logging.ERROR),
            (2, logging.WARNING),
            ("warn", logging.WARNING),
            ("7", logging.INFO),
            ("noise", logging.INFO),
        ],
    )
    def test_values(self, value, expected):
        """Should map 0-3 and level names, falling back to INFO."""
        assert resolve_level(value) == expected

    def test_reads_environment(self, monkeypatch):
        """Should use $LOG_LEVEL when no value is passed."""
        monkeypatch.setenv("LOG_LEVEL", "3")
        assert resolve_level() == logging.ERROR

    def test_default_is_info(self, monkeypatch):
        """Should default to INFO when LOG_LEVEL is unset."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        assert resolve_level() == logging.INFO


class TestConsoleLogging:
    """Tests for threshold filtering and stream routing."""

    def test_debug_emits_everything(self, capsys):
        """LOG_LEVEL=0 should emit every message."""
        configure_logging(0)
        _emit_all()
        captured = capsys.readouterr()

        assert "[DEBUG] debug message" in captured.out
        assert "[INFO] info message" in captured.out
        assert "[WARN] warn message" in captured.out
        assert "[ERROR] error message" in captured.err

    def test_error_emits_only_errors(self, capsys):
        """LOG_LEVEL=3 should emit only ERROR."""
        configure_logging(3)
        _emit_all()
        captured = capsys.readouterr()

        assert captured.out == ""
        assert "[ERROR] error message" in captured.err

    def test_warn_threshold(self, capsys):
        """LOG_LEVEL=2 should drop DEBUG and INFO."""
        configure_logging(2)
        _emit_all()
        captured = capsys.readouterr()

        assert "info message" not in captured.out
        assert "debug message" not in captured.out
        assert "[WARN] warn message" in captured.out

    def test_errors_go_to_stderr(self, capsys):
        """ERROR records should never appear on stdout."""
        configure_logging(1)
        log.error("boom")
        captured = capsys.readouterr()

        assert "boom" not in captured.out
        assert "boom" in captured.err

    def test_configure_is_idempotent(self, capsys):
        """Repeated configuration should not duplicate output."""
        configure_logging(1)
        configure_logging(1)
        log.info("once")

        assert capsys.readouterr().out.count("once") == 1

    def test_format(self):
        """Should render [timestamp] [LEVEL] message."""
        record = logging.LogRecord("slurmctl", logging.WARNING, __file__, 1, "careful", None, None)
        line = ConsoleFormatter().format(record)

        assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[WARN\] careful$", line)


class TestTeeStream:
    """Tests for the dual-writer sink."""

    def test_writes_to_both(self, tmp_path):
        """Every write should reach console and file."""
        console_path = tmp_path / "console.txt"
        file_path = tmp_path / "file.txt"
        with open(console_path, "w") as console, open(file_path, "w") as f:
            tee = TeeStream(console, f)
            tee.write("one\n")
            tee.writelines(["two\n", "three\n"])
            tee.flush()

        assert console_path.read_text() == "one\ntwo\nthree\n"
        assert file_path.read_text() == "one\ntwo\nthree\n"


class TestJobLogging:
    """Tests for setup_job_logging."""

    def test_hello_reaches_console_and_file(self, tmp_path, monkeypatch, capsys, restore_streams):
        """Output after setup should land on the console and in the .log file."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("SLURM_JOB_ID", raising=False)

        session = setup_job_logging("jobX")
        print("hello")
        session.close()

        assert (tmp_path / "logs" / "jobs" / "jobX").is_dir()
        assert "hello" in capsys.readouterr().out
        assert "hello" in session.log_file.read_text()

    def test_file_names(self, tmp_path, restore_streams):
        """Files should be job_<id>_<timestamp>.log and .err."""
        with setup_job_logging("demo", tmp_path, job_id="4242") as session:
            pass

        assert re.match(r"^job_4242_\d{8}_\d{6}\.log$", session.log_file.name)
        assert session.error_file.name == session.log_file.name.replace(".log", ".err")
        assert session.error_file.exists()

    def test_uses_slurm_job_id(self, tmp_path, monkeypatch, restore_streams):
        """Should default the id to $SLURM_JOB_ID."""
        monkeypatch.setenv("SLURM_JOB_ID", "777")
        with setup_job_logging("demo", tmp_path) as session:
            pass

        assert session.log_file.name.startswith("job_777_")

    def test_stderr_goes_to_err_file(self, tmp_path, restore_streams):
        """stderr output should be teed into the .err file."""
        with setup_job_logging("demo", tmp_path, job_id="1") as session:
            sys.stderr.write("bad thing\n")

        assert "bad thing" in session.error_file.read_text()
        assert "bad thing" not in session.log_file.read_text()

    def test_close_restores_streams(self, tmp_path, restore_streams):
        """close() should put the original streams back and be repeatable."""
        original = sys.stdout
        session = setup_job_logging("demo", tmp_path, job_id="1")
        assert isinstance(sys.stdout, TeeStream)

        session.close()
        session.close()

        assert sys.stdout is original
        assert not session.active

    def test_appends(self, tmp_path, monkeypatch, restore_streams):
        """Reopening the same log file should append, not truncate."""
        monkeypatch.setattr("slurmctl.logger._file_stamp", lambda: "20250101_000000")
        with setup_job_logging("demo", tmp_path, job_id="1"):
            print("first")
        with setup_job_logging("demo", tmp_path, job_id="1") as session:
            print("second")

        content = session.log_file.read_text()
        assert content.index("first") < content.index("second")

    def test_requires_name(self, tmp_path):
        """Should reject an empty job name."""
        with pytest.raises(ValueError):
            setup_job_logging("", tmp_path)


class TestScriptLogging:
    """Tests for setup_script_logging."""

    def test_records_written_to_file(self, tmp_path):
        """Log records should be appended to scripts/<name>/script_<ts>.log."""
        configure_logging(1)
        log_file = setup_script_logging("sync", tmp_path)
        log.info("script says hi")

        assert log_file.parent == tmp_path / "scripts" / "sync"
        assert "[INFO] script says hi" in log_file.read_text()


class TestHelpers:
    """Tests for log_duration and friends."""

    def test_log_duration_success(self, caplog):
        """Should log start and completion and return the result."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        result = log_duration("adding", lambda a, b: a + b, 2, 3)

        assert result == 5
        assert "Starting: adding" in caplog.text
        assert "Completed: adding (duration: 0s)" in caplog.text

    def test_log_duration_false_is_failure(self, caplog):
        """A False result should be logged as a failure."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        log_duration("check", lambda: False)

        assert "Failed: check" in caplog.text

    def test_log_duration_int_result_is_success(self, caplog):
        """An int result such as a count is not treated as an exit code."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        assert log_duration("counting", lambda: 2) == 2
        assert "Completed: counting" in caplog.text
        assert "Failed" not in caplog.text

    def test_log_duration_reraises(self, caplog):
        """Exceptions should be logged and propagated."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        def explode():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            log_duration("explode", explode)
        assert "Failed: explode" in caplog.text

    def test_log_command_quotes(self, caplog):
        """Should log the command line shell-quoted."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        log_command(["sbatch", "my job.sbatch"])

        assert "Executing: sbatch 'my job.sbatch'" in caplog.text

    def test_log_file_op(self, caplog, tmp_path):
        """Should log the operation and the path."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        log_file_op("archived", tmp_path / "logs.tar.gz")

        assert f"File archived: {tmp_path / 'logs.tar.gz'}" in caplog.text

    def test_job_footer(self, caplog, capsys):
        """Should report success or the failing exit code."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        log_job_footer(0)
        log_job_footer(3)

        assert "Job completed successfully" in caplog.text
        assert "Job failed with exit code: 3" in caplog.text
        assert "=" * 80 in capsys.readouterr().out
