"""Tests for JobMonitor."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from slurmctl.errors import NotFoundError
from slurmctl.jobs.monitor import ACTIVE_STATES, JobMonitor, format_job_table, tail

from conftest import make_job


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.list_jobs.return_value = [
        make_job("101", name="egraphs-dataset", state="RUNNING", node="gpu-01"),
        make_job("102", name="egraphs-dataset", state="PENDING", node="", reason="(Priority)"),
    ]
    return mock


class TestFormatJobTable:
    """Tests for the fixed-width table."""

    def test_header_and_rows(self):
        """Should right-align each column to its width."""
        lines = format_job_table([make_job("101", name="demo")])

        assert lines[0].split() == [
            "JOBID", "PARTITION", "NAME", "USER", "STATE", "TIME", "TIME_LIMI", "NODES", "NODELIST(REASON)",
        ]
        assert lines[1].startswith(" " * 15 + "101 ")
        assert lines[1].endswith(" gpu-01")

    def test_truncates_long_names(self):
        """Names longer than the column should be cut."""
        lines = format_job_table([make_job("1", name="n" * 40)])
        assert "n" * 31 not in lines[1]


class TestJobMonitor:
    """Tests for list, details, logs and watch."""

    def test_list_active_only(self, scheduler, tmp_path, capsys, caplog):
        """Default listing should ask for PENDING and RUNNING only."""
        caplog.set_level(logging.INFO, logger="slurmctl")

        jobs = JobMonitor(scheduler, tmp_path).list("alice")

        scheduler.list_jobs.assert_called_once_with("alice", states=ACTIVE_STATES)
        assert len(jobs) == 2
        out = capsys.readouterr().out
        assert "egraphs-dataset" in out
        assert "(Priority)" in out
        assert "PD=Pending" in caplog.text

    def test_list_all(self, scheduler, tmp_path):
        """--all should include completed jobs."""
        JobMonitor(scheduler, tmp_path).list("alice", include_completed=True)

        scheduler.list_jobs.assert_called_once_with("alice", states=("all",))

    def test_details(self, scheduler, tmp_path, capsys):
        """Should print the full scheduler record."""
        scheduler.show_job.return_value = "JobId=101 JobState=RUNNING"

        JobMonitor(scheduler, tmp_path).details("101")

        assert "JobId=101 JobState=RUNNING" in capsys.readouterr().out

    def test_details_not_found(self, scheduler, tmp_path):
        """Should propagate NotFound for unknown jobs."""
        scheduler.show_job.side_effect = NotFoundError("No such job: 9")

        with pytest.raises(NotFoundError):
            JobMonitor(scheduler, tmp_path).details("9")

    def test_logs_tail(self, scheduler, tmp_path, capsys):
        """Should print the last lines of every file whose name contains the id."""
        job_dir = tmp_path / "jobs" / "egraphs"
        job_dir.mkdir(parents=True)
        log_file = job_dir / "job_101_20250101_000000.log"
        log_file.write_text("".join(f"line {i}\n" for i in range(100)))
        (job_dir / "job_101_20250101_000000.err").write_text("warning\n")
        (job_dir / "job_202_20250303_000000.log").write_text("other job\n")

        files = JobMonitor(scheduler, tmp_path, tail_lines=50).logs("101")

        out = capsys.readouterr().out
        assert len(files) == 2
        assert "line 99" in out
        assert "line 50" in out
        assert "line 49\n" not in out
        assert "other job" not in out

    def test_logs_match_id_anywhere_in_name(self, scheduler, tmp_path):
        """The id is matched as a substring, so a timestamp containing it matches too."""
        job_dir = tmp_path / "jobs" / "egraphs"
        job_dir.mkdir(parents=True)
        (job_dir / "job_202_20250101_000000.log").write_text("other job\n")

        files = JobMonitor(scheduler, tmp_path).logs("101")

        assert [f.name for f in files] == ["job_202_20250101_000000.log"]

    def test_logs_missing_is_warning(self, scheduler, tmp_path, caplog):
        """No matching files should warn, not fail."""
        caplog.set_level(logging.WARNING, logger="slurmctl")

        assert JobMonitor(scheduler, tmp_path).logs("999") == []
        assert "No log files found for job 999" in caplog.text

    def test_tail(self, tmp_path):
        """tail() should return the last N lines without newlines."""
        f = tmp_path / "f.log"
        f.write_text("a\nb\nc\n")
        assert tail(f, 2) == ["b", "c"]

    def test_watch_redraws_until_interrupted(self, scheduler, tmp_path):
        """watch() should clear, list and sleep until interrupted."""
        monitor = JobMonitor(scheduler, tmp_path, watch_interval=5)
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                raise KeyboardInterrupt

        with patch("slurmctl.jobs.monitor.click.clear") as clear, patch(
            "slurmctl.jobs.monitor.time.sleep", side_effect=fake_sleep
        ):
            with pytest.raises(KeyboardInterrupt):
                monitor.watch("alice")

        assert sleeps == [5, 5, 5]
        assert clear.call_count == 3
        assert scheduler.list_jobs.call_count == 3
        scheduler.list_jobs.assert_called_with("alice", states=ACTIVE_STATES)

    def test_watch_clears_with_click(self, scheduler, tmp_path):
        """The redraw should run against the real clear call without error."""
        monitor = JobMonitor(scheduler, tmp_path, watch_interval=0)

        with patch("slurmctl.jobs.monitor.time.sleep", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                monitor.watch("alice")

        scheduler.list_jobs.assert_called_once_with("alice", states=ACTIVE_STATES)
