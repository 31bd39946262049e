"""Shared fixtures for slurmctl tests."""

import logging
import sys

import pytest

from slurmctl.config import Settings
from slurmctl.logger import ROOT_LOGGER
from slurmctl.scheduler import JobHandle, JobState


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers and threshold that configure_logging left on the slurmctl logger."""
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)


@pytest.fixture
def restore_streams():
    """Put sys.stdout/sys.stderr back if a test leaves tee streams installed."""
    stdout, stderr = sys.stdout, sys.stderr
    yield
    sys.stdout, sys.stderr = stdout, stderr


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary project with an empty jobs/ directory."""
    (tmp_path / "jobs").mkdir()
    return Settings(project_root=tmp_path)


def make_job(job_id="100", name="vllm-server", state="RUNNING", node="gpu-01", **kwargs):
    """Build a JobHandle with sensible defaults."""
    values = dict(
        id=job_id,
        name=name,
        state=JobState.parse(state),
        node=node,
        partition="nvidia",
        user="alice",
        elapsed="1:00",
        time_limit="2:00:00",
        node_count="1",
        reason=node,
    )
    values.update(kwargs)
    return JobHandle(**values)
