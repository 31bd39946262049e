"""Tests for the service job supervisor."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from slurmctl.cleanup import CleanupRegistry
from slurmctl.config import Settings
from slurmctl.context import JobContext
from slurmctl.errors import ConfigurationError
from slurmctl.jobs.serve import (
    ServerConfig,
    ServiceSupervisor,
    build_serve_args,
    run_service_job,
    stop_server,
)
from slurmctl.jobs.service import ProbeResult, ServiceEndpoint
from slurmctl.logger import configure_logging


@pytest.fixture
def context(tmp_path):
    return JobContext(job_id="4242", user="alice", node="gpu-07", env={"PATH": "/usr/bin"})


@pytest.fixture
def process():
    proc = MagicMock(spec=subprocess.Popen)
    proc.pid = 31337
    proc.returncode = None
    return proc


def supervisor_for(context, tmp_path, popen=None, **kwargs):
    return ServiceSupervisor(
        ServerConfig(),
        context,
        CleanupRegistry(),
        tmp_path / "logs",
        runner=MagicMock(),
        popen=popen or MagicMock(),
        **kwargs,
    )


class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    def test_defaults(self):
        """Should use the stock model and port with no overrides."""
        config = ServerConfig.from_env({})

        assert config.model_path == "openai/gpt-oss-120b"
        assert config.port == 8000
        assert config.tensor_parallel_size == 2
        assert config.trust_remote_code is True
        assert config.enable_chunked_prefill is False

    def test_overrides(self):
        """Should coerce environment overrides to the field types."""
        config = ServerConfig.from_env(
            {
                "MODEL_PATH": "/models/llama",
                "PORT": "8123",
                "GPU_MEMORY_UTILIZATION": "0.8",
                "ENABLE_CHUNKED_PREFILL": "true",
                "TRUST_REMOTE_CODE": "false",
                "MAX_NUM_SEQS": "",
            }
        )

        assert config.model_path == "/models/llama"
        assert config.port == 8123
        assert config.gpu_memory_utilization == 0.8
        assert config.enable_chunked_prefill is True
        assert config.trust_remote_code is False
        assert config.max_num_seqs == 1

    def test_bad_number(self):
        """A non-numeric PORT should be a configuration error."""
        with pytest.raises(ConfigurationError, match="PORT"):
            ServerConfig.from_env({"PORT": "eighty"})


class TestBuildServeArgs:
    """Tests for build_serve_args."""

    def test_default_args(self):
        """Should produce one list item per argument."""
        args = build_serve_args(ServerConfig())

        assert args[:3] == ["vllm", "serve", "openai/gpt-oss-120b"]
        assert args[args.index("--tensor-parallel-size") + 1] == "2"
        assert args[args.index("--max-model-len") + 1] == "131072"
        assert "--enforce-eager" in args
        assert "--trust-remote-code" in args
        assert "--enable-chunked-prefill" not in args
        assert args[-4:] == ["--host", "0.0.0.0", "--port", "8000"]

    def test_model_path_with_spaces_stays_one_argument(self):
        """Values are never split or shell-interpreted."""
        args = build_serve_args(ServerConfig(model_path="/models/my model; rm -rf /"))
        assert args[2] == "/models/my model; rm -rf /"

    def test_flags(self):
        """Optional flags should follow the config booleans."""
        args = build_serve_args(ServerConfig(enable_chunked_prefill=True, trust_remote_code=False))

        assert "--enable-chunked-prefill" in args
        assert "--trust-remote-code" not in args


class TestServiceSupervisor:
    """Tests for launch and supervision."""

    def test_launch_writes_pid_files_and_registers_stop(self, context, tmp_path, process):
        """Launching should record the PID twice and register a stop task."""
        popen = MagicMock(return_value=process)
        supervisor = supervisor_for(context, tmp_path, popen=popen)

        supervisor.launch()

        assert popen.call_args.args[0] == build_serve_args(supervisor.config)
        assert popen.call_args.kwargs["env"] is context.env
        assert (tmp_path / "logs" / "vllm_server.pid").read_text() == "31337\n"
        assert (tmp_path / "logs" / "vllm_server_4242.pid").read_text() == "31337\n"
        assert len(supervisor.registry) == 1

    def test_launch_outside_job(self, context, tmp_path, process):
        """Without a job id only the shared marker is written."""
        context.job_id = ""
        supervisor = supervisor_for(context, tmp_path, popen=MagicMock(return_value=process))

        supervisor.launch()

        assert [p.name for p in (tmp_path / "logs").iterdir()] == ["vllm_server.pid"]

    def test_supervise_exits_when_process_dies(self, context, tmp_path, process):
        """Should poll until the server exits, then return 1."""
        process.poll.side_effect = [None, None, None, 1]
        supervisor = supervisor_for(context, tmp_path, startup_wait=10, poll_interval=60)
        healthy = ProbeResult(ServiceEndpoint("localhost", 8000), reachable=True, status_code=200)

        with patch("slurmctl.jobs.serve.time.sleep") as sleep, patch(
            "slurmctl.jobs.serve.requests.Session"
        ) as session_cls, patch("slurmctl.jobs.serve.check_health", return_value=healthy) as check:
            assert supervisor.supervise(process) == 1

        assert [c.args[0] for c in sleep.call_args_list] == [10, 60, 60]
        assert check.call_args.args[1] == ServiceEndpoint("localhost", 8000)
        session_cls.return_value.__exit__.assert_called_once()

    def test_supervise_startup_failure(self, context, tmp_path, process):
        """A server that dies during startup should fail immediately."""
        process.poll.return_value = 1
        process.returncode = 1
        supervisor = supervisor_for(context, tmp_path)

        with patch("slurmctl.jobs.serve.time.sleep") as sleep, patch(
            "slurmctl.jobs.serve.check_health"
        ) as probe:
            assert supervisor.supervise(process) == 1

        sleep.assert_called_once_with(10.0)
        probe.assert_not_called()

    def test_prepare_stops_on_missing_vllm(self, context, tmp_path):
        """Preparation should fail when vllm is not on PATH."""
        supervisor = supervisor_for(context, tmp_path)
        supervisor.preparer = MagicMock()
        supervisor.preparer.verify_command.return_value = False

        assert not supervisor.prepare()
        supervisor.preparer.export.assert_not_called()

    def test_prepare_tolerates_optional_modules(self, context, tmp_path):
        """A missing CUDA module should only warn."""
        supervisor = supervisor_for(context, tmp_path)
        supervisor.preparer = MagicMock()
        supervisor.preparer.load_modules.side_effect = [False, True]

        assert supervisor.prepare()
        supervisor.preparer.activate_runtime.assert_called_once_with("conda", "vllm")
        supervisor.preparer.export.assert_called_once_with(supervisor.config.extra_env)


class TestStopServer:
    """Tests for stop_server."""

    def test_terminates_running_process(self, process):
        """Should terminate and wait."""
        process.poll.return_value = None

        stop_server(process)

        process.terminate.assert_called_once()
        process.kill.assert_not_called()

    def test_kills_after_timeout(self, process):
        """Should escalate to kill when terminate is ignored."""
        process.poll.return_value = None
        process.wait.side_effect = [subprocess.TimeoutExpired("vllm", 1), 0]

        stop_server(process, timeout=1)

        process.kill.assert_called_once()

    def test_already_exited(self, process):
        """Should do nothing for an exited process."""
        process.poll.return_value = 0

        stop_server(process)

        process.terminate.assert_not_called()


class TestRunServiceJob:
    """Tests for the full job entry point."""

    def test_preparation_failure(self, tmp_path, monkeypatch, restore_streams):
        """A failed preparation should exit 1 and still write the job log."""
        monkeypatch.setenv("SLURM_JOB_ID", "4242")
        configure_logging(1)
        settings = Settings(project_root=tmp_path)

        with patch.object(CleanupRegistry, "install_trap"), patch.object(
            ServiceSupervisor, "prepare", return_value=False
        ):
            exit_code = run_service_job(settings, ServerConfig())

        assert exit_code == 1
        logs = list((tmp_path / "logs" / "jobs" / "vllm_server").glob("job_4242_*.log"))
        assert len(logs) == 1
        assert "Job Name: vllm_server" in logs[0].read_text()
