"""Tests for the hemera command line."""

from pathlib import Path

from typer.testing import CliRunner

from hemera.cli.main import EXIT_CONFIG, EXIT_STOP_FAILURE, app
from hemera.daemon.errors import StopError
from hemera.daemon.lifecycle import DaemonSupervisor
from hemera.daemon.pid_manager import PIDFile

from conftest import wait_gone

runner = CliRunner()


class TestCLI:
    """Tests for CLI commands."""

    def test_status_stopped(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["status", "sleeper", "--pid-file", str(tmp_path / "x.pid")])

        assert result.exit_code == 0
        assert "Stopped" in result.output

    def test_stop_not_running(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["stop", "sleeper", "--pid-file", str(tmp_path / "x.pid")])

        assert result.exit_code == 0
        assert "NOT running" in result.output

    def test_start_status_stop(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "x.pid"

        result = runner.invoke(
            app, ["start", "sleeper", "--pid-file", str(pid_file), "--", "sleep", "300"]
        )
        assert result.exit_code == 0, result.output
        assert "Launched sleeper" in result.output
        pid = PIDFile(pid_file).read().pid

        try:
            result = runner.invoke(app, ["status", "sleeper", "--pid-file", str(pid_file)])
            assert result.exit_code == 0
            assert "Running" in result.output
            assert str(pid) in result.output

            result = runner.invoke(
                app, ["start", "sleeper", "--pid-file", str(pid_file), "--", "sleep", "300"]
            )
            assert result.exit_code == 0
            assert "already running" in result.output
        finally:
            result = runner.invoke(
                app, ["stop", "sleeper", "--pid-file", str(pid_file), "--timeout", "5"]
            )

        assert result.exit_code == 0
        assert "stopped" in result.output
        assert wait_gone(pid)
        assert not pid_file.exists()

    def test_default_pid_file_in_runtime_dir(self, hemera_home: Path) -> None:
        result = runner.invoke(app, ["status", "sleeper"])

        assert result.exit_code == 0
        assert (hemera_home / "pids").is_dir()

    def test_stop_failure_exit_code(self, tmp_path: Path, monkeypatch) -> None:
        def failing_stop(self, timeout=None):
            raise StopError(4242, "Process survived SIGKILL")

        monkeypatch.setattr(DaemonSupervisor, "stop", failing_stop)

        result = runner.invoke(app, ["stop", "sleeper", "--pid-file", str(tmp_path / "x.pid")])

        assert result.exit_code == EXIT_STOP_FAILURE
        assert "Unable to stop sleeper" in result.output

    def test_check_deletes_stale_records(self, hemera_home: Path, dead_pid: int) -> None:
        stale = hemera_home / "pids" / "ghost.pid"
        PIDFile(stale).write("ghost", dead_pid)

        result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "Stale" in result.output
        assert not stale.exists()

    def test_check_empty(self) -> None:
        result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert "No PID file found" in result.output

    def test_invalid_config(self, hemera_home: Path) -> None:
        hemera_home.mkdir()
        (hemera_home / "config.yaml").write_text("supervisor:\n  stop_timeout: -1\n")

        result = runner.invoke(app, ["status", "sleeper"])

        assert result.exit_code == EXIT_CONFIG
        assert "Invalid configuration" in result.output

    def test_config_path(self, hemera_home: Path) -> None:
        result = runner.invoke(app, ["config", "path"])

        assert result.exit_code == 0
        assert "config.yaml" in result.output
        assert (hemera_home / "config.yaml").exists()

    def test_logs_missing(self) -> None:
        result = runner.invoke(app, ["logs", "sleeper"])

        assert result.exit_code != 0
        assert "No log file found" in result.output
