"""Daemon lifecycle management: start, status, stop and exit-time cleanup."""

import atexit
import logging
import os
import signal
import subprocess
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

import psutil

from ..config import SupervisorSettings
from .errors import DaemonError, LaunchError, PidFileExists, PidFileNotFound
from .pid_manager import PIDFile, list_pid_files
from .probe import ProcessProbe
from .process_tree import ProcessTree
from .shutdown import ShutdownController

logger = logging.getLogger("hemera")

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


def get_runtime_dir() -> Path:
    """Get the runtime directory path."""
    return Path(os.environ.get("HEMERA_HOME", Path.home() / ".hemera"))


def initialize_runtime_dir(runtime_dir: Path | None = None) -> Path:
    """
    Initialize the runtime directory on first run.

    Creates ~/.hemera/ with a minimal config.yaml if needed.

    Returns:
        Path to the runtime directory
    """
    if runtime_dir is None:
        runtime_dir = get_runtime_dir()

    if not runtime_dir.exists():
        runtime_dir.mkdir(parents=True)
        _create_minimal_defaults(runtime_dir)

    for subdir in ["pids", "logs"]:
        (runtime_dir / subdir).mkdir(parents=True, exist_ok=True)

    return runtime_dir


def _create_minimal_defaults(runtime_dir: Path) -> None:
    """Create minimal default configuration."""
    config_content = """supervisor:
  pid_dir: null
  stop_timeout: 10
  poll_interval: 1.0
  kill_timeout: 5
  launch_timeout: 5
  reap_timeout: 1.0
  aliases:
    play: [sox, lt-sox]
    rec: [sox, lt-sox]
    sox: [lt-sox]

logging:
  level: INFO
  console: true
  append: true
"""
    (runtime_dir / "config.yaml").write_text(config_content)


def format_uptime(seconds: float) -> str:
    """Format a duration like '01d 02h:03m.04s'."""
    total = int(seconds)
    return (
        f"{total // 86400:02d}d {total % 86400 // 3600:02d}h:"
        f"{total % 3600 // 60:02d}m.{total % 60:02d}s"
    )


class DaemonState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class DaemonStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class StartResult(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"


class StopResult(str, Enum):
    STOPPED = "stopped"
    ALREADY_STOPPED = "already_stopped"


class ChildReaper:
    """
    Terminates the descendants of the current process when it goes away.

    Installed as a context manager, it also hooks atexit and the usual
    termination signals so cleanup runs exactly once on every exit path.

    While `forward_pid` is set, SIGTERM is passed on to that process instead
    of ending the current one: the body then lives exactly as long as its
    command, and a stop that times out kills both.
    """

    def __init__(
        self,
        tree: ProcessTree,
        pid_file: PIDFile | None = None,
        reap_timeout: float = 1.0,
        log: Callable[[str], None] | None = None,
    ):
        self.tree = tree
        self.pid_file = pid_file
        self.reap_timeout = reap_timeout
        self._log = log or logger.info
        self.forward_pid: int | None = None
        self._installed = False
        self._released = False
        self._previous_handlers: dict[int, object] = {}

    @property
    def released(self) -> bool:
        return self._released

    def install(self) -> "ChildReaper":
        if self._installed:
            return self
        atexit.register(self.release)
        for signum in TERMINATION_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
        self._installed = True
        return self

    def _handle_signal(self, signum: int, frame: object) -> None:
        if signum == signal.SIGTERM and self.forward_pid is not None:
            logger.info(f"Received signal SIGTERM, forwarding it to PID {self.forward_pid}")
            try:
                os.kill(self.forward_pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            return
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down...")
        raise SystemExit(128 + signum)

    def release(self) -> None:
        """Terminate all descendants, then drop the PID file we own."""
        if self._released:
            return
        self._released = True

        if self._installed:
            for signum in TERMINATION_SIGNALS:
                signal.signal(signum, signal.SIG_IGN)

        try:
            pid = os.getpid()
            children = self.tree.descendants(pid)
            if children:
                direct = [c for c in children if _parent_pid(c) == pid]
                self._log(f"Killing all child processes of main process PID {pid}")
                try:
                    self.tree.terminate(pid, include_root=False)
                except DaemonError as e:
                    logger.error(f"Child cleanup incomplete: {e}")
                _, alive = psutil.wait_procs(direct, timeout=self.reap_timeout)
                if alive or _lingering(children):
                    self._kill_survivors(pid, children)
                    _, alive = psutil.wait_procs(direct, timeout=self.reap_timeout)
                for proc in alive:
                    logger.warning(f"Child process PID {proc.pid} still alive after SIGKILL")
            self._drop_own_pid_file(pid)
        finally:
            if self._installed:
                atexit.unregister(self.release)
                for signum, handler in self._previous_handlers.items():
                    signal.signal(signum, handler)

    def _kill_survivors(self, pid: int, snapshot: list[psutil.Process]) -> None:
        """SIGKILL whatever is left of the tree, including children reparented meanwhile."""
        logger.warning(f"Child processes of PID {pid} ignored SIGHUP; killing them")
        seen = {proc.pid for proc in snapshot}
        stragglers = [p for p in self.tree.descendants(pid) if p.pid not in seen]
        for proc in [*snapshot, *stragglers]:
            try:
                if proc.is_running():
                    proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.error(f"Unable to kill child process PID {proc.pid}: {e}")

    def _drop_own_pid_file(self, pid: int) -> None:
        if self.pid_file is not None:
            self.pid_file.delete_if_owned(pid)

    def __enter__(self) -> "ChildReaper":
        return self.install()

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def _parent_pid(proc: psutil.Process) -> int | None:
    try:
        return proc.ppid()
    except psutil.NoSuchProcess:
        return None


def _lingering(procs: list[psutil.Process]) -> list[psutil.Process]:
    """Processes of a snapshot that are still running and not zombies."""
    lingering = []
    for proc in procs:
        try:
            if proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE:
                lingering.append(proc)
        except psutil.NoSuchProcess:
            pass
    return lingering


class DaemonSupervisor:
    """Supervises one daemon identified by its PID file."""

    def __init__(
        self,
        pid_file: Path,
        process_name: str,
        settings: SupervisorSettings | None = None,
        log_file: Path | None = None,
        output_file: Path | None = None,
        log: Callable[[str], None] | None = None,
        launcher: Sequence[str] | None = None,
    ):
        self.settings = settings or SupervisorSettings()
        self.pid_file = PIDFile(pid_file)
        self.process_name = process_name
        self.log_file = log_file
        self.output_file = output_file
        self.launcher = list(launcher or [sys.executable, "-m", "hemera.cli.main"])
        self._log = log or logger.info

        self.probe = ProcessProbe(self.settings.aliases)
        self.tree = ProcessTree()
        self.shutdown = ShutdownController(
            self.probe,
            self.tree,
            timeout=self.settings.stop_timeout,
            poll_interval=self.settings.poll_interval,
            kill_timeout=self.settings.kill_timeout,
        )
        self.state = DaemonState.IDLE

    def is_running(self) -> bool:
        return self.probe.is_running(self.pid_file.path)

    def status(self) -> DaemonStatus:
        """Check daemon status."""
        return DaemonStatus.RUNNING if self.is_running() else DaemonStatus.STOPPED

    def get_pid(self) -> int | None:
        """Get daemon PID if running."""
        if not self.is_running():
            return None
        try:
            return self.pid_file.read().pid
        except DaemonError:
            return None

    def uptime(self) -> float | None:
        """Seconds since the daemon process started, None if not running."""
        pid = self.get_pid()
        if pid is None:
            return None
        try:
            return time.time() - psutil.Process(pid).create_time()
        except psutil.NoSuchProcess:
            return None

    def daemon_command(self, command: Sequence[str]) -> list[str]:
        """Command line re-executing the hosting tool in daemon mode."""
        args = [*self.launcher, "daemon", self.process_name, "--pid-file", str(self.pid_file.path)]
        if self.log_file:
            args += ["--log-file", str(self.log_file)]
        return [*args, "--", *command]

    def start(self, command: Sequence[str]) -> StartResult:
        """
        Start the command as a detached, supervised background process.

        Returns:
            STARTED, or ALREADY_RUNNING if the PID file names a live process

        Raises:
            PidFileExists: another supervisor wrote the PID file meanwhile
            LaunchError: the daemon process could not be launched
        """
        if not command:
            raise LaunchError("No command to start")

        if self.is_running():
            self._log(f"{self.process_name} is already running.")
            return StartResult.ALREADY_RUNNING

        self.state = DaemonState.STARTING
        try:
            proc = self._spawn(command)
            try:
                self.pid_file.write(self.process_name, proc.pid)
            except PidFileExists:
                logger.error(f"PID file '{self.pid_file.path}' already exists, aborting start")
                self.tree.terminate(proc.pid, include_root=True)
                raise
            self._wait_launched(proc)
        except BaseException:
            self.state = DaemonState.IDLE
            raise

        self.state = DaemonState.RUNNING
        self._log(f"Launched {self.process_name} (PID {proc.pid}).")
        return StartResult.STARTED

    def _spawn(self, command: Sequence[str]) -> subprocess.Popen:
        args = self.daemon_command(command)
        logger.info(f"Starting background command: {' '.join(command)}")

        if self.output_file:
            self.output_file.parent.mkdir(parents=True, exist_ok=True)
            output = open(self.output_file, "ab")
        else:
            output = subprocess.DEVNULL

        try:
            return subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise LaunchError(f"Unable to launch {self.process_name}: {e}") from e
        finally:
            if output is not subprocess.DEVNULL:
                output.close()

    def _wait_launched(self, proc: subprocess.Popen) -> None:
        """Wait until the daemon process has launched the command."""
        deadline = time.monotonic() + self.settings.launch_timeout
        while time.monotonic() < deadline:
            returncode = proc.poll()
            if returncode is not None:
                self.pid_file.delete()
                if returncode != 0:
                    raise LaunchError(
                        f"{self.process_name} exited during startup with status {returncode}"
                    )
                return
            if self.tree.children(proc.pid):
                return
            time.sleep(0.05)
        logger.warning(
            f"{self.process_name} (PID {proc.pid}) has not launched its command "
            f"after {self.settings.launch_timeout}s"
        )

    def stop(self, timeout: float | None = None) -> StopResult:
        """
        Stop the daemon, killing it if it ignores SIGTERM for `timeout` seconds.

        Raises:
            SignalDeliveryError: the process cannot be signalled
            StopError: the process survived SIGKILL
        """
        if not self.is_running():
            self._log(f"{self.process_name} is NOT running.")
            return StopResult.ALREADY_STOPPED

        try:
            record = self.pid_file.read()
        except PidFileNotFound:
            return StopResult.ALREADY_STOPPED

        self.state = DaemonState.STOPPING
        try:
            run = self.shutdown.stop(record.pid, record.process_name, timeout)
        except DaemonError:
            self.state = DaemonState.RUNNING
            raise

        # A record written by another supervisor during the stop is not ours to drop.
        self.pid_file.delete_if_owned(record.pid)
        self.state = DaemonState.IDLE
        suffix = " (killed)" if run.escalated else ""
        self._log(f"Stopped {self.process_name}{suffix}.")
        return StopResult.STOPPED

    def run(self, claim_pid_file: bool = False) -> ChildReaper:
        """
        Mark the current process as the supervised body.

        Args:
            claim_pid_file: Record the current PID in the PID file first

        Returns:
            An installed ChildReaper; use it as a context manager

        Raises:
            PidFileExists: claim_pid_file is set and the daemon is already running
        """
        if claim_pid_file:
            # Clears a stale record so the claim only fails for a live process.
            self.probe.is_running(self.pid_file.path)
            self.pid_file.write(self.process_name, os.getpid())

        self.state = DaemonState.RUNNING
        return ChildReaper(
            self.tree, self.pid_file, reap_timeout=self.settings.reap_timeout, log=self._log
        ).install()

    def serve(self, command: Sequence[str], claim_pid_file: bool = False) -> int:
        """
        Run the command as a child of the current process until it exits.

        SIGTERM received meanwhile is forwarded to the command; other
        termination signals end the current process and reap the command.

        Returns:
            The command's exit status

        Raises:
            LaunchError: the command could not be executed
        """
        with self.run(claim_pid_file=claim_pid_file) as reaper:
            logger.info(f"Starting command: {' '.join(command)}")
            try:
                proc = subprocess.Popen(list(command))
            except OSError as e:
                raise LaunchError(f"Unable to execute {command[0]!r}: {e}") from e
            reaper.forward_pid = proc.pid
            returncode = proc.wait()
            reaper.forward_pid = None
            logger.info(f"Command exited with status {returncode}")
            if returncode < 0:
                # Killed by a signal: report it the way a shell does.
                returncode = 128 - returncode

        self.state = DaemonState.IDLE
        return returncode


def check_pid_files(pid_dir: Path, probe: ProcessProbe) -> dict[Path, bool]:
    """
    Check every PID file of a directory; stale ones are deleted.

    Returns:
        Mapping of PID file path to running state
    """
    logger.info(f"Checking PID files in '{pid_dir}'")
    return {path: probe.is_running(path) for path in list_pid_files(pid_dir)}
