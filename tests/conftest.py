"""Shared fixtures for process supervision tests."""

import subprocess
import sys
import time
from pathlib import Path
from typing import Callable

import psutil
import pytest

# Prints "ready" once SIGTERM is ignored, then sleeps.
TERM_IGNORING = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)

PYTHON_NAME = Path(sys.executable).name


def is_gone(pid: int) -> bool:
    """True once a process no longer exists or is a zombie."""
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def wait_gone(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if is_gone(pid):
            return True
        time.sleep(0.05)
    return is_gone(pid)


def wait_children(pid: int, count: int, timeout: float = 5.0) -> list[psutil.Process]:
    """Wait until a process has at least `count` descendants."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            children = psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []
        if len(children) >= count:
            return children
        time.sleep(0.05)
    return psutil.Process(pid).children(recursive=True)


@pytest.fixture(autouse=True)
def hemera_home(tmp_path: Path, monkeypatch) -> Path:
    """Keep runtime files, including those of spawned daemons, inside the test directory."""
    home = tmp_path / "hemera-home"
    monkeypatch.setenv("HEMERA_HOME", str(home))
    for key in ["HEMERA_PID_DIR", "HEMERA_STOP_TIMEOUT", "HEMERA_LOG_LEVEL"]:
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def spawn(monkeypatch) -> Callable[..., subprocess.Popen]:
    """Start processes that are killed, with their descendants, after the test."""
    procs: list[subprocess.Popen] = []

    def _spawn(args: list[str], **kwargs) -> subprocess.Popen:
        proc = subprocess.Popen(args, **kwargs)
        procs.append(proc)
        return proc

    yield _spawn

    # Restore any patched os.kill so cleanup can actually signal the processes.
    monkeypatch.undo()
    for proc in procs:
        try:
            family = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            family = []
        for p in [*family, psutil.Process(proc.pid) if proc.poll() is None else None]:
            if p is None:
                continue
            try:
                p.kill()
            except psutil.NoSuchProcess:
                pass
        proc.wait(timeout=5)


@pytest.fixture
def term_ignoring(spawn) -> subprocess.Popen:
    """A child process that ignores SIGTERM, ready to receive it."""
    proc = spawn(
        [sys.executable, "-c", TERM_IGNORING], stdout=subprocess.PIPE, text=True
    )
    assert proc.stdout.readline().strip() == "ready"
    return proc


@pytest.fixture
def dead_pid() -> int:
    """PID of a process that has exited and been reaped."""
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid
