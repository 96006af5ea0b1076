"""Errors raised by the daemon supervision layer."""

from pathlib import Path


class DaemonError(Exception):
    """Base class for daemon supervision errors."""


class PidFileNotFound(DaemonError):
    """Raised when no PID file exists; the process is simply not running."""

    def __init__(self, path: Path):
        super().__init__(f"PID file '{path}' not found")
        self.path = path


class MalformedPidFile(DaemonError):
    """Raised when a PID file exists but cannot be parsed."""

    def __init__(self, path: Path | None, reason: str):
        where = f"'{path}'" if path else "<text>"
        super().__init__(f"Malformed PID file {where}: {reason}")
        self.path = path
        self.reason = reason


class PidFileExists(DaemonError):
    """Raised when writing over an existing PID file."""

    def __init__(self, path: Path):
        super().__init__(f"PID file '{path}' already exists")
        self.path = path


class SignalDeliveryError(DaemonError):
    """Raised when a signal cannot be delivered to a process."""

    def __init__(self, pid: int, sig: int, reason: str):
        super().__init__(f"Unable to send signal {sig} to PID {pid}: {reason}")
        self.pid = pid
        self.signal = sig
        self.reason = reason


class LaunchError(DaemonError):
    """Raised when the supervised command could not be launched."""


class StopError(DaemonError):
    """Raised when a process survives forceful termination."""

    def __init__(self, pid: int, message: str):
        super().__init__(message)
        self.pid = pid
