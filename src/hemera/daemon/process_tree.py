"""Recursive signalling of a process and its descendants."""

import logging
import os
import signal

import psutil

from .errors import SignalDeliveryError

logger = logging.getLogger("hemera")


class ProcessTree:
    """Walks the live process table to signal whole process trees."""

    def __init__(self, default_signal: int = signal.SIGHUP):
        self.default_signal = default_signal

    def children(self, pid: int) -> list[int]:
        """Return direct children of a process, empty if it is gone."""
        try:
            return [child.pid for child in psutil.Process(pid).children()]
        except psutil.NoSuchProcess:
            return []

    def descendants(self, pid: int) -> list[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    def terminate(self, pid: int, include_root: bool = False, sig: int | None = None) -> list[int]:
        """
        Signal every descendant of a process, leaves first.

        Args:
            pid: Root of the tree
            include_root: Also signal the root once its descendants are done
            sig: Signal to send, SIGHUP by default

        Returns:
            PIDs that received the signal

        Raises:
            SignalDeliveryError: some process could not be signalled; raised
                once the whole tree has been walked
        """
        if sig is None:
            sig = self.default_signal

        signaled: list[int] = []
        failures: list[SignalDeliveryError] = []
        self._walk(pid, include_root, sig, signaled, failures)

        if failures:
            first = failures[0]
            if len(failures) == 1:
                raise first
            pids = ", ".join(str(f.pid) for f in failures)
            raise SignalDeliveryError(first.pid, sig, f"{first.reason} (also failed: {pids})")
        return signaled

    def _walk(
        self,
        pid: int,
        signal_self: bool,
        sig: int,
        signaled: list[int],
        failures: list[SignalDeliveryError],
    ) -> None:
        for child in self.children(pid):
            # The child may have exited since the enumeration.
            if psutil.pid_exists(child):
                self._walk(child, True, sig, signaled, failures)

        if not signal_self:
            return

        try:
            os.kill(pid, sig)
            signaled.append(pid)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.warning(f"Unable to send signal {sig} to PID {pid}: {e}")
            failures.append(SignalDeliveryError(pid, sig, e.strerror or str(e)))
