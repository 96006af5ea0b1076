"""Graceful-then-forceful process shutdown."""

import logging
import os
import signal
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import psutil

from .errors import SignalDeliveryError, StopError
from .probe import ProcessProbe
from .process_tree import ProcessTree

logger = logging.getLogger("hemera")


class ShutdownPhase(str, Enum):
    """Phase of a shutdown run."""

    SIGNALED = "signaled"
    WAITING = "waiting"
    ESCALATED = "escalated"
    CONFIRMED = "confirmed"


@dataclass
class ShutdownRun:
    """State of one stop call."""

    pid: int
    process_name: str
    deadline: float
    phase: ShutdownPhase = ShutdownPhase.SIGNALED
    escalated: bool = False


class ShutdownController:
    """Stops a process with SIGTERM, escalating to SIGKILL after a timeout."""

    def __init__(
        self,
        probe: ProcessProbe,
        tree: ProcessTree | None = None,
        timeout: float = 10,
        poll_interval: float = 1.0,
        kill_timeout: float = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.probe = probe
        self.tree = tree or ProcessTree()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.kill_timeout = kill_timeout
        self._clock = clock
        self._sleep = sleep

    def stop(self, pid: int, process_name: str, timeout: float | None = None) -> ShutdownRun:
        """
        Stop a process, waiting up to `timeout` seconds before killing it.

        Returns:
            The finished run, in the CONFIRMED phase

        Raises:
            SignalDeliveryError: SIGTERM could not be delivered
            StopError: the process is still alive after SIGKILL
        """
        if timeout is None:
            timeout = self.timeout

        run = ShutdownRun(pid=pid, process_name=process_name, deadline=self._clock() + timeout)

        # Descendants may be reparented away from the root before the deadline.
        family = self.tree.descendants(pid)

        logger.info(f"Requesting process stop, PID={pid}, process={process_name}")
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            run.phase = ShutdownPhase.CONFIRMED
            return run
        except OSError as e:
            raise SignalDeliveryError(pid, signal.SIGTERM, e.strerror or str(e)) from e

        run.phase = ShutdownPhase.WAITING
        if self._wait_gone(run, run.deadline):
            run.phase = ShutdownPhase.CONFIRMED
            return run

        logger.warning(
            f"Process '{process_name}' (PID {pid}) still running after {timeout}s; killing it"
        )
        run.phase = ShutdownPhase.ESCALATED
        run.escalated = True
        try:
            self.tree.terminate(pid, include_root=True, sig=signal.SIGKILL)
        except SignalDeliveryError as e:
            if self.probe.is_alive(pid, process_name):
                raise StopError(pid, f"Unable to kill process PID {pid}: {e.reason}") from e
            logger.warning(f"Some descendants of PID {pid} could not be killed: {e}")
        self._kill_strays(family)

        if not self._wait_gone(run, self._clock() + self.kill_timeout):
            raise StopError(
                pid, f"Process '{process_name}' (PID {pid}) survived SIGKILL for {self.kill_timeout}s"
            )

        run.phase = ShutdownPhase.CONFIRMED
        return run

    def _kill_strays(self, family: list[psutil.Process]) -> None:
        """SIGKILL snapshotted descendants still running, including reparented ones."""
        for proc in family:
            try:
                # is_running() also compares the creation time, so a reused PID is skipped.
                if proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE:
                    logger.info(f"Killing leftover descendant PID {proc.pid}")
                    proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.warning(f"Unable to kill descendant PID {proc.pid}: {e}")

    def _wait_gone(self, run: ShutdownRun, deadline: float) -> bool:
        """Poll until the process is gone or the deadline passes."""
        while self.probe.is_alive(run.pid, run.process_name):
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.poll_interval, remaining))
        return True
