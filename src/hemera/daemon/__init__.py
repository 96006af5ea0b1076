"""Daemon process supervision.

- PIDFile / PidRecord: on-disk record binding a process name to a PID
- ProcessProbe: liveness checks reconciling stale records
- ProcessTree: children-first signalling of process trees
- ShutdownController: SIGTERM, then SIGKILL after a timeout
- DaemonSupervisor: start / status / stop / run
"""

from .errors import (
    DaemonError,
    LaunchError,
    MalformedPidFile,
    PidFileExists,
    PidFileNotFound,
    SignalDeliveryError,
    StopError,
)
from .lifecycle import ChildReaper, DaemonStatus, DaemonSupervisor, StartResult, StopResult
from .pid_manager import PIDFile, PidRecord
from .probe import ProcessProbe
from .process_tree import ProcessTree
from .shutdown import ShutdownController, ShutdownPhase

__all__ = [
    "ChildReaper",
    "DaemonError",
    "DaemonStatus",
    "DaemonSupervisor",
    "LaunchError",
    "MalformedPidFile",
    "PIDFile",
    "PidFileExists",
    "PidFileNotFound",
    "PidRecord",
    "ProcessProbe",
    "ProcessTree",
    "ShutdownController",
    "ShutdownPhase",
    "SignalDeliveryError",
    "StartResult",
    "StopError",
    "StopResult",
]
