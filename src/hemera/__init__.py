"""Hemera: supervised background daemons tracked by PID files.

Import from specific modules:
    from hemera.daemon.lifecycle import DaemonSupervisor
    from hemera.daemon.pid_manager import PIDFile, PidRecord
    from hemera.config import load_config
"""

__version__ = "0.1.0"
