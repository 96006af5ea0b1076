"""Liveness checks for processes named in PID files."""

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping

import psutil

from .errors import MalformedPidFile, PidFileNotFound
from .pid_manager import PIDFile

logger = logging.getLogger("hemera")

# Subcommands whose first argument is the name of the daemon they host.
_SUPERVISOR_COMMANDS = ("daemon", "run")
_VALUE_OPTIONS = {"--pid-file", "-p", "--log-file"}


class ProcessProbe:
    """Answers whether the process recorded in a PID file is really alive."""

    def __init__(self, aliases: Mapping[str, Iterable[str]] | None = None):
        self.aliases = {name: set(names) for name, names in (aliases or {}).items()}

    def accepted_names(self, process_name: str) -> set[str]:
        """Names a live process may run under to be considered the recorded one."""
        name = os.path.basename(process_name)
        return {name} | self.aliases.get(name, set())

    def identities(self, proc: psutil.Process) -> set[str]:
        """
        Names a live process goes by: its executable name, the basename of
        argv[0], and for hemera `daemon`/`run` processes the daemon name
        they were given.
        """
        names = {proc.name()}
        try:
            argv = proc.cmdline()
        except psutil.AccessDenied:
            return names
        if argv:
            names.add(os.path.basename(argv[0]))
        supervised = _supervised_name(argv)
        if supervised:
            names.add(supervised)
        return names

    def matches(self, proc: psutil.Process, process_name: str) -> bool:
        """Check a live process against the recorded name and its aliases."""
        return not self.identities(proc).isdisjoint(self.accepted_names(process_name))

    def is_alive(self, pid: int, process_name: str) -> bool:
        """Check the process table only; never touches the PID file."""
        try:
            proc = psutil.Process(pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return False
            return self.matches(proc, process_name)
        except psutil.NoSuchProcess:
            return False

    def is_running(self, pid_file: Path) -> bool:
        """
        Check whether the process recorded in the PID file is running.

        Stale and malformed records are deleted before returning False, so a
        record left on disk always designates a live process.
        """
        record_file = PIDFile(pid_file)
        try:
            record = record_file.read()
        except PidFileNotFound:
            logger.debug(f"PID file '{pid_file}' not found")
            return False
        except MalformedPidFile as e:
            logger.warning(f"{e}; deleting it")
            record_file.delete()
            return False

        logger.debug(f"Checking running process, PID={record.pid}, process={record.process_name}")
        if self.is_alive(record.pid, record.process_name):
            return True

        record_file.delete()
        logger.info(
            f"Process '{record.process_name}' (PID {record.pid}) is dead "
            f"but PID file '{pid_file}' existed; deleted it"
        )
        return False


def _supervised_name(argv: list[str]) -> str | None:
    """Daemon name on the command line of a `hemera daemon` or `hemera run` process."""
    # hemera, python hemera, or python -m hemera.cli.main
    for i, arg in enumerate(argv[:3]):
        if os.path.basename(arg).startswith("hemera"):
            break
    else:
        return None

    args = iter(argv[i + 1 :])
    for arg in args:
        if arg == "--":
            return None
        if arg in _SUPERVISOR_COMMANDS:
            break
    else:
        return None

    for arg in args:
        if arg == "--":
            return None
        if arg in _VALUE_OPTIONS:
            next(args, None)
        elif not arg.startswith("-"):
            return arg
    return None
