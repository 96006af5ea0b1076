"""Daemon-mode entry point: the supervised body launched by `start`."""

import logging
from pathlib import Path
from typing import Sequence

from ..config import Config, load_config
from .errors import LaunchError
from .lifecycle import DaemonSupervisor, initialize_runtime_dir

logger = logging.getLogger("hemera")

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    console: bool = False,
    append: bool = True,
) -> None:
    """
    Configure the hemera logger.

    Args:
        level: Log level name
        log_file: File receiving all messages, if any
        console: Also write messages to stderr
        append: Append to the log file instead of truncating it
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a" if append else "w")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)


def run_daemon(
    process_name: str,
    pid_file: Path,
    command: Sequence[str],
    log_file: Path | None = None,
    runtime_dir: Path | None = None,
    config: Config | None = None,
) -> int:
    """
    Run the supervised command in the current (detached) process.

    Args:
        process_name: Logical name of the daemon
        pid_file: PID file written by the starting supervisor
        command: Command line to supervise
        log_file: Daemon log file; defaults to <runtime>/logs/<name>.log
        runtime_dir: Optional runtime directory path
        config: Preloaded configuration

    Returns:
        Exit code of the command, 127 if it could not be executed
    """
    runtime_dir = initialize_runtime_dir(runtime_dir)
    if config is None:
        config = load_config(runtime_dir)
    if log_file is None:
        log_file = runtime_dir / "logs" / f"{process_name}.log"

    # Detached: messages only go to the log file.
    setup_logging(config.logging.level, log_file, console=False, append=config.logging.append)

    supervisor = DaemonSupervisor(pid_file, process_name, settings=config.supervisor)
    try:
        return supervisor.serve(command)
    except LaunchError as e:
        logger.error(str(e))
        return 127
    except Exception as e:
        logger.exception(f"Daemon crashed: {e}")
        return 1
