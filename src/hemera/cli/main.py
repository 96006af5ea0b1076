"""CLI interface for Hemera."""

import subprocess
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
import typer

# Load .env from current directory or parent directories
load_dotenv()
from rich.console import Console
from rich.table import Table

from ..config import Config, ConfigError, load_config
from ..daemon.errors import LaunchError, PidFileExists, SignalDeliveryError, StopError
from ..daemon.lifecycle import (
    DaemonStatus,
    DaemonSupervisor,
    StartResult,
    StopResult,
    check_pid_files,
    format_uptime,
    get_runtime_dir,
    initialize_runtime_dir,
)
from ..daemon.main import run_daemon, setup_logging
from ..daemon.pid_manager import pid_file_for
from ..daemon.probe import ProcessProbe

# Exit codes
EXIT_ERROR = 101
EXIT_CONFIG = 105
EXIT_STOP_FAILURE = 111

app = typer.Typer(
    name="hemera",
    help="Run commands as supervised background daemons tracked by PID files.",
    no_args_is_help=True,
)
console = Console()


def get_config() -> Config:
    """Load configuration, exiting on invalid values."""
    try:
        return load_config(initialize_runtime_dir())
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(EXIT_CONFIG)


def get_pid_dir(config: Config) -> Path:
    return config.supervisor.pid_dir or get_runtime_dir() / "pids"


def get_supervisor(
    name: str,
    pid_file: Optional[Path] = None,
    log_file: Optional[Path] = None,
    output_file: Optional[Path] = None,
    config: Config | None = None,
) -> DaemonSupervisor:
    """Get the supervisor of a named daemon."""
    if config is None:
        config = get_config()
    logs_dir = get_runtime_dir() / "logs"
    return DaemonSupervisor(
        pid_file or pid_file_for(get_pid_dir(config), name),
        name,
        settings=config.supervisor,
        log_file=log_file or logs_dir / f"{name}.log",
        output_file=output_file or logs_dir / f"{name}.out",
    )


PID_FILE_OPTION = typer.Option(
    None, "--pid-file", "-p", help="PID file (default: <pid_dir>/<NAME>.pid)"
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info messages"),
) -> None:
    """Run commands as supervised background daemons tracked by PID files."""
    if verbose:
        setup_logging("DEBUG", console=True)


@app.command()
def start(
    name: str = typer.Argument(..., help="Daemon name"),
    command: list[str] = typer.Argument(..., help="Command to run, after --"),
    pid_file: Optional[Path] = PID_FILE_OPTION,
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Daemon log file"),
    output_file: Optional[Path] = typer.Option(
        None, "--output-file", help="File receiving the command's output"
    ),
) -> None:
    """Start a command as a background daemon."""
    supervisor = get_supervisor(name, pid_file, log_file, output_file)

    try:
        result = supervisor.start(command)
    except PidFileExists as e:
        console.print(f"[red]{e}: {name} was started by someone else.[/red]")
        raise typer.Exit(EXIT_ERROR)
    except LaunchError as e:
        console.print(f"[red]Failed to start {name}: {e}[/red]")
        raise typer.Exit(EXIT_ERROR)

    if result is StartResult.ALREADY_RUNNING:
        console.print(f"[yellow]{name} is already running.[/yellow]")
    else:
        console.print(f"[green]Launched {name} with PID {supervisor.get_pid()}[/green]")


@app.command()
def status(
    name: str = typer.Argument(..., help="Daemon name"),
    pid_file: Optional[Path] = PID_FILE_OPTION,
) -> None:
    """Show daemon status."""
    supervisor = get_supervisor(name, pid_file)

    table = Table(title=f"{name} Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    if supervisor.status() is DaemonStatus.RUNNING:
        uptime = supervisor.uptime()
        table.add_row("Status", "[green]Running[/green]")
        table.add_row("PID", str(supervisor.get_pid()))
        table.add_row("Uptime", format_uptime(uptime) if uptime is not None else "-")
    else:
        table.add_row("Status", "[yellow]Stopped[/yellow]")
        table.add_row("PID", "-")
        table.add_row("Uptime", "not started")

    table.add_row("PID File", str(supervisor.pid_file.path))
    console.print(table)


@app.command()
def stop(
    name: str = typer.Argument(..., help="Daemon name"),
    pid_file: Optional[Path] = PID_FILE_OPTION,
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds to wait before killing the process"
    ),
) -> None:
    """Stop a running daemon."""
    supervisor = get_supervisor(name, pid_file)
    pid = supervisor.get_pid()

    try:
        result = supervisor.stop(timeout=timeout)
    except (SignalDeliveryError, StopError) as e:
        console.print(f"[red]Unable to stop {name}: {e}[/red]")
        raise typer.Exit(EXIT_STOP_FAILURE)

    if result is StopResult.ALREADY_STOPPED:
        console.print(f"[yellow]{name} is NOT running.[/yellow]")
    else:
        console.print(f"[green]{name} (PID {pid}) stopped.[/green]")


@app.command()
def run(
    name: str = typer.Argument(..., help="Daemon name"),
    command: list[str] = typer.Argument(..., help="Command to run, after --"),
    pid_file: Optional[Path] = PID_FILE_OPTION,
) -> None:
    """Run a command in the foreground, cleaning up its children on exit."""
    config = get_config()
    supervisor = get_supervisor(name, pid_file, config=config)
    setup_logging(config.logging.level, console=config.logging.console)

    try:
        returncode = supervisor.serve(command, claim_pid_file=True)
    except PidFileExists:
        console.print(f"[red]{name} is already running.[/red]")
        raise typer.Exit(EXIT_ERROR)
    except LaunchError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_ERROR)

    raise typer.Exit(returncode)


@app.command(hidden=True)
def daemon(
    name: str = typer.Argument(..., help="Daemon name"),
    command: list[str] = typer.Argument(..., help="Command to run, after --"),
    pid_file: Path = typer.Option(..., "--pid-file", "-p", help="PID file"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Daemon log file"),
) -> None:
    """Internal: body of a daemon launched by `start`."""
    sys.exit(run_daemon(name, pid_file, command, log_file=log_file, config=get_config()))


@app.command()
def check() -> None:
    """Check all PID files, deleting those of dead processes."""
    config = get_config()
    pid_dir = get_pid_dir(config)
    results = check_pid_files(pid_dir, ProcessProbe(config.supervisor.aliases))

    if not results:
        console.print(f"[yellow]No PID file found in {pid_dir}.[/yellow]")
        return

    table = Table(title="PID Files")
    table.add_column("PID File", style="cyan")
    table.add_column("Status")
    for path, running in results.items():
        table.add_row(
            str(path), "[green]Running[/green]" if running else "[yellow]Stale (deleted)[/yellow]"
        )
    console.print(table)


@app.command()
def logs(
    name: str = typer.Argument(..., help="Daemon name"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
) -> None:
    """View daemon logs."""
    log_file = get_runtime_dir() / "logs" / f"{name}.log"

    if not log_file.exists():
        console.print("[yellow]No log file found.[/yellow]")
        raise typer.Exit(EXIT_ERROR)

    if follow:
        subprocess.run(["tail", "-f", str(log_file)])
    else:
        subprocess.run(["tail", f"-{lines}", str(log_file)])


@app.command()
def config(
    action: str = typer.Argument("show", help="Action: show, path"),
) -> None:
    """Show configuration."""
    config_path = initialize_runtime_dir() / "config.yaml"

    if action == "show":
        if config_path.exists():
            console.print(config_path.read_text(), markup=False)
        else:
            console.print("[yellow]No configuration file found.[/yellow]")
    elif action == "path":
        console.print(str(config_path), soft_wrap=True)
    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        raise typer.Exit(EXIT_ERROR)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
