"""YAML-based configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


def _default_aliases() -> dict[str, list[str]]:
    # Binaries that run under another name once launched (SoX installs play/rec as links).
    return {
        "play": ["sox", "lt-sox"],
        "rec": ["sox", "lt-sox"],
        "sox": ["lt-sox"],
    }


class ConfigError(ValueError):
    """Raised when the configuration holds an invalid value."""


@dataclass
class SupervisorSettings:
    pid_dir: Path | None = None
    stop_timeout: float = 10
    poll_interval: float = 1.0
    kill_timeout: float = 5
    launch_timeout: float = 5
    reap_timeout: float = 1.0
    aliases: dict[str, list[str]] = field(default_factory=_default_aliases)


@dataclass
class LoggingSettings:
    level: str = "INFO"
    console: bool = True
    append: bool = True


@dataclass
class Config:
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def load_config(runtime_dir: Path | None = None) -> Config:
    """Load configuration from YAML file, then apply environment overrides."""
    if runtime_dir is None:
        runtime_dir = Path(os.environ.get("HEMERA_HOME", Path.home() / ".hemera"))

    config_path = runtime_dir / "config.yaml"

    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = _parse_config(data)
    else:
        config = Config()

    return _apply_env(config, os.environ)


def _positive(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}")
    return number


def _parse_aliases(raw: Any) -> dict[str, list[str]]:
    if not isinstance(raw, dict):
        raise ConfigError("supervisor.aliases must be a mapping of name to alternate names")

    aliases = {}
    for name, alternates in raw.items():
        if isinstance(alternates, str):
            alternates = [alternates]
        aliases[str(name)] = [str(a) for a in alternates or []]
    return aliases


def _parse_config(data: dict[str, Any]) -> Config:
    """Parse YAML data into Config object."""
    config = Config()

    if "supervisor" in data:
        s = data["supervisor"] or {}
        pid_dir = s.get("pid_dir")
        aliases = _default_aliases()
        if "aliases" in s:
            # User entries extend the built-in alias sets.
            aliases.update(_parse_aliases(s["aliases"]))
        config.supervisor = SupervisorSettings(
            pid_dir=Path(pid_dir).expanduser() if pid_dir else None,
            stop_timeout=_positive(s.get("stop_timeout", 10), "supervisor.stop_timeout"),
            poll_interval=_positive(s.get("poll_interval", 1.0), "supervisor.poll_interval"),
            kill_timeout=_positive(s.get("kill_timeout", 5), "supervisor.kill_timeout"),
            launch_timeout=_positive(s.get("launch_timeout", 5), "supervisor.launch_timeout"),
            reap_timeout=_positive(s.get("reap_timeout", 1.0), "supervisor.reap_timeout"),
            aliases=aliases,
        )

    if "logging" in data:
        lg = data["logging"] or {}
        config.logging = LoggingSettings(
            level=str(lg.get("level", "INFO")).upper(),
            console=bool(lg.get("console", True)),
            append=bool(lg.get("append", True)),
        )

    return config


def _apply_env(config: Config, environ: Any) -> Config:
    """Apply HEMERA_* environment overrides."""
    if environ.get("HEMERA_PID_DIR"):
        config.supervisor.pid_dir = Path(environ["HEMERA_PID_DIR"]).expanduser()

    if environ.get("HEMERA_STOP_TIMEOUT"):
        config.supervisor.stop_timeout = _positive(
            environ["HEMERA_STOP_TIMEOUT"], "HEMERA_STOP_TIMEOUT"
        )

    if environ.get("HEMERA_LOG_LEVEL"):
        config.logging.level = environ["HEMERA_LOG_LEVEL"].upper()

    return config
