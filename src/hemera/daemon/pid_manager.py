"""PID file management for daemon lifecycle."""

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import MalformedPidFile, PidFileExists, PidFileNotFound

PID_SUFFIX = ".pid"

_PID_VALUE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class PidRecord:
    """A process name bound to an OS process identifier."""

    process_name: str
    pid: int

    def __post_init__(self) -> None:
        if not self.process_name or "\n" in self.process_name or "\r" in self.process_name:
            raise ValueError(f"Invalid process name: {self.process_name!r}")
        if self.pid <= 0:
            raise ValueError(f"PID must be positive, got {self.pid}")

    def to_text(self) -> str:
        return f"processName={self.process_name}\npid={self.pid}\n"

    @classmethod
    def from_text(cls, text: str, path: Path | None = None) -> "PidRecord":
        """
        Parse the line-oriented PID file format.

        The first occurrence of each key wins; blank lines and unknown keys
        are ignored.

        Raises:
            MalformedPidFile: a key is missing or the pid is not a positive integer
        """
        fields: dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep and key.strip() not in fields:
                fields[key.strip()] = value.strip()

        if "pid" not in fields:
            raise MalformedPidFile(path, "missing 'pid' entry")
        if not fields.get("processName"):
            raise MalformedPidFile(path, "missing 'processName' entry")

        pid_value = fields["pid"]
        if not _PID_VALUE.match(pid_value) or int(pid_value) == 0:
            raise MalformedPidFile(path, f"invalid pid {pid_value!r}")

        return cls(process_name=fields["processName"], pid=int(pid_value))


class PIDFile:
    """Manages the PID file of one supervised process."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def write(self, process_name: str, pid: int) -> PidRecord:
        """
        Write a new record, failing if one is already present.

        The record is written to a temporary file, then hard-linked into
        place so readers never see a partial record and an existing file is
        never replaced.

        Raises:
            PidFileExists: the path already holds a record
        """
        record = PidRecord(process_name=process_name, pid=pid)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.to_text())
            os.link(tmp_name, self.path)
        except FileExistsError:
            raise PidFileExists(self.path) from None
        finally:
            os.unlink(tmp_name)

        return record

    def read(self) -> PidRecord:
        """
        Read the record.

        Raises:
            PidFileNotFound: no file at the path
            MalformedPidFile: the file cannot be parsed
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise PidFileNotFound(self.path) from None
        except UnicodeDecodeError:
            raise MalformedPidFile(self.path, "not UTF-8 text") from None

        return PidRecord.from_text(text, self.path)

    def delete(self) -> None:
        """Remove PID file; a missing file is not an error."""
        self.path.unlink(missing_ok=True)

    def delete_if_owned(self, pid: int) -> bool:
        """
        Remove PID file only while it still records `pid`.

        Returns:
            True if the file was removed
        """
        try:
            record = self.read()
        except (PidFileNotFound, MalformedPidFile):
            return False
        if record.pid != pid:
            return False
        self.delete()
        return True


def pid_file_for(pid_dir: Path, name: str) -> Path:
    """Conventional PID file path of a named daemon."""
    return pid_dir / f"{name}{PID_SUFFIX}"


def list_pid_files(pid_dir: Path) -> list[Path]:
    """Return all PID files of a directory."""
    if not pid_dir.is_dir():
        return []
    return sorted(p for p in pid_dir.glob(f"*{PID_SUFFIX}") if p.is_file())
