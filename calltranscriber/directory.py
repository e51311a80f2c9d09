"""Extension to e-mail address lookups.

Each directory answers ``lookup(extension)`` with at most one address or
``None``. Lookups may raise; the dispatcher treats an error as "no mapping".
"""

from __future__ import annotations

import logging
import re
import shlex
import sqlite3
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from .config import Settings

LOGGER = logging.getLogger("directory")

EXTENSION_PATTERN = re.compile(r"^\w+$")


class DirectoryError(RuntimeError):
    """Raised when a directory backend cannot answer a lookup."""


def _clean_address(value: object) -> Optional[str]:
    if value is None:
        return None
    address = str(value).strip()
    if "@" not in address:
        return None
    return address


class Directory:
    def lookup(self, extension: str) -> Optional[str]:
        raise NotImplementedError


class NullDirectory(Directory):
    def lookup(self, extension: str) -> Optional[str]:
        return None


class StaticDirectory(Directory):
    """Mapping held in memory, optionally loaded from ``ext=address`` lines."""

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = {str(key).strip(): value for key, value in mapping.items()}

    @classmethod
    def from_file(cls, path: Path) -> "StaticDirectory":
        mapping: dict[str, str] = {}
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            if not sep:
                raise ValueError(f"{path}:{lineno}: expected 'extension=address'")
            mapping[key.strip()] = value.strip()
        return cls(mapping)

    def lookup(self, extension: str) -> Optional[str]:
        return _clean_address(self._mapping.get(extension))


class SqliteDirectory(Directory):
    """Run a single-parameter query against a read-only sqlite database."""

    def __init__(self, db_path: Path, query: str) -> None:
        self.db_path = db_path
        self.query = query

    def lookup(self, extension: str) -> Optional[str]:
        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        except sqlite3.Error as err:
            raise DirectoryError(f"Unable to open directory database {self.db_path}: {err}") from err
        try:
            row = conn.execute(self.query, (extension,)).fetchone()
        except sqlite3.Error as err:
            raise DirectoryError(f"Directory query failed for extension {extension}: {err}") from err
        finally:
            conn.close()
        return _clean_address(row[0]) if row else None


class CommandDirectory(Directory):
    """Run an external query command, e.g. ``mysql -N ... -e "SELECT email ..."``.

    ``{extension}`` in the template is replaced with the extension. The first
    non-empty line of stdout is the address.
    """

    def __init__(self, command: str, timeout: float = 10.0) -> None:
        self.command = command
        self.timeout = timeout

    def lookup(self, extension: str) -> Optional[str]:
        if not EXTENSION_PATTERN.match(extension):
            LOGGER.warning("Refusing directory lookup for unexpected extension %r", extension)
            return None
        args = [part.replace("{extension}", extension) for part in shlex.split(self.command)]
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as err:
            raise DirectoryError(f"Directory command failed for extension {extension}: {err}") from err
        if result.returncode != 0:
            raise DirectoryError(
                f"Directory command exited {result.returncode} for extension {extension}: {result.stderr.strip()}"
            )
        for line in result.stdout.splitlines():
            if line.strip():
                return _clean_address(line)
        return None


def build_directory(settings: Settings) -> Directory:
    backend = settings.directory_backend
    if backend == "static":
        if settings.directory_file is None:
            raise ValueError("Static directory requires CALL_TRANSCRIBER_DIRECTORY_FILE.")
        return StaticDirectory.from_file(settings.directory_file)
    if backend == "sqlite":
        if settings.directory_db is None:
            raise ValueError("Sqlite directory requires CALL_TRANSCRIBER_DIRECTORY_DB.")
        return SqliteDirectory(settings.directory_db, settings.directory_query)
    if backend == "command":
        if not settings.directory_command:
            raise ValueError("Command directory requires CALL_TRANSCRIBER_DIRECTORY_COMMAND.")
        return CommandDirectory(settings.directory_command)
    return NullDirectory()
