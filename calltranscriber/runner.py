"""Run external commands and capture their combined output to a log file."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
import subprocess
import time
from pathlib import Path
from typing import Optional, Sequence

LOGGER = logging.getLogger("runner")


@dataclass(frozen=True)
class CommandResult:
    """Holds the outcome of an external command invocation."""

    args: tuple[str, ...]
    returncode: int
    output_path: Path
    duration: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def output(self) -> str:
        try:
            return self.output_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""


def run_command(args: Sequence[str], *, log_path: Path, timeout: Optional[float] = None) -> CommandResult:
    """Run ``args`` with stdout and stderr combined into ``log_path``.

    The call blocks until the process exits. When ``timeout`` elapses the
    process is killed and the result is flagged ``timed_out``.
    """
    cmd = tuple(str(arg) for arg in args)
    started = time.monotonic()
    timed_out = False
    with open(log_path, "ab") as log:
        process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, stdout=log, stderr=subprocess.STDOUT)
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            LOGGER.warning("Command exceeded %ss; terminating pid %s", timeout, process.pid)
            process.kill()
            returncode = process.wait()
            timed_out = True
    return CommandResult(
        args=cmd,
        returncode=returncode,
        output_path=log_path,
        duration=time.monotonic() - started,
        timed_out=timed_out,
    )


def tail(path: Optional[Path], lines: int = 20) -> str:
    """Return the last ``lines`` lines of a text file, or '' if unreadable."""
    if path is None:
        return ""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            return "".join(deque(handle, maxlen=lines)).strip()
    except OSError:
        return ""
