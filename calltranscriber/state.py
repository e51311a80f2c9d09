from __future__ import annotations

from datetime import datetime
import logging
import os
import threading
from pathlib import Path
from typing import Iterator, Optional

from .models import JobOutcome

LOGGER = logging.getLogger("state")

MARKER_SUFFIX = ".done"


class CompletionTracker:
    """Persist per-recording done markers next to the source recording.

    A marker is written once, with exclusive creation, and flushed to disk
    (file and parent directory) before :meth:`mark_complete` returns.
    """

    def __init__(self, suffix: str = MARKER_SUFFIX) -> None:
        self.suffix = suffix
        self._lock = threading.Lock()

    def marker_path(self, recording: Path) -> Path:
        return recording.with_name(recording.name + self.suffix)

    def is_complete(self, recording: Path) -> bool:
        return self.marker_path(recording).exists()

    def mark_complete(self, recording: Path, outcome: JobOutcome) -> bool:
        """Create the marker. Returns False if one already existed."""
        marker = self.marker_path(recording)
        payload = f"outcome={outcome.value}\ncompleted_at={datetime.now().isoformat(timespec='seconds')}\n"
        with self._lock:
            try:
                fd = os.open(str(marker), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                LOGGER.debug("Marker already present for %s", recording)
                return False
            try:
                os.write(fd, payload.encode("utf-8"))
                os.fsync(fd)
            finally:
                os.close(fd)
            _fsync_directory(marker.parent)
        return True

    def read_outcome(self, recording: Path) -> Optional[JobOutcome]:
        marker = self.marker_path(recording)
        try:
            content = marker.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        for line in content.splitlines():
            key, _, value = line.partition("=")
            if key == "outcome":
                try:
                    return JobOutcome(value.strip())
                except ValueError:
                    break
        # Markers created by hand (e.g. `touch`) carry no outcome.
        return JobOutcome.VERIFIED

    def clear(self, recording: Path) -> bool:
        """Remove the marker so the next event reprocesses the recording."""
        marker = self.marker_path(recording)
        with self._lock:
            try:
                marker.unlink()
            except FileNotFoundError:
                return False
        LOGGER.info("Cleared completion marker for %s", recording)
        return True

    def recordings(self, root: Path, suffix: str) -> Iterator[Path]:
        """Yield every recording under ``root`` matching ``suffix``."""
        suffix = suffix.lower()
        for path in sorted(root.rglob("*")):
            if path.is_file() and path.name.lower().endswith(suffix):
                yield path

    def pending(self, root: Path, suffix: str) -> Iterator[Path]:
        for path in self.recordings(root, suffix):
            if not self.is_complete(path):
                yield path


def _fsync_directory(directory: Path) -> None:
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:  # pragma: no cover - platform without directory handles
        return
    try:
        os.fsync(fd)
    except OSError:  # pragma: no cover
        LOGGER.debug("Unable to fsync directory %s", directory, exc_info=True)
    finally:
        os.close(fd)
