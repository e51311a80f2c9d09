from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import RecordingEvent

LOGGER = logging.getLogger("watcher")


class RecordingHandler(FileSystemEventHandler):
    """Dispatch events for files closed after being written."""

    def __init__(self, callback: Callable[[RecordingEvent], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_closed(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def _handle_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = event.src_path
        if isinstance(path, bytes):
            path = path.decode()
        self._callback(RecordingEvent(path=Path(path), detected_at=datetime.now()))


def start_watcher(directory: Path, callback: Callable[[RecordingEvent], None]) -> Observer:
    """Start a recursive watchdog observer for the given directory."""
    observer = Observer()
    observer.schedule(RecordingHandler(callback), str(directory), recursive=True)
    observer.start()
    LOGGER.info("Watching %s recursively for completed recordings", directory)
    return observer
