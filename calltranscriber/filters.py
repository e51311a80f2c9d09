from __future__ import annotations

import logging
from pathlib import Path

from .config import Settings
from .models import FilterDecision, Job
from .state import CompletionTracker
from .verify import expected_artifacts

LOGGER = logging.getLogger("filter")


class RecordingFilter:
    """Decide whether a closed file becomes a transcription job."""

    def __init__(self, settings: Settings, tracker: CompletionTracker) -> None:
        self.settings = settings
        self.tracker = tracker
        self._suffix = settings.recording_suffix.lower()

    def evaluate(self, path: Path) -> FilterDecision:
        if not path.name.lower().endswith(self._suffix):
            return self._reject(path, "not a recording", level=logging.DEBUG)

        # Size is re-read here; the event only says a write finished.
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return self._reject(path, "file no longer exists")
        except OSError as err:
            return self._reject(path, f"unable to stat ({err})", level=logging.WARNING)

        if size < self.settings.min_size_bytes:
            return self._reject(
                path, f"too small ({size} bytes < {self.settings.min_size_bytes} bytes)"
            )

        try:
            complete = self.tracker.is_complete(path)
        except OSError as err:
            return self._reject(path, f"unable to check completion marker ({err})", level=logging.WARNING)
        if complete:
            return self._reject(path, "already processed")

        return FilterDecision(accepted=True, reason="accepted", job=self.build_job(path))

    def build_job(self, path: Path) -> Job:
        base_name = path.name[: -len(self._suffix)] if self._suffix else path.stem
        output_dir = self.settings.output_dir
        expected = expected_artifacts(output_dir, base_name, self.settings.formats)
        required = [
            artifact
            for artifact in expected
            if artifact.suffix.lstrip(".") in self.settings.required_formats
        ]
        return Job(
            source=path,
            base_name=base_name,
            output_dir=output_dir,
            expected_artifacts=expected,
            required_artifacts=required or expected[:1],
        )

    @staticmethod
    def _reject(path: Path, reason: str, level: int = logging.INFO) -> FilterDecision:
        LOGGER.log(level, "Skipping %s: %s", path, reason)
        return FilterDecision(accepted=False, reason=reason)
