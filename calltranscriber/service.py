from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import List, Optional, Set

from watchdog.observers import Observer

from .config import Settings, load_settings
from .directory import build_directory
from .dispatch import Dispatcher
from .filters import RecordingFilter
from .models import Job, JobOutcome, RecordingEvent
from .runner import tail
from .state import CompletionTracker
from .transcribe import WhisperTranscriber
from .verify import OutputVerifier
from .watcher import start_watcher

LOGGER = logging.getLogger("service")


def require_readable_directory(path: Path, description: str) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"{description} not found at {path}")
    if not path.is_dir():
        raise NotADirectoryError(f"{description} expected to be a directory at {path}")
    if not os.access(path, os.R_OK | os.X_OK):
        raise PermissionError(f"Insufficient permissions to read {description.lower()} {path}")
    return path


def ensure_writable_directory(path: Path, description: str) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise PermissionError(f"Unable to create {description.lower()} {path}: {err}") from err
    if not path.is_dir():
        raise NotADirectoryError(f"{description} expected to be a directory at {path}")
    if not os.access(path, os.W_OK | os.X_OK):
        raise PermissionError(f"{description} {path} is not writable")
    return path


class TranscriberService:
    """Coordinate watching, filtering, transcription and delivery of recordings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transcriber: Optional[WhisperTranscriber] = None,
        dispatcher: Optional[Dispatcher] = None,
        tracker: Optional[CompletionTracker] = None,
    ) -> None:
        self.settings = settings or load_settings()

        require_readable_directory(self.settings.watch_dir, "Watch directory")
        ensure_writable_directory(self.settings.output_dir, "Output directory")
        ensure_writable_directory(self.settings.scratch_dir, "Scratch directory")

        self.transcriber = transcriber or WhisperTranscriber(self.settings)
        self.dispatcher = dispatcher or Dispatcher(self.settings, build_directory(self.settings))
        self.tracker = tracker or CompletionTracker()
        self.filter = RecordingFilter(self.settings, self.tracker)
        self.verifier = OutputVerifier()

        self._queue: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=self.settings.queue_size)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._inflight: Set[Path] = set()
        self._workers: List[threading.Thread] = []
        self._observer: Optional[Observer] = None

    def start(self, watch: bool = True) -> None:
        """Start the worker threads and optionally the filesystem watcher."""
        LOGGER.info(
            "Starting transcription service (watch=%s, output=%s, mode=%s, workers=%d)",
            self.settings.watch_dir,
            self.settings.output_dir,
            self.settings.delivery_mode,
            self.settings.workers,
        )
        for index in range(self.settings.workers):
            worker = threading.Thread(
                target=self._worker_loop, name=f"TranscriberWorker-{index + 1}", daemon=True
            )
            worker.start()
            self._workers.append(worker)

        if watch:
            self._observer = start_watcher(self.settings.watch_dir, self.handle_event)

        if self.settings.scan_existing:
            self.enqueue_existing()

    def stop(self) -> None:
        LOGGER.info("Stopping transcription service")
        self._stop.set()
        if self._observer:
            self._observer.stop()
            self._observer.join()
        for _ in self._workers:
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                # Workers also poll the stop flag.
                break
        for worker in self._workers:
            worker.join()
        self._workers = []

    def join(self) -> None:
        self._queue.join()

    def handle_event(self, event: RecordingEvent) -> None:
        # Runs on the observer thread; an escaping error would stop the watch.
        try:
            self.enqueue_path(event.path)
        except Exception:
            LOGGER.exception("Failed to filter %s", event.path)

    def enqueue_existing(self) -> int:
        count = 0
        try:
            paths = list(self.tracker.pending(self.settings.watch_dir, self.settings.recording_suffix))
        except OSError as err:
            LOGGER.warning("Unable to scan watch directory: %s", err)
            return 0
        for path in paths:
            if self._stop.is_set():
                break
            if self.enqueue_path(path, block=True):
                count += 1
        LOGGER.info("Queued %d existing recording(s)", count)
        return count

    def enqueue_path(self, path: Path, block: bool = False) -> bool:
        """Filter ``path`` and queue a job for it.

        Watch events never block: on a full queue the event is dropped. The
        startup scan passes ``block=True`` and waits for room instead.
        """
        with self._lock:
            if path in self._inflight:
                LOGGER.debug("Skipping %s: already queued", path)
                return False
            decision = self.filter.evaluate(path)
            if not decision.accepted or decision.job is None:
                return False
            self._inflight.add(path)

        if not self._put(decision.job, block):
            with self._lock:
                self._inflight.discard(path)
            if block:
                LOGGER.info("Service stopping; %s left for the next scan", path)
            else:
                LOGGER.warning("Job queue full; dropping %s until its next event", path)
            return False
        LOGGER.info("Detected new recording: %s", path)
        return True

    def _put(self, job: Job, block: bool) -> bool:
        if not block:
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                return False
            return True
        while not self._stop.is_set():
            try:
                self._queue.put(job, timeout=0.5)
            except queue.Full:
                continue
            return True
        return False

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue

            if job is None:
                self._queue.task_done()
                break

            try:
                self.process_job(job)
            except Exception:
                LOGGER.exception("Failed to process %s", job.source)
            finally:
                with self._lock:
                    self._inflight.discard(job.source)
                self._queue.task_done()

    def process_job(self, job: Job) -> Job:
        """Run one job through invoke, verify, dispatch and mark complete."""
        stage = "transcribe"
        try:
            self.transcriber.transcribe(job)
            stage = "verify"
            self.verifier.verify(job)
            job.diagnostic = tail(job.scratch_log)
            if job.outcome is not JobOutcome.VERIFIED and job.diagnostic:
                LOGGER.error("Whisper output for %s:\n%s", job.source, job.diagnostic)
            stage = "dispatch"
            self.dispatcher.dispatch(job)
        except Exception:
            job.outcome = JobOutcome.FAILED
            job.diagnostic = job.diagnostic or tail(job.scratch_log)
            LOGGER.exception(
                "Job for %s failed during %s%s",
                job.source,
                stage,
                f"; Whisper output:\n{job.diagnostic}" if job.diagnostic else "",
            )
        finally:
            self._remove_scratch(job)

        self._mark_complete(job)
        return job

    def _mark_complete(self, job: Job) -> None:
        outcome = job.outcome or JobOutcome.FAILED
        try:
            created = self.tracker.mark_complete(job.source, outcome)
        except OSError as err:
            LOGGER.error("Unable to write completion marker for %s: %s", job.source, err)
            return
        if created:
            if outcome is JobOutcome.VERIFIED:
                LOGGER.info("Finished %s (%s)", job.source, "delivered" if job.delivered else outcome.value)
            else:
                LOGGER.warning("Finished %s as %s", job.source, outcome.value)

    @staticmethod
    def _remove_scratch(job: Job) -> None:
        if job.scratch_log is None:
            return
        try:
            job.scratch_log.unlink()
        except FileNotFoundError:
            pass
        except OSError as err:
            LOGGER.warning("Unable to remove scratch log %s: %s", job.scratch_log, err)
