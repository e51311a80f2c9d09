from __future__ import annotations

import errno
import logging
import time
from dataclasses import replace
from pathlib import Path

import pytest

from calltranscriber.config import Settings
from calltranscriber.directory import StaticDirectory
from calltranscriber.dispatch import Dispatcher
from calltranscriber.models import JobOutcome, RecordingEvent
from calltranscriber.service import TranscriberService
from calltranscriber.state import CompletionTracker

COUNTING_BODY = """
echo run >> "$outdir/invocations.log"
echo "hello from $base" > "$outdir/$base.txt"
echo "1" > "$outdir/$base.srt"
"""


def _service(settings: Settings, mailer, mapping=None) -> TranscriberService:
    dispatcher = Dispatcher(settings, StaticDirectory(mapping or {}), mailer)
    return TranscriberService(settings, dispatcher=dispatcher)


def _invocations(settings: Settings) -> int:
    log = settings.output_dir / "invocations.log"
    return len(log.read_text().splitlines()) if log.exists() else 0


def test_notification_scenario_end_to_end(settings: Settings, make_recording, mailer) -> None:
    notify = replace(settings, delivery_mode="notify")
    path = make_recording("exten-123-20240101.wav", size=50 * 1024)
    service = _service(notify, mailer, {"123": "alice@example.com"})

    service.start(watch=False)
    try:
        assert service.enqueue_path(path)
        service.join()
    finally:
        service.stop()

    assert mailer.sent[0][0] == ("alice@example.com", "archive@technetne.com")
    assert path.with_name("exten-123-20240101.wav.done").exists()
    assert (notify.output_dir / "exten-123-20240101.txt").exists()
    assert (notify.output_dir / "exten-123-20240101.srt").exists()
    assert list(notify.scratch_dir.iterdir()) == []


def test_small_recording_never_reaches_engine(settings: Settings, make_recording, make_engine, mailer, caplog) -> None:
    counting = replace(settings, whisper_cli=str(make_engine(COUNTING_BODY, name="counting-whisper")))
    path = make_recording("exten-123-20240101.wav", size=2 * 1024)
    service = _service(counting, mailer)

    with caplog.at_level(logging.INFO):
        assert not service.enqueue_path(path)

    assert "too small" in caplog.text
    assert _invocations(counting) == 0
    assert not path.with_name(path.name + ".done").exists()


def test_duplicate_events_create_one_job(settings: Settings, make_recording, make_engine, mailer) -> None:
    counting = replace(settings, whisper_cli=str(make_engine(COUNTING_BODY, name="counting-whisper")))
    path = make_recording("exten-123-20240101.wav")
    service = _service(counting, mailer)

    assert service.enqueue_path(path)
    assert not service.enqueue_path(path)

    service.start(watch=False)
    try:
        service.join()
        service.handle_event(RecordingEvent(path=path))
        service.join()
    finally:
        service.stop()

    assert _invocations(counting) == 1


def test_engine_success_without_outputs_is_inconsistent(settings: Settings, make_recording, make_engine, mailer) -> None:
    lazy = replace(
        settings,
        delivery_mode="notify",
        whisper_cli=str(make_engine('echo "hello from $base" > "$outdir/$base.txt"\n', name="lazy-whisper")),
    )
    path = make_recording("exten-123-20240101.wav")
    service = _service(lazy, mailer, {"123": "alice@example.com"})
    job = service.filter.evaluate(path).job

    service.process_job(job)

    assert job.outcome is JobOutcome.INCONSISTENT
    assert mailer.sent == []
    assert service.tracker.read_outcome(path) is JobOutcome.INCONSISTENT
    assert not job.scratch_log.exists()


def test_engine_failure_is_marked_and_scratch_removed(settings: Settings, make_recording, make_engine, mailer, caplog) -> None:
    failing = replace(
        settings, whisper_cli=str(make_engine('echo "model file corrupt" >&2\nexit 2\n', name="bad-whisper"))
    )
    path = make_recording("exten-123-20240101.wav")
    service = _service(failing, mailer)
    job = service.filter.evaluate(path).job

    with caplog.at_level(logging.INFO):
        service.process_job(job)

    assert job.outcome is JobOutcome.FAILED
    assert job.exit_status == 2
    assert "model file corrupt" in job.diagnostic
    assert "model file corrupt" in caplog.text
    assert service.tracker.is_complete(path)
    assert list(failing.scratch_dir.iterdir()) == []


def test_timeout_kills_engine_and_marks_failed(settings: Settings, make_recording, make_engine, mailer) -> None:
    slow = replace(settings, whisper_cli=str(make_engine("exec sleep 30\n", name="slow-whisper")), engine_timeout=0.5)
    path = make_recording("exten-123-20240101.wav")
    service = _service(slow, mailer)
    job = service.filter.evaluate(path).job

    service.process_job(job)

    assert job.timed_out
    assert job.outcome is JobOutcome.FAILED
    assert service.tracker.read_outcome(path) is JobOutcome.FAILED
    assert not service.enqueue_path(path)
    assert list(slow.scratch_dir.iterdir()) == []


def test_unexpected_error_is_contained(settings: Settings, make_recording, mailer, caplog) -> None:
    service = _service(settings, mailer)
    path = make_recording("exten-123-20240101.wav")
    job = service.filter.evaluate(path).job

    def explode(_job):
        raise RuntimeError("dispatcher blew up")

    service.dispatcher.dispatch = explode  # type: ignore[assignment]
    service.process_job(job)

    assert job.outcome is JobOutcome.FAILED
    assert "failed during dispatch" in caplog.text
    assert service.tracker.is_complete(path)


def test_restart_reprocesses_recording_without_marker(settings: Settings, make_recording, make_engine, mailer) -> None:
    counting = replace(
        settings,
        scan_existing=True,
        whisper_cli=str(make_engine(COUNTING_BODY, name="counting-whisper")),
    )
    pending = make_recording("exten-123-20240101.wav")
    finished = make_recording("exten-124-20240101.wav")
    service = _service(counting, mailer)
    service.tracker.mark_complete(finished, JobOutcome.VERIFIED)

    service.start(watch=False)
    try:
        service.join()
    finally:
        service.stop()

    assert _invocations(counting) == 1
    assert service.tracker.read_outcome(pending) is JobOutcome.VERIFIED


def test_full_queue_drops_event_without_marker(settings: Settings, make_recording, mailer, caplog) -> None:
    service = _service(replace(settings, queue_size=1), mailer)
    first = make_recording("exten-1-20240101.wav")
    second = make_recording("exten-2-20240101.wav")

    assert service.enqueue_path(first)
    assert not service.enqueue_path(second)
    assert "queue full" in caplog.text
    assert not service.tracker.is_complete(second)


def test_missing_watch_directory_is_fatal(settings: Settings, tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        TranscriberService(replace(settings, watch_dir=tmp_path / "missing"))


def test_output_path_that_is_a_file_is_fatal(settings: Settings, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises((NotADirectoryError, PermissionError)):
        TranscriberService(replace(settings, output_dir=blocker))


def test_watcher_events_feed_the_queue(settings: Settings, make_recording, mailer) -> None:
    path = settings.watch_dir / "2024" / "exten-123-20240101.wav"
    path.parent.mkdir()
    service = _service(settings, mailer)
    service.start(watch=True)
    try:
        with open(path, "wb") as handle:
            handle.write(b"\0" * 50 * 1024)

        deadline = time.monotonic() + 10
        while not service.tracker.is_complete(path) and time.monotonic() < deadline:
            time.sleep(0.1)
    finally:
        service.stop()

    assert service.tracker.read_outcome(path) is JobOutcome.VERIFIED


def test_backlog_larger_than_queue_is_fully_processed(settings: Settings, make_recording, make_engine, mailer) -> None:
    counting = replace(
        settings,
        queue_size=1,
        scan_existing=True,
        whisper_cli=str(make_engine(COUNTING_BODY, name="counting-whisper")),
    )
    recordings = [make_recording(f"exten-{index}-20240101.wav") for index in range(1, 5)]
    service = _service(counting, mailer)

    service.start(watch=False)
    try:
        service.join()
    finally:
        service.stop()

    assert _invocations(counting) == 4
    assert all(service.tracker.read_outcome(path) is JobOutcome.VERIFIED for path in recordings)


def test_filter_error_is_logged_and_next_event_accepted(settings: Settings, make_recording, mailer, caplog) -> None:
    service = _service(settings, mailer)
    broken = make_recording("exten-1-20240101.wav")
    healthy = make_recording("exten-2-20240101.wav")
    evaluate = service.filter.evaluate

    def explode(_path):
        raise RuntimeError("filter blew up")

    service.filter.evaluate = explode  # type: ignore[assignment]
    service.handle_event(RecordingEvent(path=broken))
    service.filter.evaluate = evaluate  # type: ignore[assignment]

    assert "Failed to filter" in caplog.text
    assert service.enqueue_path(healthy)
    assert service.enqueue_path(broken)


class _LongNameTracker(CompletionTracker):
    def is_complete(self, recording: Path) -> bool:
        if len(recording.name) > 200:
            raise OSError(errno.ENAMETOOLONG, "File name too long")
        return super().is_complete(recording)


def test_watcher_survives_marker_errors(settings: Settings, mailer) -> None:
    dispatcher = Dispatcher(settings, StaticDirectory({}), mailer)
    service = TranscriberService(settings, dispatcher=dispatcher, tracker=_LongNameTracker())
    long_name = settings.watch_dir / ("exten-1-" + "x" * 220 + ".wav")
    path = settings.watch_dir / "exten-2-20240101.wav"
    service.start(watch=True)
    try:
        long_name.write_bytes(b"\0" * 50 * 1024)
        time.sleep(0.5)
        path.write_bytes(b"\0" * 50 * 1024)

        deadline = time.monotonic() + 10
        while not service.tracker.is_complete(path) and time.monotonic() < deadline:
            time.sleep(0.1)
        assert service._observer is not None and service._observer.is_alive()
    finally:
        service.stop()

    assert service.tracker.read_outcome(path) is JobOutcome.VERIFIED
    assert not long_name.with_name(long_name.name + ".done").exists()
