from __future__ import annotations

import argparse
import logging
import signal
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import (
    DEFAULT_OUTPUT_PATH,
    DEFAULT_WATCH_PATH,
    Settings,
    load_settings,
    parse_delivery_mode,
    parse_output_format,
    validate_settings,
)
from .service import TranscriberService
from .state import CompletionTracker

LOGGER = logging.getLogger("cli")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def _configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    overrides = {}
    if args.watch_dir:
        overrides["watch_dir"] = Path(args.watch_dir).expanduser()
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir).expanduser()
    if args.model:
        overrides["whisper_model"] = args.model
    if args.language:
        overrides["language"] = args.language
    if args.output_format:
        overrides["output_format"] = parse_output_format(args.output_format)
    if args.mode:
        overrides["delivery_mode"] = parse_delivery_mode(args.mode)
    if args.min_size_kb is not None:
        overrides["min_size_bytes"] = int(args.min_size_kb * 1024)
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.timeout is not None:
        overrides["engine_timeout"] = args.timeout if args.timeout > 0 else None
    if args.archive_address:
        overrides["archive_address"] = args.archive_address
    if args.log_file:
        overrides["log_file"] = Path(args.log_file).expanduser()
    if args.scan or args.once:
        overrides["scan_existing"] = True

    if overrides:
        settings = replace(settings, **overrides)
    return validate_settings(settings)


def _list_recordings(settings: Settings) -> int:
    tracker = CompletionTracker()
    try:
        recordings = list(tracker.recordings(settings.watch_dir, settings.recording_suffix))
    except OSError as err:
        LOGGER.error("Failed to list recordings: %s", err)
        return 1

    if not recordings:
        LOGGER.info("No recordings found in %s", settings.watch_dir)
        return 0

    print("/-- Done marker")
    print("|/-- Transcript present")
    print(f"{'D':<1}{'T':<1}  {'Modified':19}  {'Size':>10}  {'Outcome':12}  Recording")
    for path in recordings:
        stat = path.stat()
        base_name = path.name[: -len(settings.recording_suffix)]
        outcome = tracker.read_outcome(path)
        has_transcript = (settings.output_dir / f"{base_name}.txt").exists()
        when = datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
        d_char = "✓" if outcome else "."
        t_char = "✓" if has_transcript else "."
        label = outcome.value if outcome else "-"
        print(f"{d_char:<1}{t_char:<1}  {when:19}  {stat.st_size:>10}  {label:12}  {path}")
    return 0


def _reset_marker(path: Path) -> int:
    if CompletionTracker().clear(path):
        print(f"Cleared completion marker for {path}")
    else:
        print(f"No completion marker for {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Watch for completed call recordings, transcribe them with Whisper and deliver the transcripts."
    )
    parser.add_argument(
        "--watch-dir",
        help=f"Directory tree to watch. Defaults to '{DEFAULT_WATCH_PATH}' or CALL_TRANSCRIBER_WATCH_DIR.",
    )
    parser.add_argument(
        "--output-dir",
        help=f"Directory for transcripts. Defaults to '{DEFAULT_OUTPUT_PATH}' or CALL_TRANSCRIBER_OUTPUT_DIR.",
    )
    parser.add_argument("--model", help="Whisper model identifier (default from env or 'base').")
    parser.add_argument("--language", help="Language hint for Whisper (e.g. 'en').")
    parser.add_argument("--output-format", help="'all' or a comma separated list (txt,srt,json,tsv,vtt).")
    parser.add_argument("--mode", help="Delivery mode: 'local' keeps transcripts, 'notify' emails them.")
    parser.add_argument("--min-size-kb", type=float, help="Skip recordings smaller than this (KB).")
    parser.add_argument("--workers", type=int, help="Number of concurrent transcription workers.")
    parser.add_argument("--timeout", type=float, help="Whisper timeout in seconds (0 disables).")
    parser.add_argument("--archive-address", help="Address that receives a copy of every transcript.")
    parser.add_argument("--log-file", help="Append daemon log lines to this file.")
    parser.add_argument("--scan", action="store_true", help="Queue unprocessed recordings found at startup.")
    parser.add_argument("--once", action="store_true", help="Process unprocessed recordings and exit.")
    parser.add_argument("--status", action="store_true", help="List recordings and their state, then exit.")
    parser.add_argument("--reset", metavar="RECORDING", help="Remove the completion marker of a recording.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING...). Default: INFO.",
    )

    args = parser.parse_args(argv)

    try:
        settings = build_settings(args)
    except Exception as err:
        _configure_logging(args.log_level)
        LOGGER.error("%s", err)
        return 1

    try:
        _configure_logging(args.log_level, settings.log_file)
    except OSError as err:
        _configure_logging(args.log_level)
        LOGGER.error("Unable to open log file %s: %s", settings.log_file, err)
        return 1

    if args.status:
        return _list_recordings(settings)
    if args.reset:
        return _reset_marker(Path(args.reset).expanduser())

    try:
        service = TranscriberService(settings)
    except Exception as err:
        LOGGER.error("%s", err)
        return 1

    previous_handler = signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        try:
            service.start(watch=not args.once)
        except OSError as err:
            LOGGER.error("Unable to watch %s: %s", settings.watch_dir, err)
            return 1
        if args.once:
            service.join()
        else:
            LOGGER.info("Watcher started. Monitoring %s for new recordings.", settings.watch_dir)
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested.")
    finally:
        service.stop()
        signal.signal(signal.SIGTERM, previous_handler)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
