from __future__ import annotations

from dataclasses import dataclass
import os
import shlex
from pathlib import Path
import tempfile
from typing import Literal, Mapping, Optional, Tuple


DeliveryMode = Literal["local", "notify"]
DirectoryBackend = Literal["none", "static", "sqlite", "command"]

ALL_FORMATS: Tuple[str, ...] = ("txt", "srt", "json", "tsv", "vtt")

DEFAULT_WATCH_PATH = Path("/var/spool/asterisk/monitor")
DEFAULT_OUTPUT_PATH = Path("/var/transcripts")
DEFAULT_ARCHIVE_ADDRESS = "archive@technetne.com"
DEFAULT_SENDER_ADDRESS = "transcripts@technetne.com"
DEFAULT_DIRECTORY_QUERY = "SELECT email FROM userman_users WHERE username = ?"


def parse_delivery_mode(value: str | None, default: DeliveryMode = "local") -> DeliveryMode:
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized in ("local", "store", "terminal"):
        return "local"
    if normalized in ("notify", "notification", "email", "mail"):
        return "notify"
    raise ValueError("Invalid delivery mode. Use 'local' or 'notify'.")


def parse_output_format(value: str | None, default: str = "all") -> str:
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized == "all":
        return normalized
    formats = [part.strip() for part in normalized.split(",") if part.strip()]
    unknown = [fmt for fmt in formats if fmt not in ALL_FORMATS]
    if not formats or unknown:
        raise ValueError(
            f"Invalid output format '{value}'. Use 'all' or a comma separated subset of {', '.join(ALL_FORMATS)}."
        )
    return ",".join(formats)


def parse_directory_backend(value: str | None, default: DirectoryBackend = "none") -> DirectoryBackend:
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized in ("none", "static", "sqlite", "command"):
        return normalized  # type: ignore[return-value]
    raise ValueError("Invalid directory backend. Use 'none', 'static', 'sqlite' or 'command'.")


def output_formats(output_format: str) -> Tuple[str, ...]:
    """Expand an output format setting into the list of file extensions."""
    if output_format == "all":
        return ALL_FORMATS
    return tuple(part for part in output_format.split(",") if part)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the transcription daemon."""

    watch_dir: Path = DEFAULT_WATCH_PATH
    output_dir: Path = DEFAULT_OUTPUT_PATH
    scratch_dir: Path = Path(tempfile.gettempdir())
    recording_suffix: str = ".wav"
    min_size_bytes: int = 5 * 1024

    whisper_cli: str = "whisper"
    whisper_model: str = "base"
    whisper_extra_args: Tuple[str, ...] = ()
    language: str | None = "en"
    output_format: str = "all"
    required_formats: Tuple[str, ...] = ("txt", "srt")
    verbose: bool = False
    engine_timeout: float | None = 3600.0

    workers: int = 1
    queue_size: int = 100
    scan_existing: bool = False

    delivery_mode: DeliveryMode = "local"
    archive_address: str = DEFAULT_ARCHIVE_ADDRESS
    sender_address: str = DEFAULT_SENDER_ADDRESS
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_timeout: float = 30.0
    extension_field: int = 2
    notify_failures: bool = False

    directory_backend: DirectoryBackend = "none"
    directory_file: Optional[Path] = None
    directory_db: Optional[Path] = None
    directory_query: str = DEFAULT_DIRECTORY_QUERY
    directory_command: str | None = None

    log_file: Optional[Path] = None

    @property
    def formats(self) -> Tuple[str, ...]:
        return output_formats(self.output_format)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``CALL_TRANSCRIBER_*`` environment variables."""
    env = os.environ if environ is None else environ

    def raw(key: str) -> str | None:
        value = env.get(f"CALL_TRANSCRIBER_{key}")
        return value if value else None

    def path(key: str) -> Optional[Path]:
        value = raw(key)
        return Path(value).expanduser() if value else None

    overrides: dict = {}
    for key, field in (
        ("WATCH_DIR", "watch_dir"),
        ("OUTPUT_DIR", "output_dir"),
        ("SCRATCH_DIR", "scratch_dir"),
        ("DIRECTORY_FILE", "directory_file"),
        ("DIRECTORY_DB", "directory_db"),
        ("LOG_FILE", "log_file"),
    ):
        value = path(key)
        if value is not None:
            overrides[field] = value

    for key, field in (
        ("SUFFIX", "recording_suffix"),
        ("WHISPER_CLI", "whisper_cli"),
        ("WHISPER_MODEL", "whisper_model"),
        ("LANGUAGE", "language"),
        ("ARCHIVE_ADDRESS", "archive_address"),
        ("SENDER_ADDRESS", "sender_address"),
        ("SMTP_HOST", "smtp_host"),
        ("DIRECTORY_QUERY", "directory_query"),
        ("DIRECTORY_COMMAND", "directory_command"),
    ):
        value = raw(key)
        if value is not None:
            overrides[field] = value

    if raw("MIN_SIZE_KB") is not None:
        overrides["min_size_bytes"] = int(float(raw("MIN_SIZE_KB")) * 1024)
    if raw("WHISPER_ARGS") is not None:
        overrides["whisper_extra_args"] = tuple(shlex.split(raw("WHISPER_ARGS")))
    if raw("OUTPUT_FORMAT") is not None:
        overrides["output_format"] = parse_output_format(raw("OUTPUT_FORMAT"))
    if raw("REQUIRED_FORMATS") is not None:
        overrides["required_formats"] = output_formats(parse_output_format(raw("REQUIRED_FORMATS")))
    if raw("TIMEOUT") is not None:
        timeout = float(raw("TIMEOUT"))
        overrides["engine_timeout"] = timeout if timeout > 0 else None
    if raw("MODE") is not None:
        overrides["delivery_mode"] = parse_delivery_mode(raw("MODE"))
    if raw("DIRECTORY") is not None:
        overrides["directory_backend"] = parse_directory_backend(raw("DIRECTORY"))

    for key, field in (
        ("WORKERS", "workers"),
        ("QUEUE_SIZE", "queue_size"),
        ("SMTP_PORT", "smtp_port"),
        ("EXTENSION_FIELD", "extension_field"),
    ):
        value = raw(key)
        if value is not None:
            overrides[field] = int(value)

    for key, field in (
        ("VERBOSE", "verbose"),
        ("SCAN_EXISTING", "scan_existing"),
        ("NOTIFY_FAILURES", "notify_failures"),
    ):
        value = raw(key)
        if value is not None:
            overrides[field] = _parse_bool(value)

    settings = Settings(**overrides)
    validate_settings(settings)
    return settings


def validate_settings(settings: Settings) -> Settings:
    if settings.min_size_bytes < 0:
        raise ValueError("Minimum recording size must not be negative.")
    if settings.workers < 1:
        raise ValueError("At least one worker is required.")
    if settings.queue_size < 1:
        raise ValueError("Queue size must be at least 1.")
    if settings.extension_field < 1:
        raise ValueError("Extension field is 1-based and must be at least 1.")
    if not settings.recording_suffix.startswith("."):
        raise ValueError(f"Recording suffix must start with '.': {settings.recording_suffix}")
    parse_output_format(settings.output_format)
    return settings
