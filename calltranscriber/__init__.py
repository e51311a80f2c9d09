"""Watch for completed call recordings and transcribe them with Whisper."""

__all__ = [
    "config",
    "dispatch",
    "service",
    "state",
    "transcribe",
    "watcher",
]
