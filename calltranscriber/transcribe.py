from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from .config import Settings, load_settings
from .models import Job
from .runner import CommandResult, run_command

LOGGER = logging.getLogger("transcribe")


class WhisperTranscriber:
    """Transcribe recordings using the Whisper command line interface."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or load_settings()
        self._cli = self._resolve_cli_binary(self.settings.whisper_cli)

    @staticmethod
    def _resolve_cli_binary(binary: str) -> str:
        path = shutil.which(binary)
        if path:
            return path
        candidate = Path(binary).expanduser()
        if candidate.is_file():
            if not os.access(candidate, os.X_OK):
                raise PermissionError(f"Whisper executable at {candidate} is not executable.")
            return str(candidate)
        raise FileNotFoundError(
            f"Unable to locate Whisper executable '{binary}'. "
            "Install openai-whisper or set CALL_TRANSCRIBER_WHISPER_CLI."
        )

    @property
    def executable(self) -> str:
        return self._cli

    def build_command(self, job: Job) -> List[str]:
        cmd = [
            self._cli,
            str(job.source),
            "--model",
            self.settings.whisper_model,
        ]

        if self.settings.language:
            cmd.extend(["--language", self.settings.language])

        cmd.extend(
            [
                "--output_dir",
                str(job.output_dir),
                "--output_format",
                self.settings.output_format,
                "--verbose",
                str(self.settings.verbose),
            ]
        )

        if self.settings.whisper_extra_args:
            cmd.extend(self.settings.whisper_extra_args)
        return cmd

    def create_scratch_log(self, job: Job) -> Path:
        fd, name = tempfile.mkstemp(
            prefix=f"whisper_output_{job.base_name}_", suffix=".log", dir=str(self.settings.scratch_dir)
        )
        os.close(fd)
        job.scratch_log = Path(name)
        return job.scratch_log

    def transcribe(self, job: Job) -> CommandResult:
        """Run the engine for ``job`` and record its exit status on the job."""
        if not job.source.exists():
            raise FileNotFoundError(f"Recording not found: {job.source}")

        job.output_dir.mkdir(parents=True, exist_ok=True)
        scratch = job.scratch_log or self.create_scratch_log(job)
        cmd = self.build_command(job)

        LOGGER.info("Transcribing %s with Whisper (%s)", job.source, self.settings.whisper_model)
        result = run_command(cmd, log_path=scratch, timeout=self.settings.engine_timeout)

        job.exit_status = result.returncode
        job.timed_out = result.timed_out
        job.duration = result.duration

        if result.timed_out:
            LOGGER.error(
                "Whisper timed out after %.0fs on %s and was terminated", result.duration, job.source
            )
        elif not result.ok:
            LOGGER.error("Whisper failed (%s) on %s. See %s", result.returncode, job.source, scratch)
        else:
            LOGGER.info("Whisper finished %s in %.1fs", job.source.name, result.duration)
        return result
