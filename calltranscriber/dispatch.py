from __future__ import annotations

from dataclasses import dataclass, field
import logging
import smtplib
from typing import List, Optional

from .config import Settings
from .directory import Directory, NullDirectory
from .mailer import Mailer, SmtpMailer
from .models import Job, JobOutcome

LOGGER = logging.getLogger("dispatch")


def parse_extension(base_name: str, field_number: int = 2) -> Optional[str]:
    """Return the 1-based hyphen-delimited ``field_number`` of ``base_name``."""
    parts = base_name.split("-")
    if field_number < 1 or len(parts) < field_number:
        return None
    value = parts[field_number - 1].strip()
    return value or None


@dataclass
class DispatchResult:
    delivered: bool = False
    recipients: List[str] = field(default_factory=list)
    extension: Optional[str] = None
    error: Optional[str] = None


class Dispatcher:
    """Route a finished job to its owner or leave it in place."""

    def __init__(
        self,
        settings: Settings,
        directory: Optional[Directory] = None,
        mailer: Optional[Mailer] = None,
    ) -> None:
        self.settings = settings
        self.directory = directory or NullDirectory()
        self.mailer = mailer or SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.sender_address,
            timeout=settings.smtp_timeout,
        )

    def dispatch(self, job: Job) -> DispatchResult:
        if self.settings.delivery_mode == "local":
            if job.outcome is JobOutcome.VERIFIED:
                LOGGER.info("Transcripts for %s kept in %s", job.base_name, job.output_dir)
            return DispatchResult()

        if job.outcome is JobOutcome.VERIFIED:
            return self._send_transcript(job)
        if self.settings.notify_failures:
            return self._send_failure_notice(job)
        LOGGER.info("Not notifying for %s (%s)", job.base_name, job.outcome.value if job.outcome else "unknown")
        return DispatchResult()

    def resolve_recipients(self, extension: Optional[str]) -> List[str]:
        archive = self.settings.archive_address
        personal = None
        if extension:
            try:
                personal = self.directory.lookup(extension)
            except Exception as err:
                LOGGER.warning("Directory lookup failed for extension %s: %s", extension, err)
        recipients = [personal] if personal else []
        if archive and archive not in recipients:
            recipients.append(archive)
        return recipients

    def _send_transcript(self, job: Job) -> DispatchResult:
        extension = parse_extension(job.base_name, self.settings.extension_field)
        recipients = self.resolve_recipients(extension)
        transcript = job.transcript_path
        subject = f"Transcript - Ext {extension or 'unknown'} - {transcript.name}"
        LOGGER.info("Sending email to: %s for %s", ",".join(recipients), transcript.name)
        return self._deliver(job, recipients, subject, transcript, extension)

    def _send_failure_notice(self, job: Job) -> DispatchResult:
        extension = parse_extension(job.base_name, self.settings.extension_field)
        recipients = [self.settings.archive_address]
        subject = f"Transcription {job.outcome.value if job.outcome else 'failed'} - Ext {extension or 'unknown'} - {job.source.name}"
        if job.scratch_log is None or not job.scratch_log.exists():
            LOGGER.warning("No Whisper output to attach for failed job %s", job.source)
            return DispatchResult(extension=extension, error="missing scratch log")
        LOGGER.info("Sending failure notice to: %s for %s", ",".join(recipients), job.source.name)
        return self._deliver(job, recipients, subject, job.scratch_log, extension)

    def _deliver(self, job, recipients, subject, body_path, extension) -> DispatchResult:
        try:
            self.mailer.send(recipients, subject, body_path)
        except (smtplib.SMTPException, OSError) as err:
            # Never retried; the job is still marked complete.
            LOGGER.error("Delivery to %s failed for %s: %s", ",".join(recipients), job.source, err)
            return DispatchResult(recipients=recipients, extension=extension, error=str(err))
        job.delivered = True
        return DispatchResult(delivered=True, recipients=recipients, extension=extension)
