from __future__ import annotations

from email.message import EmailMessage
import logging
import smtplib
from pathlib import Path
from typing import Sequence

LOGGER = logging.getLogger("mailer")


class Mailer:
    def send(self, to: Sequence[str], subject: str, body_path: Path) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    """Send plain-text mail through an SMTP relay (localhost by default)."""

    def __init__(self, host: str = "localhost", port: int = 25, sender: str = "", timeout: float = 30.0) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def build_message(self, to: Sequence[str], subject: str, body_path: Path) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(to)
        message["Subject"] = subject
        message.set_content(body_path.read_text(encoding="utf-8", errors="replace"))
        return message

    def send(self, to: Sequence[str], subject: str, body_path: Path) -> None:
        message = self.build_message(to, subject, body_path)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(message)
        LOGGER.debug("Relayed %r via %s:%s", subject, self.host, self.port)
