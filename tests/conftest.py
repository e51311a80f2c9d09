from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

import pytest

from calltranscriber.config import Settings
from calltranscriber.mailer import Mailer

FAKE_WHISPER = """#!/bin/sh
input="$1"
shift
outdir="."
formats="all"
while [ $# -gt 0 ]; do
  case "$1" in
    --output_dir) outdir="$2"; shift 2 ;;
    --output_format) formats="$2"; shift 2 ;;
    *) shift ;;
  esac
done
base=$(basename "$input")
base="${base%.*}"
echo "Detected language: English"
echo "[00:00.000 --> 00:02.000] hello from $base" >&2
{body}
"""

WRITE_ALL = """
echo "hello from $base" > "$outdir/$base.txt"
printf '1\\n00:00:00,000 --> 00:00:02,000\\nhello\\n' > "$outdir/$base.srt"
echo '{"text": "hello"}' > "$outdir/$base.json"
printf 'start\\tend\\ttext\\n' > "$outdir/$base.tsv"
printf 'WEBVTT\\n' > "$outdir/$base.vtt"
"""


def write_engine(directory: Path, body: str = WRITE_ALL, name: str = "whisper") -> Path:
    script = directory / name
    script.write_text(FAKE_WHISPER.replace("{body}", body), encoding="utf-8")
    script.chmod(0o755)
    return script


def write_recording(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    return path


class FakeMailer(Mailer):
    """Records messages instead of relaying them."""

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: List[Tuple[Tuple[str, ...], str, str]] = []
        self.error = error

    def send(self, to: Sequence[str], subject: str, body_path: Path) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((tuple(to), subject, body_path.read_text(encoding="utf-8")))


@pytest.fixture
def workspace(tmp_path: Path) -> dict:
    dirs = {
        "watch": tmp_path / "monitor",
        "output": tmp_path / "transcripts",
        "scratch": tmp_path / "scratch",
        "bin": tmp_path / "bin",
    }
    for path in dirs.values():
        path.mkdir()
    return dirs


@pytest.fixture
def settings(workspace: dict) -> Settings:
    return Settings(
        watch_dir=workspace["watch"],
        output_dir=workspace["output"],
        scratch_dir=workspace["scratch"],
        whisper_cli=str(write_engine(workspace["bin"])),
        engine_timeout=10.0,
    )


@pytest.fixture
def make_engine(workspace: dict):
    def factory(body: str = WRITE_ALL, name: str = "whisper") -> Path:
        return write_engine(workspace["bin"], body, name)

    return factory


@pytest.fixture
def make_recording(workspace: dict):
    def factory(name: str, size: int = 50 * 1024) -> Path:
        return write_recording(workspace["watch"] / name, size)

    return factory


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()
