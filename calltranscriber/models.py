from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import enum
from pathlib import Path
from typing import List, Optional


class JobOutcome(str, enum.Enum):
    """Terminal classification of a job after invocation and verification."""

    VERIFIED = "verified"
    INCONSISTENT = "inconsistent"
    FAILED = "failed"


@dataclass(frozen=True)
class RecordingEvent:
    path: Path
    detected_at: datetime = field(default_factory=datetime.now)


@dataclass
class Job:
    """A single recording moving through invoke, verify, dispatch and mark."""

    source: Path
    base_name: str
    output_dir: Path
    expected_artifacts: List[Path] = field(default_factory=list)
    required_artifacts: List[Path] = field(default_factory=list)
    scratch_log: Optional[Path] = None
    exit_status: Optional[int] = None
    timed_out: bool = False
    duration: float = 0.0
    outcome: Optional[JobOutcome] = None
    diagnostic: str = ""
    delivered: bool = False

    @property
    def transcript_path(self) -> Path:
        return self.output_dir / f"{self.base_name}.txt"

    @property
    def engine_succeeded(self) -> bool:
        return self.exit_status == 0 and not self.timed_out


@dataclass(frozen=True)
class FilterDecision:
    accepted: bool
    reason: str
    job: Optional[Job] = None
