from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

from .models import Job, JobOutcome

LOGGER = logging.getLogger("verify")


def expected_artifacts(output_dir: Path, base_name: str, formats: Iterable[str]) -> List[Path]:
    return [output_dir / f"{base_name}.{fmt}" for fmt in formats]


class OutputVerifier:
    """Classify a finished job by engine status and artifacts on disk.

    An exit code of zero is not taken as proof of output: the engine has
    been seen to exit cleanly without writing its transcript.
    """

    def verify(self, job: Job) -> JobOutcome:
        if not job.engine_succeeded:
            job.outcome = JobOutcome.FAILED
            return job.outcome

        missing = [artifact for artifact in job.required_artifacts if not artifact.exists()]
        if missing:
            LOGGER.warning(
                "Whisper reported success for %s but %s missing. Check %s for Whisper output.",
                job.source,
                ", ".join(path.name for path in missing),
                job.scratch_log,
            )
            job.outcome = JobOutcome.INCONSISTENT
            return job.outcome

        optional_missing = [
            artifact
            for artifact in job.expected_artifacts
            if artifact not in job.required_artifacts and not artifact.exists()
        ]
        if optional_missing:
            LOGGER.debug("Optional outputs missing for %s: %s", job.base_name, [p.name for p in optional_missing])

        LOGGER.info(
            "%s files confirmed for %s",
            "/".join(path.suffix.lstrip(".").upper() for path in job.required_artifacts),
            job.base_name,
        )
        job.outcome = JobOutcome.VERIFIED
        return job.outcome
