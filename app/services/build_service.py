"""Build service -- process-wide entry point for plugin generation jobs.

Owns the single ``BuildTracker`` and ``GenerationOrchestrator`` instances
and answers the status/log queries of the HTTP layer, falling back to the
persisted ``logs.txt`` for jobs the tracker has already evicted.

No HTTP framework here: routers translate results and errors.
"""

import logging
from pathlib import Path

from app.config import settings
from app.errors import JobNotFoundError
from app.services.build.orchestrator import (
    JOB_ID_RE,
    RUN_LOG_NAME,
    GenerationOrchestrator,
    GenerationResult,
)
from app.services.build.stages import JobStatus, Stage
from app.services.build.tracker import BuildTracker

logger = logging.getLogger(__name__)

_tracker: BuildTracker | None = None
_orchestrator: GenerationOrchestrator | None = None


def get_tracker() -> BuildTracker:
    """Return (or create) the shared build tracker."""
    global _tracker
    if _tracker is None:
        _tracker = BuildTracker(capacity=settings.TRACKER_CAPACITY)
    return _tracker


def get_orchestrator() -> GenerationOrchestrator:
    """Return (or create) the shared orchestrator, configured from settings."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = GenerationOrchestrator(
            get_tracker(),
            api_host=settings.API_HOST,
            base_dir=Path(settings.PLUGINS_BASE_DIR).resolve(),
            maven_executable=settings.MAVEN_EXECUTABLE,
            build_timeout_s=settings.BUILD_TIMEOUT_SECONDS,
            run_timeout_s=settings.RUN_TIMEOUT_SECONDS,
            max_fix_attempts=settings.FIX_MAX_ATTEMPTS,
            max_prompt_chars=settings.MAX_PROMPT_CHARS,
        )
    return _orchestrator


def reset() -> None:
    """Drop the singletons so the next call rebuilds them from settings."""
    global _tracker, _orchestrator
    _tracker = None
    _orchestrator = None


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def generate_plugin(prompt: object, token: object, *, build_id: str | None = None) -> GenerationResult:
    """Run one generation job; see ``GenerationOrchestrator.generate``."""
    return await get_orchestrator().generate(prompt, token, job_id=build_id)


def get_build_status(build_id: str) -> dict:
    """Live status of a tracked job.  Raises ``JobNotFoundError``."""
    snap = get_tracker().get_status(build_id)
    return {
        "status": snap.status.value,
        "stage": snap.stage.value,
        "fixAttempts": snap.fix_attempts,
        "elapsedTime": snap.elapsed_ms,
    }


def get_build_logs(build_id: str) -> dict:
    """Logs of a job, from the tracker or from its persisted run log.

    Raises ``JobNotFoundError`` when neither exists.
    """
    try:
        snap = get_tracker().get_logs(build_id)
    except JobNotFoundError:
        return _logs_from_disk(build_id)
    return {
        "logs": [entry.to_dict() for entry in snap.logs],
        "status": snap.status.value,
        "stage": snap.stage.value,
        "fixAttempts": snap.fix_attempts,
        "startTime": snap.start_time,
        "elapsedTime": snap.elapsed_ms,
    }


def _logs_from_disk(build_id: str) -> dict:
    # Only ids we could have issued map to a directory.
    if not JOB_ID_RE.match(build_id):
        raise JobNotFoundError(build_id)
    job_dir = Path(settings.PLUGINS_BASE_DIR).resolve() / build_id
    if not job_dir.is_dir():
        raise JobNotFoundError(build_id)

    log_file = job_dir / RUN_LOG_NAME
    if log_file.is_file():
        text = log_file.read_text(encoding="utf-8", errors="replace")
        logs = [
            {
                "type": "stderr" if "[ERROR]" in line or line.startswith("Error:") else "stdout",
                "message": line,
                "time": None,
            }
            for line in text.splitlines()
            if line.strip()
        ]
    else:
        logs = [{"type": "stdout", "message": "Build finished, no logs available", "time": None}]

    # A failed run always logs an "Error: ..." line before it is finalized.
    failed = any(entry["message"].startswith("Error:") for entry in logs)

    logger.debug("Serving logs for evicted build %s from %s", build_id, job_dir)
    return {
        "logs": logs,
        "status": (JobStatus.FAILED if failed else JobStatus.COMPLETED).value,
        "stage": (Stage.FAILED if failed else Stage.SUCCESS).value,
        "fromFile": True,
    }
