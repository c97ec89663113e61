"""In-memory registry of generation jobs and their live progress.

One ``BuildTracker`` is shared by every concurrently running pipeline and
by the HTTP handlers that poll it.  A single coarse ``threading.Lock``
guards all state, so the tracker is safe to call from the event loop and
from worker threads alike; no lock is ever held across I/O.

Readers never see a ``BuildJob`` itself, only frozen snapshots taken
under the lock.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.errors import JobNotFoundError
from app.services.build.stages import JobStatus, Stage, infer_stage
from buildkit.contracts import LogChannel

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class LogEntry(BaseModel):
    """One captured output line."""

    model_config = ConfigDict(frozen=True)

    channel: LogChannel
    text: str
    timestamp: int = Field(..., description="Epoch milliseconds")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.channel, "message": self.text, "time": self.timestamp}


class JobStatusSnapshot(BaseModel):
    """Point-in-time view of a job, without its logs."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: JobStatus
    stage: Stage
    fix_attempts: int = 0
    start_time: int = Field(..., description="Epoch milliseconds")
    elapsed_ms: int = 0
    jar_path: str | None = None
    error: str | None = None
    degraded: bool = False
    log_count: int = 0


class JobLogsSnapshot(JobStatusSnapshot):
    """Status snapshot plus every log line captured so far."""

    logs: tuple[LogEntry, ...] = ()


# ---------------------------------------------------------------------------
# Mutable job record
# ---------------------------------------------------------------------------


class BuildJob:
    """Tracked state of one generation run.

    Mutable -- only ever touched by ``BuildTracker`` while holding its lock.
    """

    __slots__ = (
        "id", "seq", "status", "stage", "logs", "fix_attempts",
        "start_time", "finished_at", "jar_path", "error", "degraded",
    )

    def __init__(self, *, id: str, seq: int, start_time: int) -> None:
        self.id = id
        self.seq = seq
        self.status = JobStatus.INITIALIZING
        self.stage = Stage.UNDERSTANDING
        self.logs: list[LogEntry] = []
        self.fix_attempts = 0
        self.start_time = start_time
        self.finished_at: int | None = None
        self.jar_path: str | None = None
        self.error: str | None = None
        self.degraded = False

    def _fields(self, now: int) -> dict[str, Any]:
        end = self.finished_at if self.finished_at is not None else now
        return {
            "id": self.id,
            "status": self.status,
            "stage": self.stage,
            "fix_attempts": self.fix_attempts,
            "start_time": self.start_time,
            "elapsed_ms": max(0, end - self.start_time),
            "jar_path": self.jar_path,
            "error": self.error,
            "degraded": self.degraded,
            "log_count": len(self.logs),
        }

    def status_snapshot(self, now: int) -> JobStatusSnapshot:
        return JobStatusSnapshot(**self._fields(now))

    def logs_snapshot(self, now: int) -> JobLogsSnapshot:
        return JobLogsSnapshot(**self._fields(now), logs=tuple(self.logs))

    def __repr__(self) -> str:
        return f"BuildJob(id={self.id!r}, status={self.status.value!r}, stage={self.stage.name})"


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class BuildTracker:
    """Concurrency-safe job registry with bounded retention.

    Retention: once more than *capacity* jobs are tracked, the oldest
    *finished* jobs (by start time, then registration order) are dropped.
    In-flight jobs are never evicted, so the tracker may temporarily hold
    more than *capacity* entries.

    With only finished jobs in the table, the *capacity* most recently
    started jobs stay queryable.  With a mix, a finished job can be
    dropped while an older in-flight job is kept, so the survivors are
    not strictly the most recent starts.  Evicted jobs remain readable
    through the persisted ``logs.txt``.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._jobs: dict[str, BuildJob] = {}
        self._seq = itertools.count()

    # -- registration --------------------------------------------------------

    def register(self, job_id: str, *, start_time: int | None = None) -> JobStatusSnapshot:
        """Start tracking *job_id*.  Raises ``ValueError`` if already tracked."""
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Build {job_id} is already registered")
            job = BuildJob(
                id=job_id,
                seq=next(self._seq),
                start_time=start_time if start_time is not None else _now_ms(),
            )
            self._jobs[job_id] = job
            snap = job.status_snapshot(_now_ms())
        logger.info("Tracking build %s", job_id)
        return snap

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # -- mutations -----------------------------------------------------------

    def _get_for_update(self, job_id: str, op: str) -> BuildJob | None:
        job = self._jobs.get(job_id)
        if job is None:
            logger.debug("Ignoring %s for unknown build %s", op, job_id)
        return job

    def append_log(
        self,
        job_id: str,
        channel: LogChannel,
        text: str,
        *,
        infer: bool = True,
    ) -> Stage | None:
        """Append one line; when *infer* is set, apply the stage it announces.

        Returns the inferred stage, if any.  A finished job keeps its
        terminal stage.
        """
        stage = infer_stage(text, channel) if infer else None
        with self._lock:
            job = self._get_for_update(job_id, "append_log")
            if job is None:
                return None
            job.logs.append(LogEntry(channel=channel, text=text, timestamp=_now_ms()))
            if stage is not None and not job.status.finished:
                job.stage = stage
        return stage

    def set_stage(self, job_id: str, stage: Stage) -> None:
        with self._lock:
            job = self._get_for_update(job_id, "set_stage")
            if job is not None:
                job.stage = stage

    def set_status(self, job_id: str, status: JobStatus) -> None:
        with self._lock:
            job = self._get_for_update(job_id, "set_status")
            if job is not None:
                job.status = status

    def record_fix_attempt(self, job_id: str) -> int:
        """Increment and return the job's fix-attempt counter (0 if unknown)."""
        with self._lock:
            job = self._get_for_update(job_id, "record_fix_attempt")
            if job is None:
                return 0
            job.fix_attempts += 1
            return job.fix_attempts

    def finalize(
        self,
        job_id: str,
        *,
        success: bool,
        jar_path: str | None = None,
        error: str | None = None,
        degraded: bool = False,
    ) -> None:
        """Mark the job completed or failed, then apply retention."""
        with self._lock:
            job = self._get_for_update(job_id, "finalize")
            if job is not None:
                job.status = JobStatus.COMPLETED if success else JobStatus.FAILED
                job.stage = Stage.SUCCESS if success else Stage.FAILED
                job.jar_path = jar_path
                job.error = error
                job.degraded = degraded
                job.finished_at = _now_ms()
            evicted = self._prune_locked()
        if evicted:
            logger.info("Evicted %d finished build(s): %s", len(evicted), ", ".join(evicted))

    def _prune_locked(self) -> list[str]:
        excess = len(self._jobs) - self.capacity
        if excess <= 0:
            return []
        finished = sorted(
            (j for j in self._jobs.values() if j.status.finished),
            key=lambda j: (j.start_time, j.seq),
        )
        evicted = [j.id for j in finished[:excess]]
        for job_id in evicted:
            del self._jobs[job_id]
        return evicted

    # -- queries -------------------------------------------------------------

    def get_status(self, job_id: str) -> JobStatusSnapshot:
        """Raises ``JobNotFoundError`` if *job_id* is not tracked."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.status_snapshot(_now_ms())

    def get_logs(self, job_id: str) -> JobLogsSnapshot:
        """Raises ``JobNotFoundError`` if *job_id* is not tracked."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.logs_snapshot(_now_ms())

    def list_jobs(self) -> list[JobStatusSnapshot]:
        """All tracked jobs, newest first."""
        with self._lock:
            now = _now_ms()
            jobs = sorted(self._jobs.values(), key=lambda j: (j.start_time, j.seq), reverse=True)
            return [j.status_snapshot(now) for j in jobs]
