"""Build stages and job statuses, plus stage inference from output lines.

``infer_stage`` is pure: it maps a single line of subprocess or pipeline
output to the stage it announces, or ``None`` when the line says nothing
about progress.
"""

from __future__ import annotations

import re
from enum import Enum

from buildkit.contracts import LogChannel


class JobStatus(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Stage(str, Enum):
    """Coarse progress label shown to pollers.  Not strictly monotonic."""

    UNDERSTANDING = "Understanding plugin requirements"
    REFINING = "Refining implementation approach"
    GENERATING = "Generating code files"
    CREATING = "Creating project structure"
    COMPILING = "Compiling Java code"
    FIXING = "Fixing compilation errors"
    SUCCESS = "Build completed successfully"
    FAILED = "Build failed"

    @classmethod
    def from_name(cls, name: str) -> Stage | None:
        """Look up a stage by member name (``"COMPILING"``) or label."""
        key = name.strip()
        member = cls.__members__.get(key.upper())
        if member is not None:
            return member
        for stage in cls:
            if stage.value.lower() == key.lower():
                return stage
        return None


# Substring markers, checked in order; first hit wins.
STAGE_MARKERS: tuple[tuple[Stage, tuple[str, ...]], ...] = (
    (Stage.UNDERSTANDING, ("Analyzing your request", "Understanding requirements")),
    (Stage.REFINING, ("Designing plugin structure", "Refining implementation")),
    (Stage.GENERATING, ("Generating code", "Writing plugin code")),
    (Stage.CREATING, ("Creating project files", "Setting up project")),
    (Stage.COMPILING, ("Compiling", "Running Maven")),
    (Stage.FIXING, ("Attempting to fix error", "Fixing compilation issues")),
    (Stage.SUCCESS, ("Build successful", "Plugin generation complete")),
)

_STRUCTURED_RE = re.compile(r"^\s*STAGE:\s*([A-Za-z][A-Za-z ]*?)\s*$")
_STDERR_FIX_MARKERS: tuple[str, ...] = ("error:", "Exception")


def infer_stage(text: str, channel: LogChannel = "stdout") -> Stage | None:
    """Return the stage *text* announces, or ``None``.

    A structured ``STAGE:<name>`` line takes precedence over substring
    markers.  On stderr, lines that look like compiler errors or Java
    exceptions move the job to ``FIXING``.
    """
    m = _STRUCTURED_RE.match(text)
    if m:
        stage = Stage.from_name(m.group(1))
        if stage is not None:
            return stage

    if channel == "stderr":
        if any(marker in text for marker in _STDERR_FIX_MARKERS):
            return Stage.FIXING
        return None

    for stage, markers in STAGE_MARKERS:
        if any(marker in text for marker in markers):
            return stage
    return None
