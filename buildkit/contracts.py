"""Toolchain contracts -- shared models for the generate/build/repair pipeline.

A ``FileSet`` is a plain insertion-ordered ``dict[str, str]`` mapping a
relative, forward-slash path to full file content.  ``validate_fileset``
enforces the path rules; the models below are frozen (immutable after
creation).
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from buildkit.errors import SandboxViolation

FileSet = dict[str, str]

LogChannel = Literal["stdout", "stderr"]

FailureReason = Literal["exit_code", "timeout", "spawn_error"]


# ---------------------------------------------------------------------------
# FileSet validation
# ---------------------------------------------------------------------------


def check_relative_path(rel_path: str, *, root: str = "") -> str:
    """Validate a single FileSet path and return it with forward slashes.

    Raises
    ------
    SandboxViolation
        If the path is empty, absolute, contains null bytes or a ``..``
        segment, or ends in ``/`` or ``.`` (names a directory).
    """
    if not rel_path or not rel_path.strip():
        raise SandboxViolation(path=rel_path or "", root=root, reason="Path is empty")

    if "\x00" in rel_path:
        raise SandboxViolation(path=rel_path, root=root, reason="Path contains null bytes")

    normalised = rel_path.replace("\\", "/")
    if os.path.isabs(rel_path) or normalised.startswith("/") or (
        len(normalised) > 1 and normalised[1] == ":"
    ):
        raise SandboxViolation(
            path=rel_path, root=root, reason="Absolute paths are not allowed"
        )

    if ".." in normalised.split("/"):
        raise SandboxViolation(
            path=rel_path,
            root=root,
            reason="Path traversal with '..' is not allowed",
        )

    if normalised.split("/")[-1] in ("", "."):
        raise SandboxViolation(path=rel_path, root=root, reason="Path does not name a file")

    return normalised


def validate_fileset(files: object, *, root: str = "") -> FileSet:
    """Return *files* as a validated ``FileSet``.

    Raises ``TypeError`` when the shape is wrong (not a mapping of
    strings to strings) and ``SandboxViolation`` on an unsafe path.
    """
    if not isinstance(files, dict):
        raise TypeError(f"FileSet must be a mapping, got {type(files).__name__}")

    validated: FileSet = {}
    for path, content in files.items():
        if not isinstance(path, str) or not isinstance(content, str):
            raise TypeError(f"FileSet entry {path!r} must map str to str")
        validated[check_relative_path(path, root=root)] = content
    return validated


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class BuildOutcome(BaseModel):
    """Structured result of one build-toolchain invocation."""

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="True when the process exited with 0")
    exit_code: int = Field(..., description="Process exit code (-1 if killed or not spawned)")
    stdout: str = Field(default="", description="Captured stdout (tail kept if truncated)")
    stderr: str = Field(default="", description="Captured stderr (tail kept if truncated)")
    artifact_path: str | None = Field(
        default=None,
        description="Absolute path of the located archive, success only",
    )
    timed_out: bool = Field(default=False, description="True if killed on timeout")
    failure_reason: FailureReason | None = None
    duration_ms: int = Field(default=0, ge=0)
    command: str = Field(default="", description="The command line that was executed")
    truncated: bool = Field(default=False)
    degraded: bool = Field(
        default=False,
        description="True for a build with dependency shading disabled",
    )

    @property
    def combined_output(self) -> str:
        """stdout followed by stderr, as a compiler would show them."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}" if self.stdout else self.stderr
        return self.stdout


class DiagnosticPayload(BaseModel):
    """Build errors plus the current source tree, as sent to the fix service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    build_errors: str = Field(default="", alias="buildErrors")
    files: FileSet = Field(default_factory=dict)
    warnings: list[str] = Field(
        default_factory=list,
        description="Files skipped during collection (never sent upstream)",
    )

    def to_request_body(self) -> dict:
        """Wire shape for ``POST /api/fix``."""
        return self.model_dump(by_alias=True, exclude={"warnings"})
