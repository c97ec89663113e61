"""Deterministic Maven log parser -- structured summaries from raw output.

Every function is pure: no network, no side effects.  Input is raw
stdout/stderr text; output is a frozen Pydantic model.

- ``summarise_maven`` -- Maven / javac output → ``BuildSummary``
- ``format_summary``  -- ``BuildSummary`` → short human-readable text
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class BuildIssue(BaseModel):
    """A single build error or warning."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(default="", description="Source file")
    line: int = Field(default=0, ge=0, description="Line number (0 = unknown)")
    column: int = Field(default=0, ge=0, description="Column (0 = unknown)")
    message: str = Field(..., description="Error or warning message")
    severity: Literal["error", "warning"] = Field(
        ..., description="Issue severity",
    )


class BuildSummary(BaseModel):
    """Structured summary of a Maven run."""

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="True when zero errors detected")
    errors: list[BuildIssue] = Field(default_factory=list)
    warnings: list[BuildIssue] = Field(default_factory=list)
    failed_goal: str = Field(default="", description="'Failed to execute goal' line, if any")
    banner: Literal["BUILD SUCCESS", "BUILD FAILURE", ""] = ""


# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

# [ERROR] /path/Main.java:[12,8] cannot find symbol
_MVN_LOCATED_RE = re.compile(
    r"^\[(ERROR|WARNING)\]\s+(.+?\.java):\[(\d+)(?:,(\d+))?\]\s*(.*)$",
    re.MULTILINE,
)
# Main.java:12: error: cannot find symbol
_JAVAC_RE = re.compile(
    r"^(.+?\.java):(\d+):\s*(error|warning):\s*(.*)$", re.MULTILINE,
)
_MVN_FAILED_GOAL_RE = re.compile(
    r"^\[ERROR\]\s+(Failed to execute goal .*)$", re.MULTILINE,
)
# [ERROR] some message (not located, not a banner/hint line)
_MVN_GENERIC_ERROR_RE = re.compile(r"^\[ERROR\]\s+(.+)$", re.MULTILINE)
_MVN_BANNER_RE = re.compile(r"^\[INFO\]\s+(BUILD SUCCESS|BUILD FAILURE)\s*$", re.MULTILINE)

# Lines Maven prints around every failure that carry no diagnostic value.
_NOISE_PREFIXES: tuple[str, ...] = (
    "-> [Help",
    "Re-run Maven",
    "To see the full stack trace",
    "For more information about the errors",
    "After correcting the problems",
    "[Help",
    "COMPILATION ERROR",
    "mvn <args>",
)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def summarise_maven(stdout: str, stderr: str = "") -> BuildSummary:
    """Parse Maven / javac output into a ``BuildSummary``.

    Maven repeats compiler errors in its failure summary, so issues are
    de-duplicated on (file, line, column, message).
    """
    combined = (stdout + "\n" + stderr).strip()
    errors: list[BuildIssue] = []
    warnings: list[BuildIssue] = []
    seen: set[tuple[str, int, int, str, str]] = set()

    def _add(issue: BuildIssue) -> None:
        key = (issue.file, issue.line, issue.column, issue.message, issue.severity)
        if key in seen:
            return
        seen.add(key)
        (errors if issue.severity == "error" else warnings).append(issue)

    for m in _MVN_LOCATED_RE.finditer(combined):
        _add(BuildIssue(
            file=m.group(2).strip(),
            line=int(m.group(3)),
            column=int(m.group(4) or 0),
            message=m.group(5).strip(),
            severity="error" if m.group(1) == "ERROR" else "warning",
        ))

    for m in _JAVAC_RE.finditer(combined):
        _add(BuildIssue(
            file=m.group(1).strip(),
            line=int(m.group(2)),
            message=m.group(4).strip(),
            severity="error" if m.group(3) == "error" else "warning",
        ))

    failed_goal = ""
    goal_match = _MVN_FAILED_GOAL_RE.search(combined)
    if goal_match:
        failed_goal = goal_match.group(1).strip()

    # Unlocated [ERROR] lines -- only when nothing better was found
    if not errors:
        for m in _MVN_GENERIC_ERROR_RE.finditer(combined):
            msg = m.group(1).strip()
            if not msg or msg.startswith(_NOISE_PREFIXES) or msg == failed_goal:
                continue
            if _MVN_LOCATED_RE.match(m.group(0)):
                continue
            _add(BuildIssue(message=msg, severity="error"))

    banner = ""
    banners = _MVN_BANNER_RE.findall(combined)
    if banners:
        banner = banners[-1]

    success = not errors and not failed_goal and banner != "BUILD FAILURE"
    return BuildSummary(
        success=success,
        errors=errors,
        warnings=warnings,
        failed_goal=failed_goal,
        banner=banner,
    )


def format_summary(summary: BuildSummary, *, limit: int = 10) -> str:
    """Render *summary* as a short multi-line message for humans."""
    if summary.success:
        return "Build succeeded"

    lines: list[str] = [f"Build failed with {len(summary.errors)} error(s)"]
    for issue in summary.errors[:limit]:
        if issue.file:
            name = issue.file.replace("\\", "/").rsplit("/", 1)[-1]
            lines.append(f"  {name}:{issue.line}: {issue.message}")
        else:
            lines.append(f"  {issue.message}")
    if len(summary.errors) > limit:
        lines.append(f"  ... and {len(summary.errors) - limit} more")
    if summary.failed_goal and not summary.errors:
        lines.append(f"  {summary.failed_goal}")
    return "\n".join(lines)
