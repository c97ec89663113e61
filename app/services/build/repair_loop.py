"""Repair loop -- feed compiler diagnostics to the fix service until it builds.

Each round collects a fresh diagnostic payload, asks the fix service for
replacement files, overwrites them in the project and rebuilds.  A round
that fails anywhere before the rebuild (bad fix response, unsafe path or a
file/directory clash in the fix) still consumes one attempt.  When the
budget is spent, one last build runs with dependency shading disabled; a
success there is reported as a degraded success.

Diagnostic collection and file writes run in a worker thread, off the
event loop.

The loop is an explicit state machine: every step goes through
``RepairLoop._to`` which rejects transitions not listed in
``TRANSITIONS``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from app.errors import UpstreamError
from buildkit.contracts import BuildOutcome, DiagnosticPayload, FileSet, LogChannel
from buildkit.diagnostics import collect_diagnostics
from buildkit.errors import MaterializationError, SandboxViolation
from buildkit.log_parser import format_summary, summarise_maven
from buildkit.materializer import materialize

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 50
DEGRADED_NOTE = "may be missing bundled dependencies"


class RepairState(str, enum.Enum):
    IDLE = "idle"
    DIAGNOSING = "diagnosing"
    REQUESTING_FIX = "requesting_fix"
    APPLYING_FIX = "applying_fix"
    REBUILDING = "rebuilding"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED_DEGRADED = "exhausted_degraded"
    EXHAUSTED_FAILED = "exhausted_failed"


_S = RepairState

# A failed round ends in RETRYING while budget remains, otherwise in
# EXHAUSTED_DEGRADED.
TRANSITIONS: dict[RepairState, frozenset[RepairState]] = {
    _S.IDLE: frozenset({_S.DIAGNOSING}),
    _S.DIAGNOSING: frozenset({_S.REQUESTING_FIX}),
    _S.REQUESTING_FIX: frozenset({_S.APPLYING_FIX, _S.RETRYING, _S.EXHAUSTED_DEGRADED}),
    _S.APPLYING_FIX: frozenset({_S.REBUILDING, _S.RETRYING, _S.EXHAUSTED_DEGRADED}),
    _S.REBUILDING: frozenset({_S.SUCCEEDED, _S.RETRYING, _S.EXHAUSTED_DEGRADED}),
    _S.RETRYING: frozenset({_S.DIAGNOSING}),
    _S.EXHAUSTED_DEGRADED: frozenset({_S.SUCCEEDED, _S.EXHAUSTED_FAILED}),
    _S.SUCCEEDED: frozenset(),
    _S.EXHAUSTED_FAILED: frozenset(),
}


class IllegalTransitionError(RuntimeError):
    """The repair loop attempted a transition outside ``TRANSITIONS``."""

    def __init__(self, src: RepairState, dst: RepairState) -> None:
        self.src = src
        self.dst = dst
        super().__init__(f"Illegal repair transition {src.value} -> {dst.value}")


class RepairResult(BaseModel):
    """Outcome of a repair run."""

    model_config = ConfigDict(frozen=True)

    success: bool
    final_state: RepairState
    attempts: int
    degraded: bool = False
    outcome: BuildOutcome
    last_errors: str = ""
    note: str = ""


FixRequester = Callable[[DiagnosticPayload], Awaitable[FileSet]]
Builder = Callable[[bool], Awaitable[BuildOutcome]]
Collector = Callable[[Path, str], DiagnosticPayload]
Applier = Callable[[FileSet, Path], object]
TransitionCallback = Callable[[RepairState, RepairState], None]
MessageCallback = Callable[[LogChannel, str], None]


class RepairLoop:
    """Bounded fix-and-rebuild loop for one project.

    Parameters
    ----------
    project_dir:
        Root of the materialized project.
    request_fix:
        ``await request_fix(payload)`` returns replacement files or raises
        ``UpstreamError``.
    build:
        ``await build(degraded)`` runs one build in *project_dir*.
    max_attempts:
        Number of fix rounds before the degraded fallback.
    on_attempt:
        Called with the 1-based attempt number at the start of each round.
    on_transition:
        Called as ``on_transition(old, new)`` on every state change.
    on_message:
        Receives human-readable progress lines for the job log.
    """

    def __init__(
        self,
        project_dir: str | Path,
        *,
        request_fix: FixRequester,
        build: Builder,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        collect: Collector = collect_diagnostics,
        apply: Applier = materialize,
        on_attempt: Callable[[int], None] | None = None,
        on_transition: TransitionCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.project_dir = Path(project_dir)
        self.max_attempts = max_attempts
        self._request_fix = request_fix
        self._build = build
        self._collect = collect
        self._apply = apply
        self._on_attempt = on_attempt
        self._on_transition = on_transition
        self._on_message = on_message
        self.state = RepairState.IDLE
        self.attempts = 0

    # -- state machine -------------------------------------------------------

    def _to(self, new: RepairState) -> None:
        if new not in TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.state, new)
        old, self.state = self.state, new
        logger.debug("Repair %s: %s -> %s", self.project_dir.name, old.value, new.value)
        if self._on_transition is not None:
            self._on_transition(old, new)

    def _end_round(self) -> None:
        if self.attempts < self.max_attempts:
            self._to(RepairState.RETRYING)
        else:
            self._to(RepairState.EXHAUSTED_DEGRADED)

    def _say(self, text: str, channel: LogChannel = "stdout") -> None:
        if self._on_message is not None:
            self._on_message(channel, text)

    # -- main loop -----------------------------------------------------------

    async def run(self, failed: BuildOutcome) -> RepairResult:
        """Repair the project after the failed build *failed*.

        Raises ``CollectionError``, or ``MaterializationError`` for OS
        failures other than a path conflict (fatal).  Fix-service errors,
        unsafe fix paths and file/directory clashes only end the round.
        """
        if self.state is not RepairState.IDLE:
            raise RuntimeError("RepairLoop.run() may only be called once")

        last = failed
        last_errors = failed.combined_output

        while self.attempts < self.max_attempts:
            self.attempts += 1
            if self._on_attempt is not None:
                self._on_attempt(self.attempts)
            self._say(f"Attempting to fix error (attempt {self.attempts}/{self.max_attempts})")

            self._to(RepairState.DIAGNOSING)
            payload = await asyncio.to_thread(self._collect, self.project_dir, last.combined_output)
            last_errors = payload.build_errors

            self._to(RepairState.REQUESTING_FIX)
            try:
                files = await self._request_fix(payload)
            except UpstreamError as exc:
                logger.warning(
                    "Fix request failed (attempt %d/%d): %s",
                    self.attempts, self.max_attempts, exc,
                )
                self._say(f"Fix request failed: {exc}", "stderr")
                self._end_round()
                continue

            self._to(RepairState.APPLYING_FIX)
            try:
                await asyncio.to_thread(self._apply, files, self.project_dir)
            except (SandboxViolation, MaterializationError) as exc:
                if isinstance(exc, MaterializationError) and not exc.is_path_conflict:
                    raise
                logger.warning(
                    "Rejected fix (attempt %d/%d): %s",
                    self.attempts, self.max_attempts, exc,
                )
                self._say(f"Rejected fix: {exc}", "stderr")
                self._end_round()
                continue
            self._say(f"Applied fixes to {len(files)} file(s)")

            self._to(RepairState.REBUILDING)
            last = await self._build(False)
            if last.success:
                self._to(RepairState.SUCCEEDED)
                logger.info("Build repaired after %d attempt(s)", self.attempts)
                return RepairResult(
                    success=True,
                    final_state=self.state,
                    attempts=self.attempts,
                    outcome=last,
                )

            last_errors = last.combined_output
            logger.warning(
                "Rebuild failed (attempt %d/%d): %s",
                self.attempts, self.max_attempts,
                format_summary(summarise_maven(last.stdout, last.stderr), limit=3),
            )
            self._end_round()

        return await self._degraded_fallback(last_errors)

    async def _degraded_fallback(self, last_errors: str) -> RepairResult:
        self._say(
            f"Maximum fix attempts ({self.max_attempts}) reached; "
            "trying a build without dependency shading",
        )
        outcome = await self._build(True)
        if outcome.success:
            self._to(RepairState.SUCCEEDED)
            logger.warning(
                "Degraded build succeeded after %d attempt(s); artifact %s",
                self.attempts, DEGRADED_NOTE,
            )
            return RepairResult(
                success=True,
                final_state=self.state,
                attempts=self.attempts,
                degraded=True,
                outcome=outcome,
                last_errors=last_errors,
                note=f"Built without dependency shading; the artifact {DEGRADED_NOTE}",
            )

        self._to(RepairState.EXHAUSTED_FAILED)
        logger.error("Repair exhausted after %d attempt(s); degraded build failed", self.attempts)
        return RepairResult(
            success=False,
            final_state=self.state,
            attempts=self.attempts,
            outcome=outcome,
            last_errors=last_errors,
        )
