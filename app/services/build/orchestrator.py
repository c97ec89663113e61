"""Generation orchestrator -- prompt in, compiled plugin (or a typed error) out.

Drives one generation run end to end:

1. validate the request and register a job with the tracker
2. ask the generation service for a source tree
3. materialize it under ``<base>/<job_id>/<PluginName>``
4. build it, and on failure hand over to the repair loop

Every line of output goes to the tracker as it happens.  Whatever the
outcome, the job is finalized with an explicit status and stage, and the
run log is written to ``<base>/<job_id>/logs.txt``.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from app.clients import plugin_api_client
from app.errors import (
    BuildError,
    RunError,
    RunTimeoutError,
    UpstreamError,
    ValidationError,
    WorkspaceError,
)
from app.services.build.repair_loop import RepairLoop, RepairState
from app.services.build.stages import JobStatus, Stage
from app.services.build.tracker import BuildTracker
from buildkit.contracts import BuildOutcome, DiagnosticPayload, FileSet, LogChannel
from buildkit.errors import CollectionError, MaterializationError, SandboxViolation
from buildkit.log_parser import format_summary, summarise_maven
from buildkit.materializer import materialize
from buildkit.runner import DEGRADED_ARGS, run_build

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PLUGIN_NAME_FALLBACK = "MinecraftPlugin"
PLUGIN_NAME_SUFFIX = "Plugin"
BUILD_DESCRIPTOR = "pom.xml"
RUN_LOG_NAME = "logs.txt"
DEFAULT_MAX_PROMPT_CHARS = 1000
ERROR_OUTPUT_TAIL_CHARS = 4000

JOB_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{2,63}$")
_ALNUM_RUN_RE = re.compile(r"[A-Za-z0-9]+")

_STAGE_FOR_STATE: dict[RepairState, Stage] = {
    RepairState.DIAGNOSING: Stage.FIXING,
    RepairState.REQUESTING_FIX: Stage.FIXING,
    RepairState.APPLYING_FIX: Stage.FIXING,
    RepairState.RETRYING: Stage.FIXING,
    RepairState.REBUILDING: Stage.COMPILING,
    RepairState.EXHAUSTED_DEGRADED: Stage.COMPILING,
    RepairState.SUCCEEDED: Stage.SUCCESS,
    RepairState.EXHAUSTED_FAILED: Stage.FAILED,
}

GenerateFn = Callable[[str, str, str], Awaitable[FileSet]]
FixFn = Callable[[str, str, DiagnosticPayload], Awaitable[FileSet]]
RunnerFn = Callable[..., Awaitable[BuildOutcome]]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def derive_plugin_name(prompt: str) -> str:
    """First two alphanumeric runs of *prompt*, concatenated, plus ``Plugin``.

    Falls back to ``MinecraftPlugin`` when that yields fewer than three
    characters.  Case is kept as typed.
    """
    base = "".join(_ALNUM_RUN_RE.findall(prompt)[:2])
    if len(base) < 3:
        base = PLUGIN_NAME_FALLBACK
    return base + PLUGIN_NAME_SUFFIX


def validate_request(
    prompt: object,
    token: object,
    *,
    max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
) -> str:
    """Return the stripped prompt or raise ``ValidationError``."""
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Prompt is required")
    if len(prompt) > max_prompt_chars:
        raise ValidationError(f"Prompt is too long (max {max_prompt_chars} characters)")
    if not isinstance(token, str) or not token.strip():
        raise ValidationError("Bearer token is required")
    return prompt.strip()


def new_job_id() -> str:
    """``plugin-<epoch ms>-<8 hex>``."""
    return f"plugin-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _exhausted_message(attempts: int, last: BuildOutcome) -> str:
    """Terminal error text: headline, Maven summary if any, then the output tail."""
    parts = [f"Maven build failed with all approaches after {attempts} fix attempt(s)"]
    summary = summarise_maven(last.stdout, last.stderr)
    if not summary.success:
        parts.append(format_summary(summary))
    output = last.combined_output.strip()
    if output:
        parts.append(output[-ERROR_OUTPUT_TAIL_CHARS:])
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class GenerationResult(BaseModel):
    """Successful outcome of one generation run."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    job_id: str
    plugin_name: str
    project_dir: str
    artifact_path: str | None = None
    elapsed_s: float
    raw_log: str = ""
    fix_attempts: int = 0
    degraded: bool = False


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class _Run:
    """Per-run context: the job id, its directories and its log lines."""

    __slots__ = ("job_id", "prompt", "token", "plugin_name", "job_dir", "project_dir", "lines")

    def __init__(self, job_id: str, prompt: str, token: str, base_dir: Path) -> None:
        self.job_id = job_id
        self.prompt = prompt
        self.token = token
        self.plugin_name = derive_plugin_name(prompt)
        self.job_dir = base_dir / job_id
        self.project_dir = self.job_dir / self.plugin_name
        self.lines: list[str] = []

    @property
    def raw_log(self) -> str:
        return "\n".join(self.lines)


class GenerationOrchestrator:
    """Runs generation jobs against a shared ``BuildTracker``.

    The remote calls and the build runner are injectable so the whole
    pipeline can be driven without a network or a JDK.
    """

    def __init__(
        self,
        tracker: BuildTracker,
        *,
        api_host: str,
        base_dir: str | Path,
        maven_executable: str = "mvn",
        build_timeout_s: float = 600.0,
        run_timeout_s: float = 0.0,
        max_fix_attempts: int = 50,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
        generate: GenerateFn = plugin_api_client.request_generation,
        fix: FixFn = plugin_api_client.request_fix,
        runner: RunnerFn = run_build,
    ) -> None:
        self.tracker = tracker
        self.api_host = api_host
        self.base_dir = Path(base_dir)
        self.maven_executable = maven_executable
        self.build_timeout_s = build_timeout_s
        self.run_timeout_s = run_timeout_s
        self.max_fix_attempts = max_fix_attempts
        self.max_prompt_chars = max_prompt_chars
        self._generate = generate
        self._fix = fix
        self._runner = runner

    # -- job id --------------------------------------------------------------

    def _claim_job_id(self, requested: str | None) -> str:
        """Register and return the job id for a new run."""
        if requested:
            if not JOB_ID_RE.match(requested):
                raise ValidationError(
                    "buildId must be 3-64 letters, digits, '_' or '-', "
                    "starting with a letter or digit",
                )
            try:
                self.tracker.register(requested)
                return requested
            except ValueError:
                logger.warning("Build id %s already in use; assigning a new one", requested)
        while True:
            job_id = new_job_id()
            try:
                self.tracker.register(job_id)
                return job_id
            except ValueError:
                continue

    # -- public API ----------------------------------------------------------

    async def generate(
        self,
        prompt: object,
        token: object,
        *,
        job_id: str | None = None,
    ) -> GenerationResult:
        """Run one generation job to completion.

        Raises
        ------
        ValidationError
            Bad prompt, token or job id.  No job is registered.
        UpstreamError
            The generation service failed.
        BuildError
            The project could not be built, repair and fallback included.
        WorkspaceError
            Project files could not be written or read.
        RunTimeoutError
            The whole run exceeded ``run_timeout_s``.

        Every error raised after registration carries ``job_id`` and the
        ``raw_log`` collected so far.
        """
        clean_prompt = validate_request(prompt, token, max_prompt_chars=self.max_prompt_chars)
        run = _Run(self._claim_job_id(job_id), clean_prompt, str(token), self.base_dir)
        start = time.perf_counter()
        logger.info("Build %s started: plugin=%s", run.job_id, run.plugin_name)

        try:
            if self.run_timeout_s > 0:
                result = await asyncio.wait_for(self._execute(run, start), timeout=self.run_timeout_s)
            else:
                result = await self._execute(run, start)
        except asyncio.TimeoutError:
            exc = RunTimeoutError(
                f"Generation run timed out after {self.run_timeout_s:g}s",
                job_id=run.job_id,
            )
            self._fail(run, exc)
            raise exc from None
        except RunError as exc:
            self._fail(run, exc)
            raise
        except (MaterializationError, CollectionError) as exc:
            wrapped = WorkspaceError(str(exc), job_id=run.job_id)
            self._fail(run, wrapped)
            raise wrapped from exc
        except asyncio.CancelledError:
            self.tracker.finalize(run.job_id, success=False, error="Build cancelled")
            raise
        except Exception as exc:
            logger.exception("Build %s crashed", run.job_id)
            self._emit(run, "stderr", f"Error: Internal error: {exc}", infer=False)
            self.tracker.finalize(run.job_id, success=False, error=f"Internal error: {exc}")
            raise
        finally:
            self._persist_log(run)

        self.tracker.finalize(
            run.job_id,
            success=True,
            jar_path=result.artifact_path,
            degraded=result.degraded,
        )
        logger.info(
            "Build %s completed in %.2fs: artifact=%s fix_attempts=%d degraded=%s",
            run.job_id, result.elapsed_s, result.artifact_path,
            result.fix_attempts, result.degraded,
        )
        return result

    # -- pipeline ------------------------------------------------------------

    async def _execute(self, run: _Run, start: float) -> GenerationResult:
        job_id = run.job_id
        self.tracker.set_status(job_id, JobStatus.RUNNING)
        self._emit(run, "stdout", f"Analyzing your request: {run.prompt}")
        self._emit(run, "stdout", f"Designing plugin structure for {run.plugin_name}")

        self._emit(run, "stdout", "Generating code (this may take a few minutes)...")
        files = await self._generate(self.api_host, run.token, run.prompt)

        self._emit(run, "stdout", f"Creating project files in {run.project_dir}")
        try:
            written = await asyncio.to_thread(materialize, files, run.project_dir)
        except SandboxViolation as exc:
            raise UpstreamError(f"Generation service returned an unsafe file path: {exc}") from exc
        except MaterializationError as exc:
            if not exc.is_path_conflict:
                raise
            raise UpstreamError(f"Generation service returned conflicting file paths: {exc}") from exc
        for rel in files:
            self._emit(run, "stdout", f"Created: {rel}", infer=False)

        if not (run.project_dir / BUILD_DESCRIPTOR).is_file():
            self._emit(run, "stdout", f"No {BUILD_DESCRIPTOR} found in {run.project_dir}; Maven build skipped")
            return self._result(run, start, message=f"Generated {len(written)} file(s); build skipped")

        self._emit(run, "stdout", "Running Maven build...")
        outcome = await self._build(run, degraded=False)

        fix_attempts = 0
        degraded = False
        note = ""
        if not outcome.success:
            if outcome.failure_reason == "spawn_error":
                raise BuildError(f"Could not start the build toolchain: {outcome.stderr}")

            self._emit(run, "stdout", "Maven build failed. Fixing compilation issues...")
            loop = RepairLoop(
                run.project_dir,
                request_fix=lambda payload: self._fix(self.api_host, run.token, payload),
                build=lambda degraded: self._build(run, degraded=degraded),
                max_attempts=self.max_fix_attempts,
                on_attempt=lambda _n: self.tracker.record_fix_attempt(job_id),
                on_transition=lambda _old, new: self._on_repair_transition(job_id, new),
                on_message=lambda channel, text: self._emit(run, channel, text, infer=False),
            )
            repair = await loop.run(outcome)
            fix_attempts = repair.attempts
            if not repair.success:
                raise BuildError(_exhausted_message(repair.attempts, repair.outcome))
            outcome = repair.outcome
            degraded = repair.degraded
            note = repair.note

        message = "Plugin generated and built successfully"
        if degraded:
            message = f"Plugin built without dependency shading: {note}"
        self._emit(run, "stdout", "Build successful")
        if outcome.artifact_path:
            self._emit(run, "stdout", f"Plugin JAR file created: {outcome.artifact_path}", infer=False)
        return self._result(
            run, start,
            message=message,
            artifact_path=outcome.artifact_path,
            fix_attempts=fix_attempts,
            degraded=degraded,
        )

    async def _build(self, run: _Run, *, degraded: bool) -> BuildOutcome:
        return await self._runner(
            run.project_dir,
            executable=self.maven_executable,
            extra_args=DEGRADED_ARGS if degraded else (),
            timeout_s=self.build_timeout_s,
            env={"API_HOST": self.api_host},
            on_line=lambda channel, text: self._on_child_line(run, channel, text),
            degraded=degraded,
        )

    def _result(self, run: _Run, start: float, *, message: str, **fields) -> GenerationResult:
        return GenerationResult(
            message=message,
            job_id=run.job_id,
            plugin_name=run.plugin_name,
            project_dir=str(run.project_dir),
            elapsed_s=round(time.perf_counter() - start, 2),
            raw_log=run.raw_log,
            **fields,
        )

    # -- tracker plumbing ----------------------------------------------------

    def _emit(self, run: _Run, channel: LogChannel, text: str, *, infer: bool = True) -> None:
        run.lines.append(text)
        self.tracker.append_log(run.job_id, channel, text, infer=infer)

    def _on_child_line(self, run: _Run, channel: LogChannel, text: str) -> None:
        if channel == "stderr":
            logger.warning("[%s] %s", run.job_id, text)
        else:
            logger.debug("[%s] %s", run.job_id, text)
        self._emit(run, channel, text)

    def _on_repair_transition(self, job_id: str, new: RepairState) -> None:
        stage = _STAGE_FOR_STATE.get(new)
        if stage is not None:
            self.tracker.set_stage(job_id, stage)

    def _fail(self, run: _Run, exc: RunError) -> None:
        exc.job_id = run.job_id
        self._emit(run, "stderr", f"Error: {exc}", infer=False)
        exc.raw_log = run.raw_log
        logger.error("Build %s failed: %s", run.job_id, str(exc).splitlines()[0])
        self.tracker.finalize(run.job_id, success=False, error=str(exc))

    def _persist_log(self, run: _Run) -> None:
        path = run.job_dir / RUN_LOG_NAME
        try:
            run.job_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(run.raw_log + "\n", encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write run log %s: %s", path, exc)
