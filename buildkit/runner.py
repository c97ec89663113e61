"""Build runner -- streaming subprocess execution of the build toolchain.

Provides ``run_build()`` which invokes ``mvn clean package`` (or any
configured executable and goals) in a project directory and returns a
structured ``BuildOutcome``.  Output is consumed line by line while the
process runs so callers can forward progress before it exits.  The
wall-clock timeout is enforced here with a hard kill.

No network, no LLM involvement -- this is a pure systems layer.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import time
from pathlib import Path
from typing import Callable, Sequence

from buildkit.artifacts import locate_artifact
from buildkit.contracts import BuildOutcome, LogChannel
from buildkit.errors import BuildTimeout

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_EXECUTABLE = "mvn"
DEFAULT_GOALS: tuple[str, ...] = ("clean", "package")
DEGRADED_ARGS: tuple[str, ...] = ("-Dmaven.shade.skip=true",)
DEFAULT_TIMEOUT_S: float = 600.0

MAX_STDOUT_CHARS: int = 500_000
MAX_STDERR_CHARS: int = 200_000

# asyncio StreamReader line limit -- Maven can print very long classpath lines.
_STREAM_LIMIT: int = 4 * 1024 * 1024

LineCallback = Callable[[LogChannel, str], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_command(
    executable: str = DEFAULT_EXECUTABLE,
    goals: Sequence[str] = DEFAULT_GOALS,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Return the argv for one build invocation."""
    resolved = shutil.which(executable) or executable
    return [resolved, *goals, *extra_args]


def _build_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Inherit the host environment and apply caller overrides on top."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env


def _truncate_tail(text: str, max_chars: int) -> tuple[str, bool]:
    """Keep the last *max_chars* characters of *text*.

    Compiler errors and the final BUILD FAILURE banner sit at the end of
    the output, so the head is what gets dropped.
    """
    if len(text) <= max_chars:
        return text, False
    return (
        f"[... truncated, showing last {max_chars} chars ...]\n\n" + text[-max_chars:],
        True,
    )


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def _pump(
    stream: asyncio.StreamReader,
    channel: LogChannel,
    sink: list[str],
    on_line: LineCallback | None,
) -> None:
    """Read *stream* line by line into *sink*, forwarding each line."""
    while True:
        raw = await stream.readline()
        if not raw:
            break
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(text)
        if on_line is not None:
            try:
                on_line(channel, text)
            except Exception:
                logger.exception("Line callback failed on %s", channel)


async def _wait_with_timeout(
    proc: asyncio.subprocess.Process,
    pumps: asyncio.Future,
    timeout_s: float,
    command: str,
) -> int:
    """Drain both pipes and wait for exit; kill the child on expiry."""

    async def _communicate() -> int:
        await pumps
        return await proc.wait()

    try:
        return await asyncio.wait_for(_communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise BuildTimeout(command, timeout_s) from None


# ---------------------------------------------------------------------------
# Core runner
# ---------------------------------------------------------------------------


async def run_build(
    project_dir: str | Path,
    *,
    executable: str = DEFAULT_EXECUTABLE,
    goals: Sequence[str] = DEFAULT_GOALS,
    extra_args: Sequence[str] = (),
    timeout_s: float = DEFAULT_TIMEOUT_S,
    env: dict[str, str] | None = None,
    on_line: LineCallback | None = None,
    degraded: bool = False,
) -> BuildOutcome:
    """Run the build toolchain in *project_dir* and return a ``BuildOutcome``.

    Parameters
    ----------
    project_dir:
        Working directory for the child; must contain the build descriptor.
    executable, goals, extra_args:
        The command line is ``executable goals... extra_args...``.
    timeout_s:
        Maximum wall-clock seconds before the child is killed.
    env:
        Variables merged on top of the inherited environment
        (e.g. ``{"API_HOST": ...}``).
    on_line:
        Called as ``on_line(channel, text)`` for every output line, while
        the process is still running.
    degraded:
        Marks a shading-disabled build; artifact search then accepts
        intermediate archives too.

    A timeout is reported as ``failure_reason="timeout"``; a child that
    could not be spawned as ``failure_reason="spawn_error"``.  Cancelling
    the awaiting task kills the child.
    """
    argv = build_command(executable, goals, extra_args)
    command = shlex.join([executable, *goals, *extra_args])
    start = time.perf_counter()

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(project_dir),
            env=_build_env(env),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_STREAM_LIMIT,
        )
    except OSError as exc:
        logger.error("Could not start build command %r: %s", command, exc)
        return BuildOutcome(
            success=False,
            exit_code=-1,
            stderr=f"Error: {exc}",
            failure_reason="spawn_error",
            duration_ms=int((time.perf_counter() - start) * 1000),
            command=command,
            degraded=degraded,
        )

    out_lines: list[str] = []
    err_lines: list[str] = []
    pumps = asyncio.gather(
        _pump(proc.stdout, "stdout", out_lines, on_line),
        _pump(proc.stderr, "stderr", err_lines, on_line),
    )

    timed_out = False
    try:
        exit_code = await _wait_with_timeout(proc, pumps, timeout_s, command)
    except BuildTimeout as exc:
        logger.warning("%s", exc)
        timed_out = True
        exit_code = -1
    except asyncio.CancelledError:
        _kill(proc)
        pumps.cancel()
        raise

    elapsed = int((time.perf_counter() - start) * 1000)
    raw_out = "\n".join(out_lines)
    raw_err = "\n".join(err_lines)
    stdout, trunc_out = _truncate_tail(raw_out, MAX_STDOUT_CHARS)
    stderr, trunc_err = _truncate_tail(raw_err, MAX_STDERR_CHARS)

    success = exit_code == 0 and not timed_out
    artifact = None
    if success:
        artifact = locate_artifact(project_dir, raw_out, include_intermediate=degraded)

    failure_reason = None
    if timed_out:
        failure_reason = "timeout"
    elif not success:
        failure_reason = "exit_code"

    logger.info(
        "Build %r finished: exit=%d success=%s duration=%dms artifact=%s",
        command, exit_code, success, elapsed, artifact,
    )
    return BuildOutcome(
        success=success,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        artifact_path=artifact,
        timed_out=timed_out,
        failure_reason=failure_reason,
        duration_ms=elapsed,
        command=command,
        truncated=trunc_out or trunc_err,
        degraded=degraded,
    )
