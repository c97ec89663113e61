"""Tests for buildkit.runner -- streaming subprocess builds.

The real runner is driven with the current Python interpreter standing in
for the build toolchain: ``executable=sys.executable, goals=("-c", SCRIPT)``.
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import pytest

from buildkit.runner import (
    DEFAULT_GOALS,
    DEGRADED_ARGS,
    _build_env,
    _truncate_tail,
    build_command,
    run_build,
)

PY = sys.executable


async def _run_script(project: Path, script: str, **kwargs):
    return await run_build(project, executable=PY, goals=("-c", script), **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


class TestHelpers:
    def test_build_command_defaults(self):
        argv = build_command("definitely-not-installed-xyz")
        assert argv == ["definitely-not-installed-xyz", *DEFAULT_GOALS]

    def test_build_command_extra_args(self):
        argv = build_command("definitely-not-installed-xyz", ("package",), DEGRADED_ARGS)
        assert argv[1:] == ["package", "-Dmaven.shade.skip=true"]

    def test_build_env_overrides(self, monkeypatch):
        monkeypatch.setenv("API_HOST", "http://old")
        env = _build_env({"API_HOST": "http://new"})
        assert env["API_HOST"] == "http://new"
        assert "PATH" in env

    def test_truncate_tail_keeps_end(self):
        text, truncated = _truncate_tail("a" * 50 + "TAIL", 10)
        assert truncated is True
        assert text.endswith("aaaaaaTAIL")

    def test_truncate_tail_short(self):
        assert _truncate_tail("short", 10) == ("short", False)


# ═══════════════════════════════════════════════════════════════════════════
# run_build
# ═══════════════════════════════════════════════════════════════════════════


class TestRunBuild:
    @pytest.mark.asyncio
    async def test_exit_zero_without_artifact(self, tmp_path: Path):
        result = await _run_script(tmp_path, "print('[INFO] BUILD SUCCESS')")
        assert result.success is True
        assert result.exit_code == 0
        assert result.artifact_path is None
        assert result.failure_reason is None
        assert "BUILD SUCCESS" in result.stdout

    @pytest.mark.asyncio
    async def test_exit_zero_with_artifact(self, tmp_path: Path):
        script = (
            "import pathlib\n"
            "t = pathlib.Path('target'); t.mkdir()\n"
            "(t / 'original-demo-1.0.jar').write_bytes(b'PK')\n"
            "(t / 'demo-1.0.jar').write_bytes(b'PK')\n"
        )
        result = await _run_script(tmp_path, script)
        assert result.success is True
        assert result.artifact_path == str((tmp_path / "target" / "demo-1.0.jar").resolve())

    @pytest.mark.asyncio
    async def test_marker_preferred(self, tmp_path: Path):
        script = (
            "import pathlib\n"
            "o = pathlib.Path('out'); o.mkdir()\n"
            "(o / 'custom.jar').write_bytes(b'PK')\n"
            "t = pathlib.Path('target'); t.mkdir()\n"
            "(t / 'demo.jar').write_bytes(b'PK')\n"
            "print('PLUGIN_JAR_PATH:out/custom.jar')\n"
        )
        result = await _run_script(tmp_path, script)
        assert result.artifact_path == str((tmp_path / "out" / "custom.jar").resolve())

    @pytest.mark.asyncio
    async def test_degraded_accepts_intermediate(self, tmp_path: Path):
        script = (
            "import pathlib\n"
            "t = pathlib.Path('target'); t.mkdir()\n"
            "(t / 'original-demo.jar').write_bytes(b'PK')\n"
        )
        normal = await _run_script(tmp_path, script)
        assert normal.artifact_path is None

        degraded = await run_build(
            tmp_path,
            executable=PY,
            goals=("-c", "pass"),
            degraded=True,
        )
        assert degraded.degraded is True
        assert degraded.artifact_path == str((tmp_path / "target" / "original-demo.jar").resolve())

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path: Path):
        script = "import sys\nprint('[ERROR] broken')\nprint('oops', file=sys.stderr)\nsys.exit(1)"
        result = await _run_script(tmp_path, script)
        assert result.success is False
        assert result.exit_code == 1
        assert result.failure_reason == "exit_code"
        assert result.artifact_path is None
        assert "[ERROR] broken" in result.stdout
        assert "oops" in result.stderr

    @pytest.mark.asyncio
    async def test_extra_args_passed(self, tmp_path: Path):
        result = await run_build(
            tmp_path,
            executable=PY,
            goals=("-c", "import sys; print(sys.argv[1:])"),
            extra_args=DEGRADED_ARGS,
        )
        assert "['-Dmaven.shade.skip=true']" in result.stdout
        assert result.command.endswith("-Dmaven.shade.skip=true")

    @pytest.mark.asyncio
    async def test_env_override(self, tmp_path: Path):
        result = await _run_script(
            tmp_path,
            "import os; print('host=' + os.environ['API_HOST'])",
            env={"API_HOST": "http://plugin-api.test"},
        )
        assert "host=http://plugin-api.test" in result.stdout

    @pytest.mark.asyncio
    async def test_runs_in_project_dir(self, tmp_path: Path):
        result = await _run_script(tmp_path, "import os; print(os.getcwd())")
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_lines_streamed_per_channel(self, tmp_path: Path):
        seen: list[tuple[str, str]] = []
        script = "import sys\nprint('one')\nprint('warn', file=sys.stderr)\nprint('two')"
        await _run_script(tmp_path, script, on_line=lambda ch, text: seen.append((ch, text)))
        assert [t for ch, t in seen if ch == "stdout"] == ["one", "two"]
        assert [t for ch, t in seen if ch == "stderr"] == ["warn"]

    @pytest.mark.asyncio
    async def test_lines_delivered_before_exit(self, tmp_path: Path):
        stamps: dict[str, float] = {}
        script = "import time\nprint('first', flush=True)\ntime.sleep(0.5)\nprint('second', flush=True)"
        await _run_script(tmp_path, script, on_line=lambda ch, text: stamps.setdefault(text, time.monotonic()))
        assert stamps["second"] - stamps["first"] >= 0.3

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_abort(self, tmp_path: Path):
        def _boom(channel, text):
            raise RuntimeError("callback failed")

        result = await _run_script(tmp_path, "print('a'); print('b')", on_line=_boom)
        assert result.success is True
        assert result.stdout.splitlines() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_timeout_kills_child(self, tmp_path: Path):
        start = time.monotonic()
        result = await _run_script(tmp_path, "import time; time.sleep(30)", timeout_s=0.5)
        assert time.monotonic() - start < 10
        assert result.success is False
        assert result.timed_out is True
        assert result.failure_reason == "timeout"
        assert result.exit_code == -1

    @pytest.mark.asyncio
    async def test_spawn_error(self, tmp_path: Path):
        result = await run_build(tmp_path, executable="definitely-not-installed-xyz")
        assert result.success is False
        assert result.exit_code == -1
        assert result.failure_reason == "spawn_error"
        assert result.stderr.startswith("Error:")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, tmp_path: Path):
        task = asyncio.create_task(_run_script(tmp_path, "import time; time.sleep(30)"))
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=10)

    @pytest.mark.asyncio
    async def test_large_output_truncated(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("buildkit.runner.MAX_STDOUT_CHARS", 100)
        result = await _run_script(tmp_path, "for i in range(200): print('line', i)")
        assert result.truncated is True
        assert result.stdout.endswith("line 199")
