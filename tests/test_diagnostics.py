"""Tests for buildkit.diagnostics -- snapshotting the project for the fix service."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from buildkit.diagnostics import (
    collect_diagnostics,
    enumerate_sources,
    is_collectable,
)
from buildkit.errors import CollectionError
from tests.conftest import COMPILE_ERROR, SAMPLE_FILES


def _write(root: Path, rel: str, content: str = "x") -> None:
    target = root / rel
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


class TestIsCollectable:
    @pytest.mark.parametrize("name", ["Main.java", "pom.xml", "plugin.yml", "config.yml"])
    def test_collectable(self, name: str):
        assert is_collectable(name) is True

    @pytest.mark.parametrize("name", ["README.md", "Main.class", "demo.jar", "settings.yml", "build.gradle"])
    def test_not_collectable(self, name: str):
        assert is_collectable(name) is False


class TestEnumerateSources:
    def test_sorted_forward_slash(self, project_dir: Path):
        assert enumerate_sources(project_dir) == sorted(SAMPLE_FILES)

    def test_skips_build_and_vcs_dirs(self, project_dir: Path):
        _write(project_dir, "target/generated-sources/Gen.java")
        _write(project_dir, ".git/hooks/Hook.java")
        _write(project_dir, ".idea/Cfg.java")
        _write(project_dir, "README.md")
        assert enumerate_sources(project_dir) == sorted(SAMPLE_FILES)

    def test_missing_root_raises(self, tmp_path: Path):
        with pytest.raises(OSError):
            enumerate_sources(tmp_path / "nope")


class TestCollectDiagnostics:
    def test_snapshot(self, project_dir: Path):
        payload = collect_diagnostics(project_dir, COMPILE_ERROR)
        assert payload.build_errors == COMPILE_ERROR
        assert payload.files == SAMPLE_FILES
        assert payload.warnings == []

    def test_reflects_current_contents(self, project_dir: Path):
        (project_dir / "pom.xml").write_text("<project>v2</project>", encoding="utf-8")
        payload = collect_diagnostics(project_dir, "")
        assert payload.files["pom.xml"] == "<project>v2</project>"

    def test_config_yml_included(self, project_dir: Path):
        _write(project_dir, "src/main/resources/config.yml", "speed: 2\n")
        payload = collect_diagnostics(project_dir, "")
        assert payload.files["src/main/resources/config.yml"] == "speed: 2\n"

    def test_error_text_tail_bounded(self, project_dir: Path):
        payload = collect_diagnostics(project_dir, "HEAD" + "x" * 100 + "TAIL", max_error_chars=10)
        assert payload.build_errors == "xxxxxxTAIL"

    def test_unreadable_file_skipped(self, project_dir: Path, caplog: pytest.LogCaptureFixture):
        bad = project_dir / "src/main/java/com/example/demo/Broken.java"
        bad.write_bytes(b"\xff\xfe\xfa not utf-8")
        with caplog.at_level(logging.WARNING, logger="buildkit.diagnostics"):
            payload = collect_diagnostics(project_dir, "")
        assert "src/main/java/com/example/demo/Broken.java" not in payload.files
        assert len(payload.warnings) == 1
        assert "Broken.java" in payload.warnings[0]
        assert any("Broken.java" in r.message for r in caplog.records)
        # The rest of the tree is still collected
        assert payload.files["pom.xml"] == SAMPLE_FILES["pom.xml"]

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(CollectionError) as exc_info:
            collect_diagnostics(tmp_path / "gone", "")
        assert exc_info.value.reason == "not a directory"

    def test_root_is_file(self, tmp_path: Path):
        f = tmp_path / "file.txt"
        f.write_text("x", encoding="utf-8")
        with pytest.raises(CollectionError):
            collect_diagnostics(f, "")

    def test_warnings_not_sent_upstream(self, project_dir: Path):
        (project_dir / "Bad.java").write_bytes(b"\xff")
        body = collect_diagnostics(project_dir, "err").to_request_body()
        assert set(body) == {"buildErrors", "files"}
