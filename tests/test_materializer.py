"""Tests for buildkit.materializer -- writing a FileSet into a directory tree."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from buildkit.errors import MaterializationError, SandboxViolation
from buildkit.materializer import materialize, read_fileset, resolve_within
from tests.conftest import SAMPLE_FILES


# ═══════════════════════════════════════════════════════════════════════════
# resolve_within
# ═══════════════════════════════════════════════════════════════════════════


class TestResolveWithin:
    def test_simple_path(self, tmp_path: Path):
        root = tmp_path.resolve()
        assert resolve_within(root, "src/Main.java") == root / "src" / "Main.java"

    def test_backslashes_normalised(self, tmp_path: Path):
        root = tmp_path.resolve()
        assert resolve_within(root, "src\\Main.java") == root / "src" / "Main.java"

    @pytest.mark.parametrize("bad", ["", "   ", "../escape.txt", "a/../../b", "/etc/passwd", "C:\\x.txt", "a\x00b"])
    def test_unsafe_paths_rejected(self, tmp_path: Path, bad: str):
        with pytest.raises(SandboxViolation):
            resolve_within(tmp_path.resolve(), bad)

    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    def test_symlink_escape_rejected(self, tmp_path: Path):
        root = (tmp_path / "root").resolve()
        root.mkdir()
        outside = tmp_path / "outside"
        outside.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(SandboxViolation, match="outside project root"):
            resolve_within(root, "link/file.txt")


# ═══════════════════════════════════════════════════════════════════════════
# materialize
# ═══════════════════════════════════════════════════════════════════════════


class TestMaterialize:
    def test_round_trip(self, tmp_path: Path):
        root = tmp_path / "out"
        written = materialize(SAMPLE_FILES, root)
        assert len(written) == len(SAMPLE_FILES)
        assert read_fileset(root, list(SAMPLE_FILES)) == SAMPLE_FILES

    def test_creates_root(self, tmp_path: Path):
        root = tmp_path / "a" / "b" / "c"
        materialize({"pom.xml": "<project/>"}, root)
        assert (root / "pom.xml").read_text(encoding="utf-8") == "<project/>"

    def test_overwrites_existing(self, tmp_path: Path):
        materialize({"Main.java": "old"}, tmp_path)
        materialize({"Main.java": "new"}, tmp_path)
        assert (tmp_path / "Main.java").read_text(encoding="utf-8") == "new"

    def test_no_newline_translation(self, tmp_path: Path):
        content = "line1\r\nline2\nline3\r"
        materialize({"mixed.txt": content}, tmp_path)
        assert (tmp_path / "mixed.txt").read_bytes() == content.encode("utf-8")

    def test_unicode_content(self, tmp_path: Path):
        content = "// héllo wörld ✓\n"
        materialize({"U.java": content}, tmp_path)
        assert (tmp_path / "U.java").read_text(encoding="utf-8") == content

    def test_empty_fileset(self, tmp_path: Path):
        assert materialize({}, tmp_path / "empty") == []
        assert (tmp_path / "empty").is_dir()

    def test_traversal_writes_nothing(self, tmp_path: Path):
        root = tmp_path / "root"
        files = {"ok.txt": "fine", "../evil.txt": "pwned"}
        with pytest.raises(SandboxViolation):
            materialize(files, root)
        assert not (root / "ok.txt").exists()
        assert not (tmp_path / "evil.txt").exists()

    def test_absolute_path_rejected(self, tmp_path: Path):
        with pytest.raises(SandboxViolation):
            materialize({"/tmp/abs.txt": "x"}, tmp_path)

    def test_os_error_wrapped(self, tmp_path: Path):
        with patch("buildkit.materializer.open", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(MaterializationError) as exc_info:
                materialize({"src/A.java": "class A {}"}, tmp_path)
        assert exc_info.value.path == "src/A.java"
        assert "Permission denied" in str(exc_info.value)
        # Parent directories created before the failure persist
        assert (tmp_path / "src").is_dir()

    def test_file_where_directory_expected(self, tmp_path: Path):
        (tmp_path / "src").write_text("i am a file", encoding="utf-8")
        with pytest.raises(MaterializationError):
            materialize({"src/A.java": "class A {}"}, tmp_path)
