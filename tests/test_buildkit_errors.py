"""Tests for buildkit.errors -- structured toolchain errors."""

from __future__ import annotations

import errno

from buildkit.errors import (
    BuildKitError,
    BuildTimeout,
    CollectionError,
    MaterializationError,
    SandboxViolation,
)


class TestBuildKitError:
    def test_base(self):
        e = BuildKitError("boom", detail={"k": 1})
        assert str(e) == "boom"
        assert e.to_dict() == {"error": "BuildKitError", "message": "boom", "k": 1}

    def test_subclasses(self):
        for cls in (SandboxViolation, MaterializationError, CollectionError, BuildTimeout):
            assert issubclass(cls, BuildKitError)


class TestSandboxViolation:
    def test_with_reason(self):
        e = SandboxViolation(path="../x", root="/proj", reason="Path traversal")
        assert "Path traversal" in str(e)
        assert e.to_dict()["path"] == "../x"
        assert e.to_dict()["reason"] == "Path traversal"

    def test_resolved_outside(self):
        e = SandboxViolation("link/x", "/elsewhere/x")
        assert "/elsewhere/x" in str(e)
        assert e.to_dict()["attempted_path"] == "/elsewhere/x"


class TestMaterializationError:
    def test_fields(self):
        e = MaterializationError("src/A.java", OSError(errno.EACCES, "Permission denied"))
        assert e.path == "src/A.java"
        assert str(e) == "Failed to write 'src/A.java': Permission denied"
        assert e.to_dict()["errno"] == errno.EACCES

    def test_path_conflict(self):
        assert MaterializationError("src", IsADirectoryError(errno.EISDIR, "Is a directory")).is_path_conflict
        assert MaterializationError("a/b", NotADirectoryError(errno.ENOTDIR, "Not a directory")).is_path_conflict
        assert MaterializationError("a/b", FileExistsError(errno.EEXIST, "File exists")).is_path_conflict

    def test_other_os_errors_are_not_conflicts(self):
        assert not MaterializationError("x", OSError(errno.ENOSPC, "No space left")).is_path_conflict
        assert not MaterializationError("x", PermissionError(errno.EACCES, "Denied")).is_path_conflict


class TestCollectionError:
    def test_fields(self):
        e = CollectionError("/proj", "not a directory")
        assert "/proj" in str(e)
        assert e.to_dict()["reason"] == "not a directory"


class TestBuildTimeout:
    def test_message(self):
        e = BuildTimeout("mvn clean package", 600)
        assert str(e) == "Build command 'mvn clean package' timed out after 600s"
        assert e.to_dict()["timeout_s"] == 600
