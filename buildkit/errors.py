"""Toolchain-layer error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for serialisation into log records and API bodies,
and has a readable ``__str__`` for logging.
"""

from __future__ import annotations

import errno


class BuildKitError(Exception):
    """Base error for all toolchain-layer failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


class SandboxViolation(BuildKitError):
    """Path resolved outside the project root."""

    def __init__(
        self,
        path: str,
        attempted_path: str | None = None,
        *,
        root: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.path = path
        self.attempted_path = attempted_path or ""
        self.root = root or ""
        self.reason = reason or ""

        if reason:
            msg = f"Sandbox violation: {reason} (path={path!r}, root={root!r})"
        else:
            msg = (
                f"Sandbox violation: '{path}' resolved to "
                f"'{self.attempted_path}' which is outside the project root"
            )

        detail: dict = {"path": path}
        if self.attempted_path:
            detail["attempted_path"] = self.attempted_path
        if root:
            detail["root"] = root
        if reason:
            detail["reason"] = reason

        super().__init__(msg, detail=detail)


class MaterializationError(BuildKitError):
    """A directory or file could not be written while materializing a FileSet."""

    def __init__(self, path: str, os_error: OSError) -> None:
        self.path = path
        self.os_error = os_error
        super().__init__(
            f"Failed to write '{path}': {os_error.strerror or os_error}",
            detail={"path": path, "errno": os_error.errno},
        )

    @property
    def is_path_conflict(self) -> bool:
        """True when a file and a directory competed for the same path."""
        return isinstance(
            self.os_error, (IsADirectoryError, NotADirectoryError, FileExistsError)
        ) or self.os_error.errno in (errno.EISDIR, errno.ENOTDIR, errno.EEXIST)


class CollectionError(BuildKitError):
    """The project root could not be read while collecting diagnostics."""

    def __init__(self, root: str, reason: str) -> None:
        self.root = root
        self.reason = reason
        super().__init__(
            f"Cannot collect diagnostics from '{root}': {reason}",
            detail={"root": root, "reason": reason},
        )


class BuildTimeout(BuildKitError):
    """A build invocation exceeded its allowed wall-clock time."""

    def __init__(self, command: str, timeout_s: float) -> None:
        self.command = command
        self.timeout_s = timeout_s
        super().__init__(
            f"Build command '{command}' timed out after {timeout_s:g}s",
            detail={"command": command, "timeout_s": timeout_s},
        )
