"""Diagnostic collector -- bundle build errors with the current source tree.

The fix service needs to see the whole project as it is now, not just the
files the compiler complained about, so every source and descriptor file is
snapshotted.  Build output and VCS/IDE directories are never included.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from buildkit.contracts import DiagnosticPayload, FileSet
from buildkit.errors import CollectionError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SOURCE_SUFFIXES: frozenset[str] = frozenset({".java"})

DESCRIPTOR_NAMES: frozenset[str] = frozenset({
    "pom.xml",
    "plugin.yml",
    "config.yml",
})

SKIP_DIRS: frozenset[str] = frozenset({
    "target",
    ".git",
    ".idea",
    ".vscode",
    ".mvn",
    "node_modules",
})

MAX_BUILD_ERROR_CHARS: int = 100_000


# ---------------------------------------------------------------------------
# File enumeration
# ---------------------------------------------------------------------------


def is_collectable(name: str) -> bool:
    """True for toolchain-relevant files (sources and descriptors)."""
    return name in DESCRIPTOR_NAMES or Path(name).suffix in SOURCE_SUFFIXES


def enumerate_sources(project_root: Path) -> list[str]:
    """Return relative forward-slash paths of collectable files, sorted.

    Raises ``OSError`` if *project_root* itself cannot be listed.
    """
    # Surface an unreadable root immediately; os.walk would swallow it.
    os.listdir(project_root)

    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(project_root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        rel_dir = Path(dirpath).relative_to(project_root)
        for fname in sorted(filenames):
            if is_collectable(fname):
                found.append((rel_dir / fname).as_posix())
    return sorted(found)


def _tail(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[-max_chars:]


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


def collect_diagnostics(
    project_root: str | Path,
    build_output: str,
    *,
    max_error_chars: int = MAX_BUILD_ERROR_CHARS,
) -> DiagnosticPayload:
    """Snapshot the project and pair it with the last build's error text.

    Parameters
    ----------
    project_root:
        Root of the materialized project.
    build_output:
        Combined stdout/stderr of the most recent failed build.

    Raises
    ------
    CollectionError
        If *project_root* is missing or unreadable.  Individual unreadable
        files are skipped and reported in ``warnings`` instead.
    """
    root = Path(project_root)
    if not root.is_dir():
        raise CollectionError(str(root), "not a directory")
    try:
        rel_paths = enumerate_sources(root)
    except OSError as exc:
        raise CollectionError(str(root), str(exc)) from exc

    files: FileSet = {}
    warnings: list[str] = []
    for rel in rel_paths:
        try:
            files[rel] = (root / rel).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Skipped unreadable file {rel}: {exc}"
            logger.warning(msg)
            warnings.append(msg)

    return DiagnosticPayload(
        build_errors=_tail(build_output, max_error_chars),
        files=files,
        warnings=warnings,
    )
