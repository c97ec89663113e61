"""File materializer -- write a FileSet into a directory tree.

All paths are checked before the first byte is written, so an unsafe
entry never leaves a partial tree behind.  An OS failure part-way through
aborts the batch; directories created before the failure are left in
place.
"""

from __future__ import annotations

import logging
from pathlib import Path

from buildkit.contracts import FileSet, check_relative_path
from buildkit.errors import MaterializationError, SandboxViolation

logger = logging.getLogger(__name__)


def resolve_within(root: Path, rel_path: str) -> Path:
    """Resolve *rel_path* inside *root*, refusing anything that escapes it.

    Parameters
    ----------
    root : Path
        Already-resolved project root.
    rel_path : str
        A relative path (forward-slash or back-slash).

    Raises
    ------
    SandboxViolation
        If the path is empty, absolute, contains null bytes, traverses
        with ``..``, or resolves outside the root (symlink escape).
    """
    root_str = str(root)
    normalised = check_relative_path(rel_path, root=root_str)
    target = (root / normalised).resolve()

    # Final check -- catches symlink escapes
    try:
        target.relative_to(root)
    except ValueError:
        raise SandboxViolation(
            path=rel_path,
            attempted_path=str(target),
            root=root_str,
            reason="Resolved path is outside project root",
        )

    return target


def materialize(files: FileSet, root: str | Path) -> list[Path]:
    """Write every entry of *files* under *root*, overwriting existing files.

    Returns the absolute paths written, in FileSet order.

    Raises
    ------
    SandboxViolation
        If any path is unsafe.  Nothing is written in that case.
    MaterializationError
        If a directory or file cannot be written.
    """
    root_path = Path(root)
    try:
        root_path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise MaterializationError(str(root_path), exc) from exc
    root_path = root_path.resolve()

    targets = [(rel, resolve_within(root_path, rel)) for rel in files]

    written: list[Path] = []
    for rel, target in targets:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as fh:
                fh.write(files[rel])
        except OSError as exc:
            logger.error("Materialization aborted at %s: %s", rel, exc)
            raise MaterializationError(rel, exc) from exc
        written.append(target)

    logger.debug("Materialized %d file(s) under %s", len(written), root_path)
    return written


def read_fileset(root: str | Path, paths: list[str]) -> FileSet:
    """Read *paths* back from *root* as a FileSet (no newline translation)."""
    root_path = Path(root).resolve()
    result: FileSet = {}
    for rel in paths:
        target = resolve_within(root_path, rel)
        with open(target, "r", encoding="utf-8", newline="") as fh:
            result[rel] = fh.read()
    return result
