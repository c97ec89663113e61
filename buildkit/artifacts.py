"""Artifact locator -- find the archive a build produced.

Two sources, in order of preference:

1. An in-band marker printed on stdout (``PLUGIN_JAR_PATH:<path>``, or the
   older ``Plugin JAR file created: <name>.jar`` line).
2. A scan of the build-output directory for files with the archive
   extension, skipping unshaded/intermediate archives.

No OS-specific branches: traversal is ``os.walk`` with sorted entries so
"first match" is deterministic everywhere.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_OUTPUT_DIR = "target"
ARCHIVE_EXTENSION = ".jar"
INTERMEDIATE_MARKER = "original"

_MARKER_RE = re.compile(r"^PLUGIN_JAR_PATH:(.*)$", re.MULTILINE)
_LEGACY_MARKER_RE = re.compile(r"Plugin JAR file created:?\s*(.*\.jar)")


def parse_artifact_marker(stdout: str) -> str | None:
    """Return the artifact path announced in *stdout*, if any."""
    m = _MARKER_RE.search(stdout)
    if m and m.group(1).strip():
        return m.group(1).strip()
    m = _LEGACY_MARKER_RE.search(stdout)
    if m and m.group(1).strip():
        return m.group(1).strip()
    return None


def find_artifact(
    project_dir: str | Path,
    *,
    output_dir: str = DEFAULT_OUTPUT_DIR,
    extension: str = ARCHIVE_EXTENSION,
    include_intermediate: bool = False,
) -> Path | None:
    """Return the first archive under ``project_dir/output_dir``.

    Files whose name contains ``"original"`` (the shade plugin's
    unshaded copy) are skipped unless *include_intermediate* is set.
    """
    search_root = Path(project_dir) / output_dir
    if not search_root.is_dir():
        return None

    for dirpath, dirnames, filenames in os.walk(search_root):
        dirnames.sort()
        for fname in sorted(filenames):
            if not fname.endswith(extension):
                continue
            if not include_intermediate and INTERMEDIATE_MARKER in fname:
                continue
            return Path(dirpath) / fname
    return None


def locate_artifact(
    project_dir: str | Path,
    stdout: str,
    *,
    include_intermediate: bool = False,
) -> str | None:
    """Resolve the build artifact: marker first, directory scan second.

    A relative marker path is taken relative to *project_dir*.  A marker
    pointing at a file that does not exist is ignored.
    """
    project = Path(project_dir)
    announced = parse_artifact_marker(stdout)
    if announced:
        candidate = Path(announced)
        if not candidate.is_absolute():
            candidate = project / candidate
        if candidate.is_file():
            return str(candidate.resolve())

    found = find_artifact(project, include_intermediate=include_intermediate)
    return str(found.resolve()) if found else None
