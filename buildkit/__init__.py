"""Build toolchain layer -- materialize, build, diagnose.

Public API
----------
Contracts (Pydantic models)::

    FileSet, BuildOutcome, DiagnosticPayload,
    validate_fileset, check_relative_path,

Errors::

    BuildKitError, SandboxViolation, MaterializationError,
    CollectionError, BuildTimeout,

Materializer::

    materialize, read_fileset, resolve_within

Runner::

    run_build, build_command, DEGRADED_ARGS

Artifacts::

    locate_artifact, find_artifact, parse_artifact_marker

Diagnostics::

    collect_diagnostics, enumerate_sources

Log parser::

    summarise_maven, format_summary, BuildSummary, BuildIssue
"""

from buildkit.artifacts import find_artifact, locate_artifact, parse_artifact_marker
from buildkit.contracts import (
    BuildOutcome,
    DiagnosticPayload,
    FileSet,
    check_relative_path,
    validate_fileset,
)
from buildkit.diagnostics import collect_diagnostics, enumerate_sources
from buildkit.errors import (
    BuildKitError,
    BuildTimeout,
    CollectionError,
    MaterializationError,
    SandboxViolation,
)
from buildkit.log_parser import BuildIssue, BuildSummary, format_summary, summarise_maven
from buildkit.materializer import materialize, read_fileset, resolve_within
from buildkit.runner import DEGRADED_ARGS, build_command, run_build

__all__ = [
    # contracts
    "BuildOutcome",
    "DiagnosticPayload",
    "FileSet",
    "check_relative_path",
    "validate_fileset",
    # errors
    "BuildKitError",
    "BuildTimeout",
    "CollectionError",
    "MaterializationError",
    "SandboxViolation",
    # materializer
    "materialize",
    "read_fileset",
    "resolve_within",
    # runner
    "DEGRADED_ARGS",
    "build_command",
    "run_build",
    # artifacts
    "find_artifact",
    "locate_artifact",
    "parse_artifact_marker",
    # diagnostics
    "collect_diagnostics",
    "enumerate_sources",
    # log parser
    "BuildIssue",
    "BuildSummary",
    "format_summary",
    "summarise_maven",
]
