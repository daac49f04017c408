"""Error taxonomy for monoplan.

Every failure the engine propagates is an :class:`EngineError`. The
taxonomy is flat: one subclass per :class:`ErrorKind`. Each error carries a
message, its kind, an optional tuple of causes and the process exit code a
CLI should use for it. ``diagnostics()`` turns any error into the same
``ValidationIssue`` records the validator produces, so callers render one
kind of diagnostic list.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from .models import Conflict, Severity, ValidationIssue


class ErrorKind(str, Enum):
    WORKSPACE = "workspace"
    GRAPH = "graph"
    ATTRIBUTION = "attribution"
    CHANGESET = "changeset"
    PLANNING = "planning"
    VALIDATION = "validation"
    PROVIDER = "provider"
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"


EXIT_SUCCESS = 0
EXIT_VALIDATION = 1
EXIT_CONFIGURATION = 2
EXIT_CONFLICT = 3
EXIT_PROVIDER = 4
EXIT_CANCELLED = 130

EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.WORKSPACE: EXIT_CONFIGURATION,
    ErrorKind.GRAPH: EXIT_VALIDATION,
    ErrorKind.ATTRIBUTION: EXIT_VALIDATION,
    ErrorKind.CHANGESET: EXIT_VALIDATION,
    ErrorKind.PLANNING: EXIT_CONFLICT,
    ErrorKind.VALIDATION: EXIT_VALIDATION,
    ErrorKind.PROVIDER: EXIT_PROVIDER,
    ErrorKind.CONFIGURATION: EXIT_CONFIGURATION,
    ErrorKind.CANCELLED: EXIT_CANCELLED,
}


class EngineError(Exception):
    """Base exception for all monoplan errors.

    Args:
        message: Human-readable description of what went wrong.
        packages: Package names the error is about.
        causes: Underlying exceptions, outermost first.
    """

    kind: ErrorKind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        packages: Iterable[str] = (),
        causes: Iterable[BaseException] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.packages = tuple(sorted(set(packages)))
        self.causes = tuple(causes)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]

    def diagnostics(self) -> list[ValidationIssue]:
        """Render this error as a diagnostic list."""
        return [
            ValidationIssue(
                severity=Severity.ERROR,
                category=self.kind.value,
                message=self.message,
                packages=self.packages,
            )
        ]

    def __str__(self) -> str:
        if not self.causes:
            return self.message
        chain = "; ".join(str(c) for c in self.causes)
        return f"{self.message} (caused by: {chain})"


class WorkspaceErrorKind(str, Enum):
    NO_ROOT_MANIFEST = "no_root_manifest"
    NO_PATTERNS = "no_patterns"
    PATTERN_COVERAGE = "pattern_coverage"
    DUPLICATE_PACKAGE_NAME = "duplicate_package_name"
    MANIFEST_PARSE = "manifest_parse"


class WorkspaceError(EngineError):
    """Workspace discovery failed."""

    kind = ErrorKind.WORKSPACE

    def __init__(
        self,
        reason: WorkspaceErrorKind,
        message: str,
        *,
        packages: Iterable[str] = (),
        causes: Iterable[BaseException] = (),
    ) -> None:
        super().__init__(message, packages=packages, causes=causes)
        self.reason = reason


class GraphError(EngineError):
    """A cycle or dangling reference made a graph operation impossible."""

    kind = ErrorKind.GRAPH


class AttributionError(EngineError):
    """A changed file could not be mapped under strict attribution."""

    kind = ErrorKind.ATTRIBUTION


class ChangesetError(EngineError):
    """An invalid changeset, or a changeset store read/write failure."""

    kind = ErrorKind.CHANGESET


class PlanningError(EngineError):
    """The version plan could not be built.

    Attributes:
        conflicts: Every conflict found. Holds exactly one entry unless the
            planner ran in collect-all mode.
    """

    kind = ErrorKind.PLANNING

    def __init__(
        self,
        message: str,
        *,
        conflicts: Iterable[Conflict] = (),
        causes: Iterable[BaseException] = (),
    ) -> None:
        conflicts = tuple(conflicts)
        packages = {name for c in conflicts for name in c.packages}
        super().__init__(message, packages=packages, causes=causes)
        self.conflicts = conflicts

    def diagnostics(self) -> list[ValidationIssue]:
        if not self.conflicts:
            return super().diagnostics()
        return [
            ValidationIssue(
                severity=Severity.ERROR,
                category=c.kind.value,
                message=c.message,
                packages=c.packages,
            )
            for c in self.conflicts
        ]


class ValidationError(EngineError):
    """Validation produced at least one Error-severity issue."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, issues: Iterable[ValidationIssue] = ()) -> None:
        issues = tuple(issues)
        super().__init__(message, packages={n for i in issues for n in i.packages})
        self.issues = issues

    def diagnostics(self) -> list[ValidationIssue]:
        return list(self.issues) or super().diagnostics()


class ProviderError(EngineError):
    """Underlying file-system or version-control failure."""

    kind = ErrorKind.PROVIDER


class ConfigurationError(EngineError):
    """The configuration record is invalid."""

    kind = ErrorKind.CONFIGURATION


class CancelledError(EngineError):
    """The caller's cancellation signal was observed."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)
