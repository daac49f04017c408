"""Tests for monoplan.errors and the shared models."""

from __future__ import annotations

import pytest

from monoplan.errors import (
    EXIT_CANCELLED,
    EXIT_CONFLICT,
    EXIT_PROVIDER,
    CancelledError,
    ErrorKind,
    PlanningError,
    ProviderError,
    WorkspaceError,
    WorkspaceErrorKind,
)
from monoplan.models import BumpKind, Conflict, ConflictKind, EdgeKind, Severity


class TestEngineError:
    def test_str_includes_causes(self) -> None:
        cause = OSError("disk full")
        err = ProviderError("Cannot write x", causes=[cause])
        assert str(err) == "Cannot write x (caused by: disk full)"
        assert err.exit_code == EXIT_PROVIDER

    def test_packages_are_sorted_and_unique(self) -> None:
        err = WorkspaceError(WorkspaceErrorKind.DUPLICATE_PACKAGE_NAME, "dup", packages=["b", "a", "b"])
        assert err.packages == ("a", "b")
        assert err.reason is WorkspaceErrorKind.DUPLICATE_PACKAGE_NAME

    def test_diagnostics(self) -> None:
        [issue] = ProviderError("boom", packages=["a"]).diagnostics()
        assert issue.severity is Severity.ERROR
        assert issue.category == ErrorKind.PROVIDER.value
        assert issue.packages == ("a",)

    def test_planning_error_lists_conflicts(self) -> None:
        conflicts = [
            Conflict(kind=ConflictKind.MIXED_SNAPSHOT, message="m", packages=("a",)),
            Conflict(kind=ConflictKind.CYCLE_PREVENTS_ORDERING, message="c", packages=("b", "c")),
        ]
        err = PlanningError("2 conflicts", conflicts=conflicts)
        assert err.packages == ("a", "b", "c")
        assert err.exit_code == EXIT_CONFLICT
        assert [d.category for d in err.diagnostics()] == [
            "mixed_snapshot",
            "cycle_prevents_ordering",
        ]

    def test_cancelled(self) -> None:
        err = CancelledError()
        assert err.exit_code == EXIT_CANCELLED
        assert str(err) == "Operation cancelled"


class TestEnums:
    def test_bump_order(self) -> None:
        ranks = [k.rank for k in (BumpKind.NONE, BumpKind.PATCH, BumpKind.MINOR, BumpKind.MAJOR)]
        assert ranks == sorted(ranks)

    def test_snapshot_has_no_rank(self) -> None:
        with pytest.raises(ValueError):
            BumpKind.SNAPSHOT.rank

    def test_manifest_fields(self) -> None:
        assert [k.manifest_field for k in EdgeKind] == [
            "dependencies",
            "devDependencies",
            "peerDependencies",
            "optionalDependencies",
        ]
