"""Tests for monoplan.validator."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from monoplan.config import EngineConfig
from monoplan.errors import ValidationError
from monoplan.graph import build_graph
from monoplan.manifest import JsonManifestProvider, apply_manifest_edits
from monoplan.models import (
    BumpKind,
    Changeset,
    EdgeKind,
    ManifestEdit,
    Severity,
    VersionPlan,
    VersionPlanStep,
    Workspace,
)
from monoplan.planner import plan_versions
from monoplan.validator import (
    CYCLE,
    EXTERNAL_DUPLICATION,
    INCOMPATIBLE_RANGE,
    PATTERN_COVERAGE,
    UNKNOWN_ENVIRONMENT,
    UNKNOWN_PACKAGE,
    VERSION_MONOTONICITY,
    Validator,
    has_errors,
    raise_for_errors,
    validate,
)
from monoplan.workspace import discover_workspace

MakeWorkspace = Callable[[dict], Workspace]


def _changeset(package: str, bump: str, environments: tuple[str, ...] = ()) -> Changeset:
    return Changeset(
        id=f"1700000000000-0000-{package}",
        package=package,
        bump=BumpKind(bump),
        description="change",
        author="me",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        environments=environments,
    )


def _step(package: str, current: str, new: str, bump: BumpKind = BumpKind.PATCH) -> VersionPlanStep:
    return VersionPlanStep(package=package, current_version=current, new_version=new, bump=bump)


class TestWorkspaceChecks:
    def test_clean_workspace(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "^1.0.0"}), "b": ("1.2.0", {})})
        assert validate(ws, build_graph(ws)) == []

    def test_orphans(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {})}).model_copy(update={"orphans": ("tools/x",)})
        [issue] = validate(ws, build_graph(ws))
        assert issue.category == PATTERN_COVERAGE
        assert issue.severity is Severity.ERROR
        assert "tools/x" in issue.message

    def test_severity_override(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {})}).model_copy(update={"orphans": ("tools/x",)})
        config = EngineConfig(severity_overrides={PATTERN_COVERAGE: "warning"})
        issues = validate(ws, build_graph(ws), config=config)
        assert issues[0].severity is Severity.WARNING
        assert not has_errors(issues)

    def test_cycle(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "*"}), "b": ("1.0.0", {"a": "*"})})
        [issue] = validate(ws, build_graph(ws))
        assert issue.category == CYCLE
        assert issue.message == "Dependency cycle: a -> b -> a"
        assert issue.packages == ("a", "b")

    def test_range_not_admitting_current_version(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "^2.0.0"}), "b": ("1.0.0", {})})
        [issue] = validate(ws, build_graph(ws))
        assert issue.category == INCOMPATIBLE_RANGE
        assert issue.packages == ("a", "b")

    def test_external_duplication_is_a_warning(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace(
            {
                "a": ("1.0.0", {"react": "^17.0.0"}),
                "b": ("1.0.0", {"react": ("^18.0.0", EdgeKind.PEER)}),
                "c": ("1.0.0", {"react": "^18.0.0", "lodash": "^4.0.0"}),
            }
        )
        [issue] = validate(ws, build_graph(ws))
        assert issue.category == EXTERNAL_DUPLICATION
        assert issue.severity is Severity.WARNING
        assert issue.packages == ("a", "b", "c")
        assert "react" in issue.message


class TestPlanChecks:
    def test_monotonicity(self) -> None:
        plan = VersionPlan(
            steps=(
                _step("a", "1.0.0", "1.0.0"),
                _step("b", "1.0.0", "1.0.0-snapshot.abc", BumpKind.SNAPSHOT),
            )
        )
        issues = Validator().check_monotonicity(plan)
        assert [(i.category, i.packages) for i in issues] == [(VERSION_MONOTONICITY, ("a",))]

    def test_plan_without_range_edits(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "^1.0.0"}), "b": ("1.0.0", {})})
        plan = VersionPlan(steps=(_step("b", "1.0.0", "2.0.0", BumpKind.MAJOR),))
        [issue] = validate(ws, build_graph(ws), plan)
        assert issue.category == INCOMPATIBLE_RANGE
        assert "does not admit 2.0.0" in issue.message

    def test_rewritten_range_is_used(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "^1.0.0"}), "b": ("1.0.0", {})})
        edit = ManifestEdit(
            package="a",
            manifest_path=ws.packages[0].manifest_path,
            field="dependencies",
            dependency="b",
            old="^1.0.0",
            new="^2.0.0",
        )
        step = _step("b", "1.0.0", "2.0.0", BumpKind.MAJOR).model_copy(update={"edits": (edit,)})
        assert validate(ws, build_graph(ws), VersionPlan(steps=(step,))) == []

    def test_planner_output_validates(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace(
            {
                "app": ("1.0.0", {"core": "~1.0.0", "ui": "^1.0.0"}),
                "ui": ("1.0.0", {"core": "1.x"}),
                "core": ("1.0.0", {}),
            }
        )
        graph = build_graph(ws)
        plan = plan_versions(graph, [_changeset("core", "major")])
        assert validate(ws, graph, plan) == []


class TestChangesetChecks:
    def test_unknown_package(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {})})
        issues = validate(ws, build_graph(ws), changesets=[_changeset("ghost", "patch")])
        assert [i.category for i in issues] == [UNKNOWN_PACKAGE]

    def test_unknown_environment(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {})})
        changesets = [_changeset("a", "patch", ("staging", "qa"))]

        assert validate(ws, build_graph(ws), changesets=changesets) == []

        config = EngineConfig(environments=["staging", "production"])
        [issue] = validate(ws, build_graph(ws), config=config, changesets=changesets)
        assert issue.category == UNKNOWN_ENVIRONMENT
        assert issue.severity is Severity.WARNING
        assert "qa" in issue.message


class TestRaiseForErrors:
    def test_raises_with_all_issues(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"b": "*"}), "b": ("1.0.0", {"a": "*"})})
        issues = validate(ws, build_graph(ws))
        with pytest.raises(ValidationError, match="1 error") as exc_info:
            raise_for_errors(issues)
        assert exc_info.value.diagnostics() == issues

    def test_warnings_pass(self, make_workspace: MakeWorkspace) -> None:
        ws = make_workspace({"a": ("1.0.0", {"x": "^1.0.0"}), "b": ("1.0.0", {"x": "^2.0.0"})})
        issues = validate(ws, build_graph(ws))
        assert issues
        raise_for_errors(issues)


def test_applied_plan_rediscovers_clean(write_workspace: Callable[..., Path]) -> None:
    """Writing a plan's edits to disk yields a workspace that validates."""
    root = write_workspace(
        {
            "packages/core": {"name": "core", "version": "0.4.2"},
            "packages/ui": {
                "name": "ui",
                "version": "1.0.0",
                "dependencies": {"core": "^0.4.0"},
            },
            "packages/app": {
                "name": "app",
                "version": "2.0.0",
                "dependencies": {"ui": "^1.0.0"},
                "peerDependencies": {"core": "~0.4.2"},
            },
        }
    )
    ws = discover_workspace(root)
    plan = plan_versions(build_graph(ws), [_changeset("core", "minor")])

    manifests = JsonManifestProvider()
    by_path: dict[Path, list[ManifestEdit]] = {}
    for edit in plan.edits:
        by_path.setdefault(edit.manifest_path, []).append(edit)
    for path, edits in by_path.items():
        original = path.read_text()
        data = apply_manifest_edits(manifests.parse(original), edits)
        path.write_text(manifests.serialize(data, original))

    rediscovered = discover_workspace(root)
    assert {p.name: p.version for p in rediscovered.packages} == plan.new_versions
    assert validate(rediscovered, build_graph(rediscovered)) == []
