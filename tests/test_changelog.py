"""Tests for monoplan.changelog."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone

import pytest

from monoplan.changelog import render_changelog, render_step
from monoplan.errors import ChangesetError
from monoplan.graph import DependencyGraph, build_graph
from monoplan.models import BumpKind, Changeset, VersionPlanStep, Workspace
from monoplan.planner import plan_versions

MakeWorkspace = Callable[[dict], Workspace]

RELEASED = date(2026, 10, 16)


def make_changeset(changeset_id: str, package: str, bump: str, description: str, author: str) -> Changeset:
    return Changeset(
        id=changeset_id,
        package=package,
        bump=BumpKind(bump),
        description=description,
        author=author,
        created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def graph(make_workspace: MakeWorkspace) -> DependencyGraph:
    """app → core through ^1.0.0, plus an unrelated docs package."""
    return build_graph(
        make_workspace(
            {
                "app": ("1.0.0", {"core": "^1.0.0"}),
                "core": ("1.0.0", {}),
                "docs": ("1.0.0", {}),
            }
        )
    )


class TestRenderChangelog:
    """Tests for render_changelog()."""

    def test_changeset_entries_and_dependencies(self, graph: DependencyGraph) -> None:
        changesets = [
            make_changeset("0001", "core", "major", "Drop the callback API", "alice"),
            make_changeset("0002", "core", "patch", "Fix a leak\n\nLong explanation.", "bob"),
        ]
        plan = plan_versions(graph, changesets)
        rendered = render_changelog(plan, changesets, graph, RELEASED)

        assert list(rendered) == ["core", "app"]
        assert rendered["core"] == (
            "## [2.0.0] - 2026-10-16\n"
            "\n"
            "### Changed\n"
            "\n"
            "- **BREAKING**: Drop the callback API (alice)\n"
            "\n"
            "### Fixed\n"
            "\n"
            "- Fix a leak (bob)\n"
        )
        assert rendered["app"] == (
            "## [2.0.0] - 2026-10-16\n"
            "\n"
            "### Dependencies\n"
            "\n"
            "- core@2.0.0\n"
        )

    def test_minor_goes_under_added(self, graph: DependencyGraph) -> None:
        changesets = [make_changeset("0001", "docs", "minor", "Add a search page", "carol")]
        plan = plan_versions(graph, changesets)
        text = render_changelog(plan, changesets, graph, RELEASED)["docs"]
        assert "### Added\n\n- Add a search page (carol)\n" in text

    def test_unknown_changeset_id(self, graph: DependencyGraph) -> None:
        changesets = [make_changeset("0001", "docs", "patch", "Fix", "me")]
        plan = plan_versions(graph, changesets)
        with pytest.raises(ChangesetError, match="No changeset with id 0001"):
            render_changelog(plan, [], graph, RELEASED)


class TestRenderStep:
    def test_version_bump_only(self) -> None:
        step = VersionPlanStep(
            package="docs", current_version="1.0.0", new_version="1.0.1", bump=BumpKind.PATCH
        )
        assert render_step(step, {}, released=RELEASED) == (
            "## [1.0.1] - 2026-10-16\n\n- Version bump only\n"
        )
