"""Changelog rendering.

Turns a version plan into one Keep a Changelog style entry per step:

    ## [2.0.0] - 2026-10-16

    ### Changed

    - **BREAKING**: Drop the callback API (alice)

    ### Dependencies

    - utils@1.4.0

Entries come from the changesets recorded on each step. Minor bumps land
under "Added", patches under "Fixed", everything else under "Changed". A
step that only moves because of its dependencies lists them instead.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timezone

from .errors import ChangesetError
from .graph import DependencyGraph
from .models import BumpKind, Changeset, VersionPlan, VersionPlanStep

SECTION_ORDER = ("Added", "Changed", "Fixed")
SECTION_FOR_BUMP = {
    BumpKind.MINOR: "Added",
    BumpKind.PATCH: "Fixed",
}


def _entry(changeset: Changeset) -> str:
    summary = changeset.description.splitlines()[0].strip()
    if changeset.bump is BumpKind.MAJOR:
        summary = f"**BREAKING**: {summary}"
    return f"- {summary} ({changeset.author})"


def render_step(
    step: VersionPlanStep,
    changesets: dict[str, Changeset],
    updated_dependencies: Iterable[str] = (),
    released: date | None = None,
) -> str:
    """Render the changelog entry for one plan step.

    Args:
        step: The plan step.
        changesets: Changesets by id; must hold every id on the step.
        updated_dependencies: ``name@version`` of dependencies bumped in the
            same plan.
        released: Release date (default: today, UTC).

    Raises:
        ChangesetError: If a changeset recorded on the step is missing.
    """
    released = released or datetime.now(timezone.utc).date()
    sections: dict[str, list[str]] = {}
    for changeset_id in step.changesets:
        try:
            changeset = changesets[changeset_id]
        except KeyError:
            raise ChangesetError(
                f"No changeset with id {changeset_id}", packages=[step.package]
            ) from None
        title = SECTION_FOR_BUMP.get(changeset.bump, "Changed")
        sections.setdefault(title, []).append(_entry(changeset))

    lines = [f"## [{step.new_version}] - {released.isoformat()}"]
    for title in SECTION_ORDER:
        if title in sections:
            lines += ["", f"### {title}", "", *sections[title]]
    dependencies = list(updated_dependencies)
    if dependencies:
        lines += ["", "### Dependencies", "", *(f"- {d}" for d in dependencies)]
    if not sections and not dependencies:
        lines += ["", "- Version bump only"]
    return "\n".join(lines) + "\n"


def render_changelog(
    plan: VersionPlan,
    changesets: Iterable[Changeset],
    graph: DependencyGraph,
    released: date | None = None,
) -> dict[str, str]:
    """Render a changelog entry for every step of ``plan``.

    Returns:
        Package name → markdown, in plan order.
    """
    by_id = {cs.id: cs for cs in changesets}
    new_versions = plan.new_versions
    rendered: dict[str, str] = {}
    for step in plan.steps:
        updated = [
            f"{dep}@{new_versions[dep]}"
            for dep in graph.dependencies(step.package)
            if dep in new_versions
        ]
        rendered[step.package] = render_step(step, by_id, updated, released)
    return rendered
