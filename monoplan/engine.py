"""Engine: discover → attribute → plan → validate.

This module wires the components together for one workspace root:

1. Discover the workspace packages and build the dependency graph
2. Attribute a revision range's changed files to packages
3. Read pending changesets and build a version plan
4. Validate the workspace (and the plan, if there is one)

The engine only computes. It never applies a plan: callers take the plan's
manifest edits and write them (see ``manifest.apply_manifest_edits``).

Each phase prints a step header and one line per result. Pass
``verbose=False`` to silence it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import date
from pathlib import Path

from .attribution import attribute_changes
from .cancellation import CancellationToken
from .changelog import render_changelog
from .changesets import ChangesetStore
from .config import EngineConfig, PropagationPolicy
from .graph import DependencyGraph
from .manifest import JsonManifestProvider, ManifestProvider
from .models import (
    BumpKind,
    ChangeAttribution,
    Changeset,
    FileChange,
    ValidationIssue,
    VersionPlan,
    Workspace,
)
from .planner import VersioningStrategy, VersionPlanner
from .providers import AsyncVcsProvider, FileProvider, GitProvider, LocalFileProvider, VcsProvider
from .shell import step
from .validator import Validator
from .workspace import WorkspaceDiscoverer


class Engine:
    """Change-impact and version-planning engine for one workspace.

    Args:
        root: Workspace root directory.
        config: Read once here and never again.
        files: File provider (default: local disk).
        vcs: Version-control provider (default: git in ``root``).
        manifests: Manifest parser (default: package.json).
        token: Cancellation token polled between phases and provider calls.
        verbose: Print progress to stdout.
    """

    def __init__(
        self,
        root: Path,
        config: EngineConfig | None = None,
        *,
        files: FileProvider | None = None,
        vcs: VcsProvider | None = None,
        manifests: ManifestProvider | None = None,
        token: CancellationToken | None = None,
        verbose: bool = True,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config or EngineConfig()
        self.files = files or LocalFileProvider()
        self.vcs = vcs or GitProvider(self.root)
        self.manifests = manifests or JsonManifestProvider()
        self.token = token or CancellationToken()
        self.verbose = verbose
        self._discovered: tuple[Workspace, DependencyGraph] | None = None
        self.changesets = ChangesetStore(
            self.root / self.config.changeset_dir, files=self.files, token=self.token
        )

    def _step(self, msg: str) -> None:
        if self.verbose:
            step(msg)

    def _say(self, msg: str) -> None:
        if self.verbose:
            print(msg)

    def discover(self) -> Workspace:
        """Rescan the workspace, replacing any earlier snapshot."""
        return self._discover()[0]

    def _discover(self) -> tuple[Workspace, DependencyGraph]:
        self._step("Discovering workspace packages")
        self.token.raise_if_cancelled()
        workspace = WorkspaceDiscoverer(
            self.root, self.config, self.files, self.manifests, self.token
        ).discover()
        graph = DependencyGraph(workspace)
        self.token.raise_if_cancelled()

        for name in graph.propagation_order():
            pkg = graph.package(name)
            deps = graph.dependencies(name)
            arrow = f" → [{', '.join(deps)}]" if deps else ""
            self._say(f"  {name} {pkg.version} ({pkg.path}){arrow}")
        for orphan in workspace.orphans:
            self._say(f"  {orphan}: not covered by any workspace pattern")
        for cycle in graph.cycles:
            self._say(f"  cycle: {' -> '.join(cycle + cycle[:1])}")

        self._discovered = (workspace, graph)
        return self._discovered

    @property
    def workspace(self) -> Workspace:
        return (self._discovered or self._discover())[0]

    @property
    def graph(self) -> DependencyGraph:
        return (self._discovered or self._discover())[1]

    def affected(
        self,
        base: str | None = None,
        head: str | None = None,
        changes: Iterable[str | FileChange] | None = None,
    ) -> ChangeAttribution:
        """Attribute changes to packages.

        Args:
            base: Revision to diff from. Ignored when ``changes`` is given.
            head: Revision to diff to (default: working tree and index).
            changes: Explicit changed paths instead of a diff.
        """
        graph = self.graph
        self._step("Detecting changes")
        if changes is None:
            if base is None:
                raise ValueError("either a base revision or explicit changes are required")
            changes = self.vcs.changed_files(base, head)
            self.token.raise_if_cancelled()
        return self._attribute(graph, list(changes))

    def _attribute(
        self, graph: DependencyGraph, changes: list[str | FileChange]
    ) -> ChangeAttribution:
        attribution = attribute_changes(self.workspace, graph, changes, self.config)
        self.token.raise_if_cancelled()
        for name in attribution.transitively_affected:
            if name in attribution.directly_affected:
                self._say(f"  {name}: changed")
            else:
                self._say(f"  {name}: affected (depends on a changed package)")
        if attribution.root_level_files:
            note = "all packages affected" if self.config.root_level_propagation else "ignored"
            self._say(f"  {len(attribution.root_level_files)} root-level file(s): {note}")
        return attribution

    def plan(
        self,
        *,
        policy: PropagationPolicy | None = None,
        revision: str | None = None,
        environment: str | None = None,
        base: str | None = None,
        head: str | None = None,
        changesets: Iterable[Changeset] | None = None,
        timestamp: int | None = None,
    ) -> VersionPlan:
        """Build a version plan from the store's pending changesets.

        Args:
            policy: Overrides the configured propagation policy.
            revision: Snapshot revision; read from version control when a
                snapshot is pending and none is given.
            environment: Only changesets targeting this environment count.
            base: Also give attributed packages changed since ``base`` the
                default bump.
            head: End of the attributed range.
            changesets: Use these instead of the store's pending records.
            timestamp: Snapshot timestamp (default: now).
        """
        graph = self.graph
        pending = (
            list(changesets) if changesets is not None else self.changesets.pending(environment)
        )
        attribution = self.affected(base, head) if base is not None else None

        self._step("Planning versions")
        if revision is None and any(cs.bump is BumpKind.SNAPSHOT for cs in pending):
            revision = self.vcs.current_revision()
            self.token.raise_if_cancelled()

        strategy = VersioningStrategy.from_config(self.config)
        if policy is not None:
            strategy = VersioningStrategy(
                propagation=policy, snapshot_template=strategy.snapshot_template
            )
        plan = VersionPlanner(graph, self.config, strategy).plan(
            pending,
            attribution,
            revision=revision,
            timestamp=timestamp,
            environment=environment,
        )
        self.token.raise_if_cancelled()

        if not plan.steps:
            self._say("  Nothing to release")
        for s in plan.steps:
            self._say(f"  {s.package}: {s.current_version} → {s.new_version} ({s.bump.value})")
            for edit in s.edits[1:]:
                self._say(f"    {edit.package} {edit.field}: {edit.old} → {edit.new}")
        return plan

    def changelog(
        self,
        plan: VersionPlan,
        changesets: Iterable[Changeset] | None = None,
        released: date | None = None,
    ) -> dict[str, str]:
        """Render changelog entries for ``plan``.

        Args:
            plan: A plan built by :meth:`plan`.
            changesets: Records the plan was built from (default: every
                record in the store).
            released: Release date (default: today, UTC).
        """
        if changesets is None:
            changesets = self.changesets.list()
        return render_changelog(plan, changesets, self.graph, released)

    def validate(
        self,
        plan: VersionPlan | None = None,
        changesets: Iterable[Changeset] | None = None,
    ) -> list[ValidationIssue]:
        """Validate the workspace, pending changesets and optionally a plan."""
        graph = self.graph
        if changesets is None:
            changesets = self.changesets.pending()
        self._step("Validating")
        issues = Validator(self.config).validate(self.workspace, graph, plan, changesets)
        self.token.raise_if_cancelled()
        if not issues:
            self._say("  No issues")
        for issue in issues:
            self._say(f"  {issue.severity.value}: [{issue.category}] {issue.message}")
        return issues


class AsyncEngine:
    """Awaitable front end of :class:`Engine`.

    Version-control queries go through :class:`AsyncVcsProvider`; the
    CPU-bound phases and file reads run in a worker thread. Calls are
    awaited one after another, in the order they are issued.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.vcs = AsyncVcsProvider(engine.vcs)

    async def discover(self) -> Workspace:
        return await asyncio.to_thread(self.engine.discover)

    async def affected(
        self,
        base: str | None = None,
        head: str | None = None,
        changes: Iterable[str | FileChange] | None = None,
    ) -> ChangeAttribution:
        if changes is None:
            if base is None:
                raise ValueError("either a base revision or explicit changes are required")
            changes = await self.vcs.changed_files(base, head)
            self.engine.token.raise_if_cancelled()
        return await asyncio.to_thread(self.engine.affected, None, None, list(changes))

    async def plan(self, **kwargs) -> VersionPlan:
        if kwargs.get("revision") is None:
            pending = kwargs.get("changesets")
            if pending is None:
                pending = await asyncio.to_thread(
                    self.engine.changesets.pending, kwargs.get("environment")
                )
            pending = kwargs["changesets"] = list(pending)
            if any(cs.bump is BumpKind.SNAPSHOT for cs in pending):
                kwargs["revision"] = await self.vcs.current_revision()
                self.engine.token.raise_if_cancelled()
        return await asyncio.to_thread(lambda: self.engine.plan(**kwargs))

    async def validate(self, plan: VersionPlan | None = None) -> list[ValidationIssue]:
        return await asyncio.to_thread(self.engine.validate, plan)

    async def changelog(self, plan: VersionPlan, **kwargs) -> dict[str, str]:
        return await asyncio.to_thread(lambda: self.engine.changelog(plan, **kwargs))
