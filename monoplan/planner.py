"""Version planning.

Turns pending changesets (and optionally a change attribution) into an
ordered :class:`VersionPlan`:

1. Aggregate: merge the bumps of all changesets targeting the same package.
2. Propagate: push bumps from each dependency to its consumers, under the
   configured propagation policy, until nothing changes.
3. Synthesize: compute each planned package's new version.
4. Edit: rewrite every consumer range that no longer admits a new version.
5. Order: dependencies before dependents, ties alphabetical.

Planning fails with a :class:`PlanningError` when a package mixes snapshot
and release bumps, when a planned package sits on a dependency cycle, or
when a consumer range cannot be widened to admit a new version.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .changesets import applies_to
from .config import ConflictMode, EngineConfig, PropagationPolicy
from .errors import ChangesetError, PlanningError
from .graph import DependencyGraph
from .models import (
    BumpKind,
    ChangeAttribution,
    Changeset,
    ChangesetStatus,
    Conflict,
    ConflictKind,
    DependencyEdge,
    ManifestEdit,
    VersionPlan,
    VersionPlanStep,
)
from .ranges import InvalidRangeError, RangeWidenError, range_admits, widen_range
from .versions import DEFAULT_SNAPSHOT_TEMPLATE, bump_version, parse_version


class MixedSnapshotError(ValueError):
    """A snapshot bump met a release bump on the same package."""


def merge_bumps(a: BumpKind, b: BumpKind) -> BumpKind:
    """Combine two bumps for the same package: the larger one wins.

    ``none`` combines with anything. ``snapshot`` combines only with
    ``none`` and itself.

    Raises:
        MixedSnapshotError: If exactly one side is a snapshot and the other
            is a release bump.
    """
    if a is b:
        return a
    if BumpKind.SNAPSHOT in (a, b):
        other = b if a is BumpKind.SNAPSHOT else a
        if other is BumpKind.NONE:
            return BumpKind.SNAPSHOT
        raise MixedSnapshotError(f"cannot combine snapshot with {other.value}")
    return a if a.rank >= b.rank else b


def cap_bump(kind: BumpKind, cap: BumpKind) -> BumpKind:
    """Return the smaller of two release bumps."""
    return kind if kind.rank <= cap.rank else cap


@dataclass(frozen=True)
class VersioningStrategy:
    """How bumps combine, propagate and render.

    Attributes:
        propagation: What consumers receive when a dependency moves.
        snapshot_template: Rendering of snapshot versions.
        merge: Combines two bumps on one package.
    """

    propagation: PropagationPolicy = PropagationPolicy.DEFAULT
    snapshot_template: str = DEFAULT_SNAPSHOT_TEMPLATE
    merge: Callable[[BumpKind, BumpKind], BumpKind] = merge_bumps

    @classmethod
    def from_config(cls, config: EngineConfig) -> VersioningStrategy:
        return cls(propagation=config.propagation, snapshot_template=config.snapshot_template)


class VersionPlanner:
    """Builds version plans for one dependency graph.

    Args:
        graph: The workspace dependency graph.
        config: Engine configuration (edge propagation, conflict mode,
            default bump).
        strategy: Overrides the strategy derived from ``config``.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        config: EngineConfig | None = None,
        strategy: VersioningStrategy | None = None,
    ) -> None:
        self.graph = graph
        self.config = config or EngineConfig()
        self.strategy = strategy or VersioningStrategy.from_config(self.config)

    def plan(
        self,
        changesets: Iterable[Changeset],
        attribution: ChangeAttribution | None = None,
        *,
        revision: str | None = None,
        timestamp: int | None = None,
        environment: str | None = None,
    ) -> VersionPlan:
        """Build a plan.

        Args:
            changesets: Changesets to consider; only pending ones count.
            attribution: Packages touched without a changeset get the
                default bump (capped by their files' suggestion).
            revision: Revision identifier for snapshot versions.
            timestamp: Unix seconds for snapshot versions (default: now).
            environment: Only consider changesets targeting this environment.

        Raises:
            ChangesetError: If a changeset targets a non-member package.
            PlanningError: On any conflict; carries every conflict in
                collect-all mode, the first one otherwise.
        """
        run = _PlanRun(self, revision, timestamp)
        run.aggregate(changesets, environment)
        if attribution is not None:
            run.add_attributed(attribution)
        run.propagate()
        run.check_cycles()
        versions = run.synthesize()
        steps = run.build_steps(versions)
        run.finish()
        return VersionPlan(steps=steps)


class _PlanRun:
    """State of a single :meth:`VersionPlanner.plan` call."""

    def __init__(self, planner: VersionPlanner, revision: str | None, timestamp: int | None) -> None:
        self.graph = planner.graph
        self.config = planner.config
        self.strategy = planner.strategy
        self.revision = revision
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self.planned: dict[str, BumpKind] = {}
        self.sources: dict[str, list[str]] = {}
        self.blocked: set[str] = set()
        self.conflicts: list[Conflict] = []

    def report(self, kind: ConflictKind, message: str, packages: Iterable[str]) -> None:
        conflict = Conflict(kind=kind, message=message, packages=tuple(sorted(set(packages))))
        if self.config.conflict_mode is ConflictMode.FIRST:
            raise PlanningError(message, conflicts=[conflict])
        self.conflicts.append(conflict)

    def finish(self) -> None:
        if self.conflicts:
            count = len(self.conflicts)
            raise PlanningError(
                f"{count} conflict{'s' if count != 1 else ''} prevent planning: "
                + "; ".join(c.message for c in self.conflicts),
                conflicts=self.conflicts,
            )

    def _merge(self, name: str, kind: BumpKind, source: str) -> bool:
        """Merge ``kind`` into ``name``'s entry; return True if it changed."""
        if name in self.blocked or kind is BumpKind.NONE:
            return False
        current = self.planned.get(name, BumpKind.NONE)
        try:
            merged = self.strategy.merge(current, kind)
        except MixedSnapshotError:
            self.blocked.add(name)
            self.planned.pop(name, None)
            message = f"{name} has both snapshot and release bumps"
            if source != name:
                message += f" (propagated from {source})"
            self.report(ConflictKind.MIXED_SNAPSHOT, message, {name, source})
            return False
        if merged is current:
            return False
        self.planned[name] = merged
        return True

    def aggregate(self, changesets: Iterable[Changeset], environment: str | None) -> None:
        selected = [
            cs
            for cs in changesets
            if cs.status is ChangesetStatus.PENDING
            and (environment is None or applies_to(cs, environment))
        ]
        unknown = sorted({cs.package for cs in selected if cs.package not in self.graph})
        if unknown:
            raise ChangesetError(
                f"Changesets target unknown packages: {', '.join(unknown)}", packages=unknown
            )
        for cs in sorted(selected, key=lambda c: c.id):
            self._merge(cs.package, cs.bump, cs.package)
            self.sources.setdefault(cs.package, []).append(cs.id)

    def add_attributed(self, attribution: ChangeAttribution) -> None:
        for name in attribution.directly_affected:
            if self.planned.get(name) is BumpKind.SNAPSHOT or name not in self.graph:
                continue
            cap = attribution.max_bump_suggestion.get(name, BumpKind.MAJOR)
            self._merge(name, cap_bump(self.config.default_bump, cap), name)

    def _new_version(self, name: str, kind: BumpKind) -> str:
        return bump_version(self.graph.version(name), kind)

    def consumer_bump(self, edge: DependencyEdge, kind: BumpKind) -> BumpKind:
        """The bump ``edge``'s consumer receives when its dependency gets ``kind``."""
        if kind is BumpKind.SNAPSHOT:
            return BumpKind.SNAPSHOT
        dependency = edge.to_package
        admits = range_admits(edge.range, self._new_version(dependency, kind))
        if not self.config.propagates(edge.kind):
            return BumpKind.NONE if admits else BumpKind.PATCH

        policy = self.strategy.propagation
        if policy is PropagationPolicy.CONSERVATIVE:
            return BumpKind.PATCH
        if policy is PropagationPolicy.AGGRESSIVE:
            return kind
        if admits:
            return BumpKind.PATCH
        # Below 1.0.0 a minor bump is breaking.
        effective = kind
        if kind is BumpKind.MINOR and parse_version(self.graph.version(dependency)).major == 0:
            effective = BumpKind.MAJOR
        return BumpKind.MAJOR if effective is BumpKind.MAJOR else BumpKind.MINOR

    def propagate(self) -> None:
        order = self.graph.propagation_order()
        changed = True
        while changed:
            changed = False
            for dependency in order:
                kind = self.planned.get(dependency)
                if kind is None:
                    continue
                for edge in self.graph.edges_to(dependency):
                    consumer = edge.from_package
                    if consumer == dependency:
                        continue
                    if self._merge(consumer, self.consumer_bump(edge, kind), dependency):
                        changed = True

    def check_cycles(self) -> None:
        for cycle in self.graph.cycles:
            touched = [n for n in cycle if n in self.planned]
            if touched:
                self.report(
                    ConflictKind.CYCLE_PREVENTS_ORDERING,
                    f"Dependency cycle {' -> '.join(cycle + cycle[:1])} includes planned "
                    f"package(s) {', '.join(touched)}",
                    cycle,
                )

    def synthesize(self) -> dict[str, str]:
        versions: dict[str, str] = {}
        for name in sorted(self.planned):
            kind = self.planned[name]
            if kind is BumpKind.SNAPSHOT and not self.revision:
                raise PlanningError(
                    f"Snapshot bump for {name} needs a revision identifier", conflicts=()
                )
            try:
                versions[name] = bump_version(
                    self.graph.version(name),
                    kind,
                    template=self.strategy.snapshot_template,
                    sha=self.revision,
                    timestamp=self.timestamp,
                )
            except ValueError as e:
                raise PlanningError(f"Cannot compute a version for {name}: {e}", causes=[e]) from e
        return versions

    def range_edits(self, name: str, new_version: str) -> list[ManifestEdit]:
        edits: list[ManifestEdit] = []
        for edge in self.graph.edges_to(name):
            consumer = edge.from_package
            if consumer == name or range_admits(edge.range, new_version):
                continue
            try:
                widened = widen_range(edge.range, new_version)
            except (RangeWidenError, InvalidRangeError) as e:
                self.report(
                    ConflictKind.INCOMPATIBLE_RANGE,
                    f"{consumer} requires {name}@{edge.range!r}, which cannot be widened "
                    f"to admit {new_version}: {e}",
                    [consumer, name],
                )
                continue
            edits.append(
                ManifestEdit(
                    package=consumer,
                    manifest_path=self.graph.package(consumer).manifest_path,
                    field=edge.kind.manifest_field,
                    dependency=name,
                    old=edge.range,
                    new=widened,
                )
            )
        return sorted(edits, key=lambda e: (e.package, e.field))

    def build_steps(self, versions: dict[str, str]) -> tuple[VersionPlanStep, ...]:
        steps: dict[str, VersionPlanStep] = {}
        for name, new_version in versions.items():
            pkg = self.graph.package(name)
            own = ManifestEdit(
                package=name,
                manifest_path=pkg.manifest_path,
                field="version",
                old=pkg.version,
                new=new_version,
            )
            steps[name] = VersionPlanStep(
                package=name,
                current_version=pkg.version,
                new_version=new_version,
                bump=self.planned[name],
                edits=(own, *self.range_edits(name, new_version)),
                changesets=tuple(self.sources.get(name, ())),
            )
        if self.conflicts:
            return ()
        return tuple(steps[n] for n in self.graph.topo_order(steps))


def plan_versions(
    graph: DependencyGraph,
    changesets: Iterable[Changeset],
    attribution: ChangeAttribution | None = None,
    *,
    config: EngineConfig | None = None,
    strategy: VersioningStrategy | None = None,
    revision: str | None = None,
    timestamp: int | None = None,
    environment: str | None = None,
) -> VersionPlan:
    """Shorthand for ``VersionPlanner(graph, config, strategy).plan(...)``."""
    return VersionPlanner(graph, config, strategy).plan(
        changesets,
        attribution,
        revision=revision,
        timestamp=timestamp,
        environment=environment,
    )
