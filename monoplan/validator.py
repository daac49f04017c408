"""Workspace and plan validation.

Runs every check and returns all issues at once; nothing here raises on a
failed check. An ``error`` issue blocks executing a plan, a ``warning``
does not. Per-category severities can be overridden in the configuration.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from .config import EngineConfig
from .errors import ValidationError
from .globs import glob_match
from .graph import DependencyGraph
from .models import BumpKind, Changeset, Severity, ValidationIssue, VersionPlan, Workspace
from .ranges import range_admits
from .versions import compare_versions

PATTERN_COVERAGE = "pattern_coverage"
CYCLE = "cycle"
VERSION_MONOTONICITY = "version_monotonicity"
INCOMPATIBLE_RANGE = "incompatible_range"
EXTERNAL_DUPLICATION = "external_duplication"
UNKNOWN_PACKAGE = "unknown_package"
UNKNOWN_ENVIRONMENT = "unknown_environment"


class Validator:
    """Checks a workspace, its graph and optionally a plan."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def _issue(
        self, category: str, default: Severity, message: str, packages: Iterable[str] = ()
    ) -> ValidationIssue:
        return ValidationIssue(
            severity=self.config.severity_for(category, default),
            category=category,
            message=message,
            packages=tuple(sorted(set(packages))),
        )

    def validate(
        self,
        workspace: Workspace,
        graph: DependencyGraph,
        plan: VersionPlan | None = None,
        changesets: Iterable[Changeset] | None = None,
    ) -> list[ValidationIssue]:
        """Run every check.

        Returns:
            All issues, grouped by check in a fixed order.
        """
        issues: list[ValidationIssue] = []
        issues += self.check_pattern_coverage(workspace)
        issues += self.check_cycles(graph)
        if plan is not None:
            issues += self.check_monotonicity(plan)
        issues += self.check_ranges(graph, plan)
        issues += self.check_external_duplication(graph)
        if changesets is not None:
            issues += self.check_changesets(workspace, list(changesets))
        return issues

    def check_pattern_coverage(self, workspace: Workspace) -> list[ValidationIssue]:
        issues = []
        for pkg in workspace.packages:
            if not any(glob_match(p, pkg.path) for p in workspace.patterns):
                issues.append(
                    self._issue(
                        PATTERN_COVERAGE,
                        Severity.ERROR,
                        f"{pkg.name} ({pkg.path}) is not matched by any workspace pattern",
                        [pkg.name],
                    )
                )
        for orphan in workspace.orphans:
            issues.append(
                self._issue(
                    PATTERN_COVERAGE,
                    Severity.ERROR,
                    f"{orphan} has a manifest but is outside every workspace pattern",
                )
            )
        return issues

    def check_cycles(self, graph: DependencyGraph) -> list[ValidationIssue]:
        return [
            self._issue(
                CYCLE,
                Severity.ERROR,
                f"Dependency cycle: {' -> '.join(cycle + cycle[:1])}",
                cycle,
            )
            for cycle in graph.cycles
        ]

    def check_monotonicity(self, plan: VersionPlan) -> list[ValidationIssue]:
        issues = []
        for step in plan.steps:
            # Snapshots render a prerelease of the current version.
            if step.bump is BumpKind.SNAPSHOT:
                continue
            if compare_versions(step.new_version, step.current_version) <= 0:
                issues.append(
                    self._issue(
                        VERSION_MONOTONICITY,
                        Severity.ERROR,
                        f"{step.package}: new version {step.new_version} is not greater "
                        f"than {step.current_version}",
                        [step.package],
                    )
                )
        return issues

    def check_ranges(
        self, graph: DependencyGraph, plan: VersionPlan | None = None
    ) -> list[ValidationIssue]:
        """Every internal edge must admit its dependency's (new) version.

        With a plan, a range rewritten by one of the plan's edits is checked
        in its rewritten form.
        """
        new_versions = plan.new_versions if plan is not None else {}
        rewritten = {
            (e.package, e.field, e.dependency): e.new
            for e in (plan.edits if plan is not None else ())
            if e.dependency is not None
        }
        issues = []
        for edge in graph.edges:
            if edge.from_package == edge.to_package:
                continue
            if plan is not None and edge.to_package not in new_versions:
                continue
            version = new_versions.get(edge.to_package, graph.version(edge.to_package))
            declared = rewritten.get(
                (edge.from_package, edge.kind.manifest_field, edge.to_package), edge.range
            )
            if not range_admits(declared, version):
                issues.append(
                    self._issue(
                        INCOMPATIBLE_RANGE,
                        Severity.ERROR,
                        f"{edge.from_package} requires {edge.to_package}@{declared!r}, "
                        f"which does not admit {version}",
                        [edge.from_package, edge.to_package],
                    )
                )
        return issues

    def check_external_duplication(self, graph: DependencyGraph) -> list[ValidationIssue]:
        ranges: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
        for ref in graph.externals:
            ranges[ref.name][ref.range].append(ref.package)
        issues = []
        for name in sorted(ranges):
            if len(ranges[name]) < 2:
                continue
            detail = ", ".join(
                f"{spec!r} ({', '.join(sorted(set(pkgs)))})" for spec, pkgs in sorted(ranges[name].items())
            )
            issues.append(
                self._issue(
                    EXTERNAL_DUPLICATION,
                    Severity.WARNING,
                    f"External dependency {name} is pinned to different ranges: {detail}",
                    [p for pkgs in ranges[name].values() for p in pkgs],
                )
            )
        return issues

    def check_changesets(
        self, workspace: Workspace, changesets: list[Changeset]
    ) -> list[ValidationIssue]:
        """Changesets must target members and configured environments.

        Environments are only checked when the configuration lists some.
        """
        issues = []
        known_envs = set(self.config.environments)
        for cs in sorted(changesets, key=lambda c: c.id):
            if not workspace.is_internal(cs.package):
                issues.append(
                    self._issue(
                        UNKNOWN_PACKAGE,
                        Severity.ERROR,
                        f"Changeset {cs.id} targets unknown package {cs.package}",
                        [cs.package],
                    )
                )
            unknown = [e for e in cs.environments if known_envs and e not in known_envs]
            if unknown:
                issues.append(
                    self._issue(
                        UNKNOWN_ENVIRONMENT,
                        Severity.WARNING,
                        f"Changeset {cs.id} targets unknown environment(s): {', '.join(unknown)}",
                        [cs.package] if workspace.is_internal(cs.package) else [],
                    )
                )
        return issues


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(i.severity is Severity.ERROR for i in issues)


def raise_for_errors(issues: list[ValidationIssue]) -> None:
    """Raise :class:`ValidationError` if any issue is an error."""
    errors = [i for i in issues if i.severity is Severity.ERROR]
    if errors:
        raise ValidationError(
            f"Validation failed with {len(errors)} error(s): " + "; ".join(i.message for i in errors),
            issues=issues,
        )


def validate(
    workspace: Workspace,
    graph: DependencyGraph,
    plan: VersionPlan | None = None,
    *,
    config: EngineConfig | None = None,
    changesets: Iterable[Changeset] | None = None,
) -> list[ValidationIssue]:
    return Validator(config).validate(workspace, graph, plan, changesets)
