"""Change attribution: which packages does a diff touch?

A changed file belongs to the package whose directory is the longest prefix
of its path. Packages that depend on a touched package, directly or
transitively, are affected too. Files outside every package are
"root-level"; by default they touch nothing.

Each file is also classified (source, test, docs, config) by the configured
file filters. The attributor only annotates: the planner decides what a
docs-only change is worth.
"""

from __future__ import annotations

from collections.abc import Iterable

from .config import EngineConfig
from .errors import AttributionError
from .globs import glob_match
from .graph import DependencyGraph
from .models import (
    BumpKind,
    ChangeAttribution,
    ChangeKind,
    FileAttribution,
    FileCategory,
    FileChange,
    Workspace,
)


def normalize_path(path: str) -> str:
    path = path.replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


def changed_paths(changes: Iterable[str | FileChange]) -> list[str]:
    """Flatten changes into sorted, de-duplicated paths.

    A rename contributes both its old and its new path.
    """
    paths: set[str] = set()
    for change in changes:
        if isinstance(change, FileChange):
            paths.add(normalize_path(change.path))
            if change.kind is ChangeKind.RENAMED and change.previous_path:
                paths.add(normalize_path(change.previous_path))
        else:
            paths.add(normalize_path(change))
    paths.discard("")
    return sorted(paths)


def find_owner(workspace: Workspace, path: str) -> str | None:
    """Return the package whose directory is the longest prefix of ``path``."""
    best: str | None = None
    best_len = -1
    for pkg in workspace.packages:
        if (path == pkg.path or path.startswith(pkg.path + "/")) and len(pkg.path) > best_len:
            best, best_len = pkg.name, len(pkg.path)
    return best


def classify(path: str, config: EngineConfig) -> tuple[FileCategory, BumpKind]:
    """Return (category, max bump) from the first filter matching ``path``.

    ``path`` is relative to the owning package, or to the root for files
    outside every package.
    """
    for f in config.file_filters:
        if glob_match(f.pattern, path):
            return f.category, f.max_bump
    return FileCategory.SOURCE, BumpKind.MAJOR


def attribute_changes(
    workspace: Workspace,
    graph: DependencyGraph,
    changes: Iterable[str | FileChange],
    config: EngineConfig | None = None,
) -> ChangeAttribution:
    """Map changed files to directly and transitively affected packages.

    Args:
        workspace: The discovered workspace.
        graph: Its dependency graph.
        changes: Workspace-relative paths or VCS change records.
        config: Supplies file filters and the root-level policy.

    Returns:
        The attribution; every name in it is an internal package.

    Raises:
        AttributionError: Under ``strict_attribution``, when files sit
            outside every package and ``root_level_propagation`` is off.
    """
    config = config or EngineConfig()
    files: list[FileAttribution] = []
    root_level: list[str] = []
    direct: set[str] = set()
    suggestion: dict[str, BumpKind] = {}
    significance: dict[str, int] = {}

    def annotate(pkg: str, category: FileCategory, cap: BumpKind) -> None:
        if pkg not in suggestion or cap.rank > suggestion[pkg].rank:
            suggestion[pkg] = cap
        weight = config.significance.get(category, 0)
        significance[pkg] = max(significance.get(pkg, weight), weight)

    for path in changed_paths(changes):
        owner = find_owner(workspace, path)
        # Filters match the path inside the owning package.
        local = path if owner is None else path[len(graph.package(owner).path) + 1 :]
        category, cap = classify(local, config)
        files.append(FileAttribution(path=path, package=owner, category=category, max_bump=cap))
        if owner is None:
            root_level.append(path)
            continue
        direct.add(owner)
        annotate(owner, category, cap)

    if root_level:
        if config.root_level_propagation:
            # A root-level change (lockfile, shared config) touches everyone.
            for f in files:
                if f.package is None:
                    for pkg in workspace.names:
                        annotate(pkg, f.category, f.max_bump)
            direct.update(workspace.names)
        elif config.strict_attribution:
            raise AttributionError(
                f"Changed files outside every package: {', '.join(root_level)}"
            )

    transitive = graph.reachable_dependents(direct) if direct else ()
    return ChangeAttribution(
        directly_affected=tuple(sorted(direct)),
        transitively_affected=tuple(transitive),
        root_level_files=tuple(root_level),
        files=tuple(files),
        max_bump_suggestion={k: suggestion[k] for k in sorted(suggestion)},
        significance={k: significance[k] for k in sorted(significance)},
    )
