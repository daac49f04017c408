"""Data models for monoplan.

These Pydantic models represent the core data structures passed between
discovery, attribution, planning and validation. Everything that leaves a
component is frozen: callers inspect results, they never patch them.

Set-valued fields are stored as sorted tuples so that serializing the same
result twice produces identical bytes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BumpKind(str, Enum):
    """How a package version moves.

    ``none < patch < minor < major`` is a total order. ``snapshot`` sits
    outside that order: it renders a prerelease version and cannot be
    combined with any other kind on the same package.
    """

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"
    SNAPSHOT = "snapshot"

    @property
    def rank(self) -> int:
        """Position in the ``none < patch < minor < major`` order.

        Raises:
            ValueError: For ``snapshot``, which has no rank.
        """
        if self is BumpKind.SNAPSHOT:
            raise ValueError("snapshot bumps are not ordered")
        return _BUMP_RANK[self]


_BUMP_RANK = {
    BumpKind.NONE: 0,
    BumpKind.PATCH: 1,
    BumpKind.MINOR: 2,
    BumpKind.MAJOR: 3,
}


class EdgeKind(str, Enum):
    """Which manifest map declared a dependency."""

    RUNTIME = "runtime"
    DEVELOPMENT = "development"
    PEER = "peer"
    OPTIONAL = "optional"

    @property
    def manifest_field(self) -> str:
        """The package.json key holding dependencies of this kind."""
        return _MANIFEST_FIELDS[self]


_MANIFEST_FIELDS = {
    EdgeKind.RUNTIME: "dependencies",
    EdgeKind.DEVELOPMENT: "devDependencies",
    EdgeKind.PEER: "peerDependencies",
    EdgeKind.OPTIONAL: "optionalDependencies",
}


class ChangesetStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    DISCARDED = "discarded"


class ChangeKind(str, Enum):
    """Modification kind reported by the version-control provider."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class FileCategory(str, Enum):
    SOURCE = "source"
    TEST = "test"
    DOCS = "docs"
    CONFIG = "config"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class ConflictKind(str, Enum):
    """Reasons a version plan cannot be built."""

    MIXED_SNAPSHOT = "mixed_snapshot"
    CYCLE_PREVENTS_ORDERING = "cycle_prevents_ordering"
    INCOMPATIBLE_RANGE = "incompatible_range"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DependencyEdge(_Frozen):
    """A single declared dependency of an internal package.

    Attributes:
        from_package: Name of the declaring (always internal) package.
        to_package: Name of the dependency target. For path aliases this is
            the ``name`` of the manifest found at the aliased path.
        range: The declared range expression, verbatim.
        kind: Which dependency map declared it.
    """

    from_package: str
    to_package: str
    range: str
    kind: EdgeKind = EdgeKind.RUNTIME


class ExternalReference(_Frozen):
    """A dependency on a package that is not a workspace member."""

    name: str
    package: str
    range: str
    kind: EdgeKind


class Package(_Frozen):
    """Metadata for a single package in the workspace.

    Attributes:
        name: Declared package name, unique within the workspace.
        version: Current version string from package.json.
        path: Relative POSIX path from workspace root to the package
              directory. Used for file-to-package attribution.
        root: Absolute package directory.
        manifest_path: Absolute path of the package's package.json.
        private: Whether the manifest is marked ``"private": true``.
        dependencies: Every declared dependency, internal or external.
    """

    name: str
    version: str
    path: str
    root: Path
    manifest_path: Path
    private: bool = False
    dependencies: tuple[DependencyEdge, ...] = ()


class Workspace(_Frozen):
    """A snapshot of a discovered workspace.

    Attributes:
        root: Absolute workspace root.
        root_manifest: Absolute path of the root package.json.
        patterns: Glob patterns the members were discovered with.
        packages: Internal packages, sorted by name.
        orphans: Relative directories holding a package.json that no
                 pattern covers.
    """

    root: Path
    root_manifest: Path
    patterns: tuple[str, ...] = ()
    packages: tuple[Package, ...] = ()
    orphans: tuple[str, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.packages)

    def get(self, name: str) -> Package | None:
        """Return the internal package called ``name``, if any."""
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        return None

    def is_internal(self, name: str) -> bool:
        return self.get(name) is not None

    @property
    def declared_dependencies(self) -> tuple[str, ...]:
        """Every dependency name declared by any internal package."""
        return tuple(sorted({e.to_package for p in self.packages for e in p.dependencies}))


class Changeset(_Frozen):
    """A user-authored intent to bump one package."""

    id: str
    package: str
    bump: BumpKind
    description: str
    author: str
    created_at: datetime
    environments: tuple[str, ...] = ()
    status: ChangesetStatus = ChangesetStatus.PENDING
    production_deployment: bool = False


class FileChange(_Frozen):
    """One entry of a version-control diff."""

    path: str
    kind: ChangeKind = ChangeKind.MODIFIED
    staged: bool = False
    previous_path: str | None = None


class FileAttribution(_Frozen):
    """Where a changed file landed and how it was classified."""

    path: str
    package: str | None
    category: FileCategory = FileCategory.SOURCE
    max_bump: BumpKind = BumpKind.MAJOR


class ChangeAttribution(_Frozen):
    """Packages touched by a list of changed files.

    Invariant: ``directly_affected`` is a subset of ``transitively_affected``
    and both hold internal package names only.
    """

    directly_affected: tuple[str, ...] = ()
    transitively_affected: tuple[str, ...] = ()
    root_level_files: tuple[str, ...] = ()
    files: tuple[FileAttribution, ...] = ()
    max_bump_suggestion: dict[str, BumpKind] = Field(default_factory=dict)
    significance: dict[str, int] = Field(default_factory=dict)


class ManifestEdit(_Frozen):
    """A single field rewrite in one package.json.

    ``field`` is ``"version"`` for the package's own version, otherwise the
    dependency map holding ``dependency``.
    """

    package: str
    manifest_path: Path
    field: str
    dependency: str | None = None
    old: str
    new: str


class VersionPlanStep(_Frozen):
    """One package's version update.

    Attributes:
        edits: The package's own version edit first, then the range edits
            in its consumers' manifests.
        changesets: Ids of the changesets that asked for this bump, oldest
            first. Empty for packages bumped only by propagation or
            attribution.
    """

    package: str
    current_version: str
    new_version: str
    bump: BumpKind
    edits: tuple[ManifestEdit, ...] = ()
    changesets: tuple[str, ...] = ()


class VersionPlan(_Frozen):
    """Ordered version updates: dependencies always precede dependents."""

    steps: tuple[VersionPlanStep, ...] = ()

    @property
    def packages(self) -> tuple[str, ...]:
        return tuple(s.package for s in self.steps)

    def step_for(self, name: str) -> VersionPlanStep | None:
        for s in self.steps:
            if s.package == name:
                return s
        return None

    @property
    def new_versions(self) -> dict[str, str]:
        return {s.package: s.new_version for s in self.steps}

    @property
    def edits(self) -> tuple[ManifestEdit, ...]:
        return tuple(e for s in self.steps for e in s.edits)


class ValidationIssue(_Frozen):
    """A diagnostic: severity, category, message and affected packages."""

    severity: Severity
    category: str
    message: str
    packages: tuple[str, ...] = ()


class Conflict(_Frozen):
    """Why the planner refused to produce a plan."""

    kind: ConflictKind
    message: str
    packages: tuple[str, ...] = ()
