"""Workspace discovery.

Finds every member package of a workspace: expands the workspace patterns
against the directory tree, reads each member's package.json and records
its name, version and declared dependencies.

Discovery runs in two passes over the matched manifests: the first pass
collects names and versions, the second resolves dependency declarations
(path aliases such as ``file:../core`` need every member's name to be known
first).
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .cancellation import CancellationToken
from .config import EngineConfig, WorkspacePattern
from .errors import WorkspaceError, WorkspaceErrorKind
from .globs import glob_match, matches_any
from .manifest import (
    MANIFEST_NAME,
    JsonManifestProvider,
    ManifestParseError,
    ManifestProvider,
    dependency_maps,
    workspace_globs,
)
from .models import DependencyEdge, Package, Workspace
from .providers import FileProvider, LocalFileProvider
from .ranges import is_path_alias, path_alias_target
from .versions import is_valid_version

DEFAULT_VERSION = "0.0.0"


@dataclass
class _Candidate:
    path: str
    pattern: int
    data: dict[str, Any]
    name: str = ""
    version: str = DEFAULT_VERSION


def resolve_patterns(config: EngineConfig, root_data: dict[str, Any]) -> tuple[WorkspacePattern, ...]:
    """Return the patterns to discover with.

    Configured patterns win. Otherwise the root manifest's ``workspaces``
    globs are used; ``!``-prefixed entries become excludes on every pattern.

    Raises:
        WorkspaceError: NO_PATTERNS if neither source yields a pattern.
    """
    if config.patterns:
        return config.patterns
    try:
        globs = workspace_globs(root_data)
    except ManifestParseError as e:
        raise WorkspaceError(
            WorkspaceErrorKind.MANIFEST_PARSE, f"Root manifest: {e}", causes=[e]
        ) from e
    negated = tuple(g[1:] for g in globs if g.startswith("!"))
    patterns = tuple(
        WorkspacePattern(pattern=g, exclude=negated) for g in globs if not g.startswith("!")
    )
    if not patterns:
        raise WorkspaceError(
            WorkspaceErrorKind.NO_PATTERNS,
            "No workspace patterns configured and the root manifest has no workspaces",
        )
    return patterns


def pattern_selects(pattern: WorkspacePattern, path: str, via_symlink: bool) -> bool:
    """Whether ``pattern`` claims the package directory at ``path``."""
    if not glob_match(pattern.pattern, path):
        return False
    if pattern.include and not matches_any(pattern.include, path):
        return False
    if pattern.exclude and matches_any(pattern.exclude, path):
        return False
    if pattern.max_depth is not None and len(path.split("/")) > pattern.max_depth:
        return False
    return pattern.follow_symlinks or not via_symlink


def _is_nested(path: str, parents: list[str]) -> bool:
    return any(path.startswith(p + "/") for p in parents)


class WorkspaceDiscoverer:
    """Discovers the member packages of one workspace root.

    Args:
        root: Workspace root directory.
        config: Engine configuration.
        files: File provider for every read.
        manifests: Manifest parser.
        token: Polled after each provider call.
    """

    def __init__(
        self,
        root: Path,
        config: EngineConfig | None = None,
        files: FileProvider | None = None,
        manifests: ManifestProvider | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or EngineConfig()
        self.files = files or LocalFileProvider()
        self.manifests = manifests or JsonManifestProvider()
        self.token = token or CancellationToken()

    def _read_manifest(self, rel: str) -> dict[str, Any]:
        path = self.root / rel / MANIFEST_NAME if rel else self.root / MANIFEST_NAME
        text = self.files.read_text(path)
        self.token.raise_if_cancelled()
        try:
            return self.manifests.parse(text)
        except ManifestParseError as e:
            raise WorkspaceError(
                WorkspaceErrorKind.MANIFEST_PARSE, f"{path}: {e}", causes=[e]
            ) from e

    def discover(self) -> Workspace:
        """Discover the workspace.

        Raises:
            WorkspaceError: See :class:`WorkspaceErrorKind` for the reasons.
            ProviderError: If a file cannot be read.
            CancelledError: If the token is cancelled.
        """
        root_manifest = self.root / MANIFEST_NAME
        if not self.files.exists(root_manifest):
            raise WorkspaceError(
                WorkspaceErrorKind.NO_ROOT_MANIFEST, f"No {MANIFEST_NAME} found at {self.root}"
            )
        self.token.raise_if_cancelled()
        patterns = resolve_patterns(self.config, self._read_manifest(""))

        entries = self.files.walk(self.root, self.config.walk_skip)
        self.token.raise_if_cancelled()

        dir_symlinked = {e.path: e.via_symlink for e in entries if e.is_dir}
        manifest_dirs = sorted(
            posixpath.dirname(e.path)
            for e in entries
            if not e.is_dir and posixpath.basename(e.path) == MANIFEST_NAME and "/" in e.path
        )

        claimed = self._claim(patterns, manifest_dirs, dir_symlinked)
        candidates = self._resolve_names(patterns, claimed)

        # Directories a pattern deliberately filtered out are not orphans.
        member_dirs = sorted(c.path for c in candidates.values())
        orphans = tuple(
            d
            for d in manifest_dirs
            if not any(glob_match(p.pattern, d) for p in patterns)
            and not _is_nested(d, member_dirs)
        )
        if orphans and self.config.strict_coverage:
            raise WorkspaceError(
                WorkspaceErrorKind.PATTERN_COVERAGE,
                f"Manifests outside every workspace pattern: {', '.join(orphans)}",
            )

        packages = self._build_packages(candidates)
        return Workspace(
            root=self.root,
            root_manifest=root_manifest,
            patterns=tuple(p.pattern for p in patterns),
            packages=packages,
            orphans=orphans,
        )

    def _claim(
        self,
        patterns: tuple[WorkspacePattern, ...],
        manifest_dirs: list[str],
        dir_symlinked: dict[str, bool],
    ) -> list[tuple[str, int]]:
        """Match manifest directories to patterns, in pattern priority order.

        A directory matched by several patterns belongs to the first one.
        Directories below an already-claimed package are not members.
        """
        owner: dict[str, int] = {}
        for index, pattern in enumerate(patterns):
            for d in manifest_dirs:
                if d not in owner and pattern_selects(pattern, d, dir_symlinked.get(d, False)):
                    owner[d] = index
        members: list[str] = []
        for d in sorted(owner):
            if not _is_nested(d, members):
                members.append(d)
        return sorted(((d, owner[d]) for d in members), key=lambda c: (c[1], c[0]))

    def _resolve_names(
        self, patterns: tuple[WorkspacePattern, ...], claimed: list[tuple[str, int]]
    ) -> dict[str, _Candidate]:
        """First pass: read names and versions, settling name collisions."""
        by_name: dict[str, _Candidate] = {}
        for path, index in claimed:
            data = self._read_manifest(path)
            cand = _Candidate(path=path, pattern=index, data=data)

            name = data.get("name")
            if not isinstance(name, str) or not name.strip():
                raise WorkspaceError(
                    WorkspaceErrorKind.MANIFEST_PARSE,
                    f"{path}/{MANIFEST_NAME}: missing or empty 'name'",
                )
            cand.name = name
            version = data.get("version", DEFAULT_VERSION)
            if not isinstance(version, str) or not is_valid_version(version):
                raise WorkspaceError(
                    WorkspaceErrorKind.MANIFEST_PARSE,
                    f"{path}/{MANIFEST_NAME}: invalid version {version!r}",
                    packages=[name],
                )
            cand.version = version

            previous = by_name.get(name)
            if previous is not None:
                if index > previous.pattern and patterns[index].override_detection:
                    by_name[name] = cand
                    continue
                raise WorkspaceError(
                    WorkspaceErrorKind.DUPLICATE_PACKAGE_NAME,
                    f"Package name {name!r} is declared by both {previous.path} and {path}",
                    packages=[name],
                )
            by_name[name] = cand
        return by_name

    def _build_packages(self, candidates: dict[str, _Candidate]) -> tuple[Package, ...]:
        """Second pass: turn dependency maps into edges."""
        name_at = {c.path: c.name for c in candidates.values()}
        packages: list[Package] = []
        for name in sorted(candidates):
            cand = candidates[name]
            try:
                maps = list(dependency_maps(cand.data))
            except ManifestParseError as e:
                raise WorkspaceError(
                    WorkspaceErrorKind.MANIFEST_PARSE,
                    f"{cand.path}/{MANIFEST_NAME}: {e}",
                    packages=[name],
                    causes=[e],
                ) from e

            edges: list[DependencyEdge] = []
            for kind, deps in maps:
                for dep_name in sorted(deps):
                    spec = deps[dep_name]
                    target = dep_name
                    if is_path_alias(spec):
                        linked = posixpath.normpath(
                            posixpath.join(cand.path, path_alias_target(spec))
                        )
                        target = name_at.get(linked, dep_name)
                    edges.append(
                        DependencyEdge(from_package=name, to_package=target, range=spec, kind=kind)
                    )

            root = self.root / cand.path
            packages.append(
                Package(
                    name=name,
                    version=cand.version,
                    path=cand.path,
                    root=root,
                    manifest_path=root / MANIFEST_NAME,
                    private=cand.data.get("private") is True,
                    dependencies=tuple(edges),
                )
            )
        return tuple(packages)


def discover_workspace(
    root: Path,
    config: EngineConfig | None = None,
    files: FileProvider | None = None,
    manifests: ManifestProvider | None = None,
    token: CancellationToken | None = None,
) -> Workspace:
    """Scan ``root`` and return its workspace snapshot.

    Shorthand for ``WorkspaceDiscoverer(...).discover()``.
    """
    return WorkspaceDiscoverer(root, config, files, manifests, token).discover()
