"""Engine configuration.

The engine reads an :class:`EngineConfig` once, at construction, and threads
it through every component. Nothing reads configuration afterwards.

The record can be built directly or loaded from TOML with
:func:`load_config`, either from a dedicated ``monoplan.toml`` or from the
``[tool.monoplan]`` table of a ``pyproject.toml``::

    [tool.monoplan]
    patterns = ["packages/*", { pattern = "apps/*", max_depth = 1 }]
    propagation = "conservative"
    snapshot_template = "{version}-dev.{sha}"
    environments = ["staging", "production"]

    [tool.monoplan.severity_overrides]
    pattern_coverage = "warning"
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigurationError
from .models import BumpKind, EdgeKind, FileCategory, Severity
from .versions import DEFAULT_SNAPSHOT_TEMPLATE, validate_snapshot_template

CONFIG_TABLE = "monoplan"


class PropagationPolicy(str, Enum):
    """What bump a consumer receives when one of its dependencies moves."""

    CONSERVATIVE = "conservative"
    DEFAULT = "default"
    AGGRESSIVE = "aggressive"


class ConflictMode(str, Enum):
    FIRST = "first"
    COLLECT_ALL = "collect_all"


class WorkspacePattern(BaseModel):
    """One workspace glob with its discovery options.

    Attributes:
        pattern: Glob matched against workspace-relative directories.
        include: If non-empty, a matched directory must also match one of these.
        exclude: Matched directories that also match one of these are skipped.
        max_depth: Maximum number of path segments of a matched directory.
        follow_symlinks: Whether directories reached through a symlink count.
        override_detection: Let this pattern win a path or name collision
            with an earlier pattern instead of failing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    max_depth: int | None = Field(default=None, ge=1)
    follow_symlinks: bool = False
    override_detection: bool = False


class FileFilter(BaseModel):
    """Classifies changed files matching ``pattern``.

    The attributor annotates matching files with ``category`` and caps the
    bump they suggest at ``max_bump``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str
    category: FileCategory
    max_bump: BumpKind = BumpKind.PATCH

    @field_validator("max_bump")
    @classmethod
    def _check_max_bump(cls, value: BumpKind) -> BumpKind:
        if value is BumpKind.SNAPSHOT:
            raise ValueError("a file filter cannot cap bumps at snapshot")
        return value


DEFAULT_FILE_FILTERS = (
    FileFilter(pattern="**/__tests__/**", category=FileCategory.TEST),
    FileFilter(pattern="**/test/**", category=FileCategory.TEST),
    FileFilter(pattern="**/tests/**", category=FileCategory.TEST),
    FileFilter(pattern="**/*.{test,spec}.{js,jsx,ts,tsx,mjs,cjs}", category=FileCategory.TEST),
    FileFilter(pattern="**/docs/**", category=FileCategory.DOCS, max_bump=BumpKind.NONE),
    FileFilter(pattern="**/*.md", category=FileCategory.DOCS, max_bump=BumpKind.NONE),
    FileFilter(pattern="**/tsconfig*.json", category=FileCategory.CONFIG),
    FileFilter(pattern="**/.eslintrc*", category=FileCategory.CONFIG),
)

DEFAULT_SIGNIFICANCE = {
    FileCategory.SOURCE: 3,
    FileCategory.CONFIG: 2,
    FileCategory.TEST: 1,
    FileCategory.DOCS: 0,
}


class EngineConfig(BaseModel):
    """Immutable configuration record for one engine instance.

    Attributes:
        patterns: Workspace patterns in priority order. Empty means the
            root manifest's ``workspaces`` field is used.
        strict_coverage: Fail discovery when a manifest sits outside
            every pattern.
        significance: Weight of each file category in attribution.
        default_bump: Bump given to attributed packages without a changeset.
        snapshot_template: Template for snapshot versions.
        propagation: How bumps propagate to consumers.
        environments: Known deployment environments.
        severity_overrides: Validator category → severity.
        file_filters: Ordered file classifiers; first match wins.
        root_level_propagation: Files outside every package mark every
            package directly affected.
        strict_attribution: Files outside every package are an error
            unless ``root_level_propagation`` is set.
        conflict_mode: Stop planning at the first conflict or collect all.
        changeset_dir: Changeset store directory, relative to the root.
        propagate_dev_dependencies: Whether devDependencies carry bump
            magnitude to consumers.
        propagate_optional_dependencies: Whether optionalDependencies
            carry bump magnitude to consumers.
        walk_skip: Directory names never descended into.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    patterns: tuple[WorkspacePattern, ...] = ()
    strict_coverage: bool = False
    significance: dict[FileCategory, int] = Field(default_factory=lambda: dict(DEFAULT_SIGNIFICANCE))
    default_bump: BumpKind = BumpKind.PATCH
    snapshot_template: str = DEFAULT_SNAPSHOT_TEMPLATE
    propagation: PropagationPolicy = PropagationPolicy.DEFAULT
    environments: tuple[str, ...] = ()
    severity_overrides: dict[str, Severity] = Field(default_factory=dict)
    file_filters: tuple[FileFilter, ...] = DEFAULT_FILE_FILTERS
    root_level_propagation: bool = False
    strict_attribution: bool = False
    conflict_mode: ConflictMode = ConflictMode.FIRST
    changeset_dir: str = ".changesets"
    propagate_dev_dependencies: bool = True
    propagate_optional_dependencies: bool = True
    walk_skip: tuple[str, ...] = ("node_modules", ".git")

    @field_validator("patterns", mode="before")
    @classmethod
    def _coerce_patterns(cls, value: Any) -> Any:
        # Bare strings are shorthand for a pattern with default options.
        if isinstance(value, (list, tuple)):
            return [{"pattern": v} if isinstance(v, str) else v for v in value]
        return value

    @field_validator("snapshot_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        validate_snapshot_template(value)
        return value

    @field_validator("default_bump")
    @classmethod
    def _check_default_bump(cls, value: BumpKind) -> BumpKind:
        if value is BumpKind.SNAPSHOT:
            raise ValueError("default_bump cannot be snapshot")
        return value

    def propagates(self, kind: EdgeKind) -> bool:
        """Whether edges of ``kind`` carry bump magnitude to consumers."""
        if kind is EdgeKind.DEVELOPMENT:
            return self.propagate_dev_dependencies
        if kind is EdgeKind.OPTIONAL:
            return self.propagate_optional_dependencies
        return True

    def severity_for(self, category: str, default: Severity) -> Severity:
        return self.severity_overrides.get(category, default)


def config_from_mapping(data: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from plain data.

    Raises:
        ConfigurationError: If any value is invalid.
    """
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}", causes=[e]) from e


def load_config(path: Path) -> EngineConfig:
    """Load configuration from a TOML file.

    Uses the ``[tool.monoplan]`` table when present, otherwise the whole
    document (or nothing, for a ``pyproject.toml``).

    Raises:
        ConfigurationError: If the file is missing, is not valid TOML, or
            holds invalid values.
    """
    try:
        doc = tomlkit.parse(path.read_text())
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}", causes=[e]) from e
    except TOMLKitError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}", causes=[e]) from e

    data = doc.unwrap()
    table = data.get("tool", {}).get(CONFIG_TABLE)
    if table is None:
        # A pyproject.toml without our table means "all defaults".
        table = {} if path.name == "pyproject.toml" else data
    return config_from_mapping(table)
