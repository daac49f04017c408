"""Tests for monoplan.workspace."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from monoplan.cancellation import CancellationToken
from monoplan.config import EngineConfig
from monoplan.errors import CancelledError, WorkspaceError, WorkspaceErrorKind
from monoplan.models import DependencyEdge, EdgeKind
from monoplan.workspace import discover_workspace

WriteWorkspace = Callable[..., Path]


class TestDiscover:
    def test_finds_members_and_edges(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/b": {"name": "b", "version": "1.0.0"},
                "packages/a": {
                    "name": "a",
                    "version": "1.2.0",
                    "dependencies": {"lodash": "^4.17.0", "b": "^1.0.0"},
                    "devDependencies": {"b": "*"},
                },
            }
        )
        ws = discover_workspace(root)

        assert ws.names == ("a", "b")
        assert ws.patterns == ("packages/*",)
        assert ws.orphans == ()
        a = ws.get("a")
        assert a is not None
        assert a.version == "1.2.0"
        assert a.path == "packages/a"
        assert a.manifest_path == root / "packages" / "a" / "package.json"
        assert a.dependencies == (
            DependencyEdge(from_package="a", to_package="b", range="^1.0.0"),
            DependencyEdge(from_package="a", to_package="lodash", range="^4.17.0"),
            DependencyEdge(from_package="a", to_package="b", range="*", kind=EdgeKind.DEVELOPMENT),
        )

    def test_missing_version_defaults(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"name": "a"}})
        assert discover_workspace(root).packages[0].version == "0.0.0"

    def test_private_flag(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"name": "a", "version": "1.0.0", "private": True}})
        assert discover_workspace(root).packages[0].private

    def test_rediscovery_is_identical(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0", "dependencies": {"b": "^1.0.0"}},
                "packages/b": {"name": "b", "version": "1.0.0"},
            }
        )
        assert discover_workspace(root) == discover_workspace(root)

    def test_node_modules_is_skipped(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "packages/a/node_modules/left-pad": {"name": "left-pad", "version": "1.0.0"},
            },
            workspaces=("packages/**",),
        )
        assert discover_workspace(root).names == ("a",)


class TestDiscoverErrors:
    def test_no_root_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(WorkspaceError) as exc_info:
            discover_workspace(tmp_path)
        assert exc_info.value.reason is WorkspaceErrorKind.NO_ROOT_MANIFEST

    def test_no_patterns(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({}, workspaces=None)
        with pytest.raises(WorkspaceError) as exc_info:
            discover_workspace(root)
        assert exc_info.value.reason is WorkspaceErrorKind.NO_PATTERNS

    def test_duplicate_name(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "packages/a-copy": {"name": "a", "version": "2.0.0"},
            }
        )
        with pytest.raises(WorkspaceError) as exc_info:
            discover_workspace(root)
        assert exc_info.value.reason is WorkspaceErrorKind.DUPLICATE_PACKAGE_NAME
        assert exc_info.value.packages == ("a",)

    def test_invalid_version(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"name": "a", "version": "banana"}})
        with pytest.raises(WorkspaceError, match="invalid version") as exc_info:
            discover_workspace(root)
        assert exc_info.value.reason is WorkspaceErrorKind.MANIFEST_PARSE

    def test_missing_name(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"version": "1.0.0"}})
        with pytest.raises(WorkspaceError, match="name"):
            discover_workspace(root)

    def test_unparseable_manifest(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({})
        (root / "packages" / "a").mkdir(parents=True)
        (root / "packages" / "a" / "package.json").write_text("{not json")
        with pytest.raises(WorkspaceError) as exc_info:
            discover_workspace(root)
        assert exc_info.value.reason is WorkspaceErrorKind.MANIFEST_PARSE

    def test_cancelled(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"name": "a", "version": "1.0.0"}})
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            discover_workspace(root, token=token)


class TestPatterns:
    def test_negated_workspace_entry_excludes(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "packages/legacy": {"name": "legacy", "version": "1.0.0"},
            },
            workspaces=["packages/*", "!packages/legacy"],
        )
        ws = discover_workspace(root)
        assert ws.names == ("a",)
        # filtered out on purpose, so not an orphan
        assert ws.orphans == ()

    def test_object_form_workspaces(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {"apps/web": {"name": "web", "version": "1.0.0"}},
            workspaces={"packages": ["apps/*"]},
        )
        assert discover_workspace(root).names == ("web",)

    def test_configured_patterns_win(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "apps/web": {"name": "web", "version": "1.0.0"},
            }
        )
        ws = discover_workspace(root, EngineConfig(patterns=["apps/*"]))
        assert ws.names == ("web",)
        assert ws.orphans == ("packages/a",)

    def test_nested_package_is_not_a_member(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "packages/a/fixtures/b": {"name": "b", "version": "1.0.0"},
            },
            workspaces=("packages/**",),
        )
        ws = discover_workspace(root)
        assert ws.names == ("a",)
        assert ws.orphans == ()

    def test_max_depth(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "apps/web": {"name": "web", "version": "1.0.0"},
                "apps/group/admin": {"name": "admin", "version": "1.0.0"},
            }
        )
        config = EngineConfig(patterns=[{"pattern": "apps/**", "max_depth": 2}])
        assert discover_workspace(root, config).names == ("web",)

    def test_override_detection(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/x": {"name": "x", "version": "1.0.0"},
                "vendor/x": {"name": "x", "version": "2.0.0"},
            }
        )
        config = EngineConfig(
            patterns=["packages/*", {"pattern": "vendor/*", "override_detection": True}]
        )
        pkg = discover_workspace(root, config).get("x")
        assert pkg is not None
        assert pkg.path == "vendor/x"

    def test_first_pattern_claims_directory(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace({"packages/a": {"name": "a", "version": "1.0.0"}})
        config = EngineConfig(patterns=["packages/*", "packages/a"])
        assert discover_workspace(root, config).names == ("a",)

    def test_include_narrows_pattern(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/ui-button": {"name": "ui-button", "version": "1.0.0"},
                "packages/ui-card": {"name": "ui-card", "version": "1.0.0"},
                "packages/server": {"name": "server", "version": "1.0.0"},
            }
        )
        config = EngineConfig(patterns=[{"pattern": "packages/*", "include": ["packages/ui-*"]}])
        ws = discover_workspace(root, config)
        assert ws.names == ("ui-button", "ui-card")
        assert ws.orphans == ()


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
class TestSymlinkedMembers:
    """Tests for packages reached through a symlinked directory."""

    @pytest.fixture
    def root(self, write_workspace: WriteWorkspace, tmp_path: Path) -> Path:
        vendored = tmp_path / "vendored" / "ui"
        vendored.mkdir(parents=True)
        (vendored / "package.json").write_text(json.dumps({"name": "ui", "version": "1.0.0"}))
        root = write_workspace(
            {"packages/a": {"name": "a", "version": "1.0.0"}}, root=tmp_path / "repo"
        )
        os.symlink(vendored, root / "packages" / "ui")
        return root

    def test_skipped_by_default(self, root: Path) -> None:
        """A member behind a symlink is ignored unless its pattern opts in."""
        ws = discover_workspace(root)
        assert ws.names == ("a",)
        assert ws.orphans == ()

    def test_followed_when_pattern_opts_in(self, root: Path) -> None:
        config = EngineConfig(patterns=[{"pattern": "packages/*", "follow_symlinks": True}])
        ws = discover_workspace(root, config)
        assert ws.names == ("a", "ui")
        ui = ws.get("ui")
        assert ui is not None
        assert ui.path == "packages/ui"


class TestCoverage:
    def test_orphans_are_reported(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "tools/release": {"name": "release", "version": "1.0.0"},
            }
        )
        ws = discover_workspace(root)
        assert ws.names == ("a",)
        assert ws.orphans == ("tools/release",)

    def test_strict_coverage(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/a": {"name": "a", "version": "1.0.0"},
                "tools/release": {"name": "release", "version": "1.0.0"},
            }
        )
        with pytest.raises(WorkspaceError, match="tools/release") as exc_info:
            discover_workspace(root, EngineConfig(strict_coverage=True))
        assert exc_info.value.reason is WorkspaceErrorKind.PATTERN_COVERAGE


class TestPathAliases:
    def test_file_alias_resolves_to_member_name(self, write_workspace: WriteWorkspace) -> None:
        root = write_workspace(
            {
                "packages/core": {"name": "@acme/core", "version": "1.0.0"},
                "packages/app": {
                    "name": "app",
                    "version": "1.0.0",
                    "dependencies": {"core": "file:../core"},
                },
            }
        )
        app = discover_workspace(root).get("app")
        assert app is not None
        assert app.dependencies == (
            DependencyEdge(from_package="app", to_package="@acme/core", range="file:../core"),
        )

    def test_alias_outside_workspace_keeps_declared_name(
        self, write_workspace: WriteWorkspace
    ) -> None:
        root = write_workspace(
            {
                "packages/app": {
                    "name": "app",
                    "version": "1.0.0",
                    "dependencies": {"vendored": "link:../../vendor/lib"},
                },
            }
        )
        app = discover_workspace(root).get("app")
        assert app is not None
        assert app.dependencies[0].to_package == "vendored"
