"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, Union

import pytest

from monoplan.models import DependencyEdge, EdgeKind, Package, Workspace

DepSpec = Union[str, tuple[str, EdgeKind]]


def write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n")


@pytest.fixture
def write_workspace(tmp_path: Path) -> Callable[..., Path]:
    """Write a workspace to disk.

    Usage:
        root = write_workspace({"packages/a": {"name": "a", "version": "1.0.0"}})
    """

    def _write(
        members: dict[str, dict[str, Any]],
        workspaces: Any = ("packages/*",),
        root: Path | None = None,
    ) -> Path:
        root = root or tmp_path
        root_manifest: dict[str, Any] = {"name": "root", "private": True}
        if workspaces is not None:
            root_manifest["workspaces"] = (
                list(workspaces) if isinstance(workspaces, (list, tuple)) else workspaces
            )
        write_json(root / "package.json", root_manifest)
        for rel, manifest in members.items():
            write_json(root / rel / "package.json", manifest)
        return root

    return _write


@pytest.fixture
def make_workspace(tmp_path: Path) -> Callable[[dict[str, tuple[str, dict[str, DepSpec]]]], Workspace]:
    """Build an in-memory workspace.

    Usage:
        ws = make_workspace({"a": ("1.0.0", {"b": "^1.0.0"}), "b": ("1.0.0", {})})

    A dependency value may be a range (runtime edge) or a (range, kind) pair.
    """

    def _make(spec: dict[str, tuple[str, dict[str, DepSpec]]]) -> Workspace:
        packages = []
        for name, (version, deps) in spec.items():
            root = tmp_path / "packages" / name
            edges = []
            for dep, value in deps.items():
                range_, kind = (value, EdgeKind.RUNTIME) if isinstance(value, str) else value
                edges.append(DependencyEdge(from_package=name, to_package=dep, range=range_, kind=kind))
            packages.append(
                Package(
                    name=name,
                    version=version,
                    path=f"packages/{name}",
                    root=root,
                    manifest_path=root / "package.json",
                    dependencies=tuple(edges),
                )
            )
        return Workspace(
            root=tmp_path,
            root_manifest=tmp_path / "package.json",
            patterns=("packages/*",),
            packages=tuple(sorted(packages, key=lambda p: p.name)),
        )

    return _make
