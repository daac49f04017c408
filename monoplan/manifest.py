"""package.json reading and writing.

Manifests are parsed into plain dicts (key order preserved) and written
back with the indentation and trailing newline of the text they came from,
so rewriting a version leaves the rest of the file untouched.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from .models import EdgeKind, ManifestEdit

MANIFEST_NAME = "package.json"
DEPENDENCY_FIELDS = tuple(kind.manifest_field for kind in EdgeKind)


class ManifestParseError(ValueError):
    """The manifest text is not a JSON object."""


@runtime_checkable
class ManifestProvider(Protocol):
    def parse(self, text: str) -> dict[str, Any]: ...

    def serialize(self, data: dict[str, Any], original: str | None = None) -> str: ...


def detect_indent(text: str) -> str | int:
    """Return the indentation unit used by a JSON document (default 2)."""
    for line in text.splitlines()[1:]:
        stripped = line.lstrip(" \t")
        if stripped and len(stripped) != len(line):
            unit = line[: len(line) - len(stripped)]
            return unit if "\t" in unit else len(unit)
    return 2


class JsonManifestProvider:
    """ManifestProvider for package.json files."""

    def parse(self, text: str) -> dict[str, Any]:
        """Parse manifest text.

        Raises:
            ManifestParseError: If the text is not JSON or its root is not
                an object.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestParseError(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ManifestParseError(f"expected a JSON object, got {type(data).__name__}")
        return data

    def serialize(self, data: dict[str, Any], original: str | None = None) -> str:
        """Render manifest data, mimicking ``original``'s formatting."""
        indent = detect_indent(original) if original else 2
        trailing = "\n" if original is None or original.endswith("\n") else ""
        return json.dumps(data, indent=indent, ensure_ascii=False) + trailing


def dependency_maps(data: dict[str, Any]) -> Iterable[tuple[EdgeKind, dict[str, str]]]:
    """Yield each dependency map present in a manifest, in field order.

    Raises:
        ManifestParseError: If a map is not an object of strings.
    """
    for kind in EdgeKind:
        deps = data.get(kind.manifest_field)
        if deps is None:
            continue
        if not isinstance(deps, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in deps.items()
        ):
            raise ManifestParseError(f"{kind.manifest_field} must map names to version strings")
        yield kind, deps


def workspace_globs(data: dict[str, Any]) -> list[str]:
    """Return the ``workspaces`` patterns of a root manifest.

    Accepts both the array form and the ``{"packages": [...]}`` form.

    Raises:
        ManifestParseError: If the field has any other shape.
    """
    ws = data.get("workspaces")
    if ws is None:
        return []
    if isinstance(ws, dict):
        ws = ws.get("packages", [])
    if not isinstance(ws, list) or not all(isinstance(p, str) for p in ws):
        raise ManifestParseError("workspaces must be a list of glob strings")
    return list(ws)


def apply_manifest_edits(data: dict[str, Any], edits: Iterable[ManifestEdit]) -> dict[str, Any]:
    """Return a copy of ``data`` with ``edits`` applied.

    Raises:
        ValueError: If an edit's target field is absent or no longer holds
            the edit's ``old`` value.
    """
    result = copy.deepcopy(data)
    for edit in edits:
        if edit.field == "version":
            container, key = result, "version"
        else:
            container = result.get(edit.field)
            key = edit.dependency or ""
            if not isinstance(container, dict) or key not in container:
                raise ValueError(f"{edit.package}: no {edit.field}[{key!r}] to edit")
        current = container.get(key)
        if current != edit.old:
            raise ValueError(
                f"{edit.package}: {edit.field} {key} is {current!r}, expected {edit.old!r}"
            )
        container[key] = edit.new
    return result
