"""Version parsing and bumping utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0"),
and renders snapshot versions from a template.
"""

from __future__ import annotations

import re

import semver

from .models import BumpKind

SNAPSHOT_PLACEHOLDERS = frozenset({"version", "sha", "timestamp"})
DEFAULT_SNAPSHOT_TEMPLATE = "{version}-snapshot.{sha}"

_PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")
_SHA_LENGTH = 7


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-rc.1" → "1.2.3-rc.1"

    A leading "v" or "=" is ignored, as npm does.

    Raises:
        ValueError: If the string is not a semantic version.
    """
    text = version_str.strip()
    if text[:1] in ("v", "="):
        text = text[1:].strip()
    return semver.Version.parse(text, optional_minor_and_patch=True)


def is_valid_version(version_str: str) -> bool:
    try:
        parse_version(version_str)
    except (ValueError, TypeError):
        return False
    return True


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` sorts before, equal to or after ``b``."""
    return parse_version(a).compare(parse_version(b))


def bump_version(
    version_str: str,
    kind: BumpKind,
    *,
    template: str = DEFAULT_SNAPSHOT_TEMPLATE,
    sha: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Apply a bump and return the new version string.

    Prerelease and build components are cleared on patch, minor and major
    bumps. Snapshot bumps render ``template`` against the current version.

    Examples:
        bump_version("1.2.3", BumpKind.PATCH) → "1.2.4"
        bump_version("1.2.3-rc.1", BumpKind.MINOR) → "1.3.0"
        bump_version("0.4.1", BumpKind.MAJOR) → "1.0.0"

    Raises:
        ValueError: If the version is malformed, or a snapshot is requested
            without a revision identifier.
    """
    version = parse_version(version_str)
    if kind is BumpKind.NONE:
        return str(version)
    if kind is BumpKind.PATCH:
        return str(version.bump_patch())
    if kind is BumpKind.MINOR:
        return str(version.bump_minor())
    if kind is BumpKind.MAJOR:
        return str(version.bump_major())

    if sha is None:
        raise ValueError("snapshot versions need a revision identifier")
    return render_snapshot(
        template,
        version=str(version),
        sha=sha,
        timestamp=timestamp if timestamp is not None else 0,
    )


def template_placeholders(template: str) -> list[str]:
    return _PLACEHOLDER_RE.findall(template)


def validate_snapshot_template(template: str) -> None:
    """Check a snapshot template before it is ever rendered.

    The template must reference ``{version}`` and may only use the
    ``{version}``, ``{sha}`` and ``{timestamp}`` placeholders.

    Raises:
        ValueError: Describing the first problem found.
    """
    names = template_placeholders(template)
    unknown = sorted(set(names) - SNAPSHOT_PLACEHOLDERS)
    if unknown:
        raise ValueError(
            f"unsupported snapshot placeholder(s): {', '.join('{' + n + '}' for n in unknown)}; "
            "supported: {version}, {sha}, {timestamp}"
        )
    if "version" not in names:
        raise ValueError("snapshot template must contain {version}")


def short_sha(sha: str) -> str:
    """Lowercase a revision id, keep alphanumerics and cut it to 7 chars."""
    cleaned = re.sub(r"[^0-9a-z]", "", sha.lower())
    return cleaned[:_SHA_LENGTH]


def render_snapshot(template: str, *, version: str, sha: str, timestamp: int) -> str:
    """Render a snapshot version.

    Examples:
        render_snapshot("{version}-snapshot.{sha}", version="1.2.3",
                        sha="ABC123DEF456", timestamp=0) → "1.2.3-snapshot.abc123d"

    Raises:
        ValueError: If the template is invalid, the revision is empty, or
            the result is not a semantic version.
    """
    validate_snapshot_template(template)
    short = short_sha(sha)
    if not short and "sha" in template_placeholders(template):
        raise ValueError(f"revision identifier {sha!r} has no usable characters")

    values = {"version": version, "sha": short, "timestamp": str(timestamp)}
    rendered = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template)
    if not is_valid_version(rendered):
        raise ValueError(f"snapshot template {template!r} rendered an invalid version: {rendered!r}")
    return rendered
