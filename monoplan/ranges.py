"""npm-style version range evaluation and widening.

A range is a union (``||``) of comparator sets; a comparator set is a list
of comparators that must all hold. Caret, tilde, x-range and hyphen forms
are desugared into plain comparators when parsed:

    ^1.2.3      → >=1.2.3 <2.0.0
    ^0.2.3      → >=0.2.3 <0.3.0
    ~1.2.3      → >=1.2.3 <1.3.0
    1.x         → >=1.0.0 <2.0.0
    1.2 - 2     → >=1.2.0 <3.0.0

Workspace protocol specifiers (``workspace:*``) and path aliases
(``file:../pkg``) always refer to the local copy of a package, so they
admit every version.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

import semver

from .versions import parse_version

WORKSPACE_PROTOCOL = "workspace:"
PATH_ALIAS_PREFIXES = ("file:", "link:", "portal:")
_ANY = frozenset({"", "*", "x", "X", "latest"})
_WILDCARDS = frozenset({"x", "X", "*"})

_TERM_RE = re.compile(
    r"""
    ^(?P<op>\^|~>|~|>=|<=|>|<|=)?
    v?
    (?P<major>0|[1-9]\d*|[xX*])
    (?:\.(?P<minor>0|[1-9]\d*|[xX*])
      (?:\.(?P<patch>0|[1-9]\d*|[xX*])
        (?:-(?P<pre>[0-9A-Za-z.-]+))?
        (?:\+(?P<build>[0-9A-Za-z.-]+))?
      )?
    )?$
    """,
    re.VERBOSE,
)
_HYPHEN_RE = re.compile(r"\s+-\s+")
_OPERATOR_GAP_RE = re.compile(r"(\^|~>|~|>=|<=|>|<|=)\s+")

_COMPARE: dict[str, Callable[[int, int], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "=": operator.eq,
}


class InvalidRangeError(ValueError):
    """The range expression could not be parsed."""


class RangeWidenError(ValueError):
    """The range cannot be rewritten to admit the requested version."""


@dataclass(frozen=True)
class Comparator:
    op: str
    version: semver.Version

    def test(self, version: semver.Version) -> bool:
        return _COMPARE[self.op](version.compare(self.version), 0)

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


@dataclass(frozen=True)
class VersionRange:
    """A parsed range: an OR of comparator sets.

    An empty comparator set admits any release version.
    """

    raw: str
    alternatives: tuple[tuple[Comparator, ...], ...]

    def admits(self, version: semver.Version | str) -> bool:
        if isinstance(version, str):
            version = parse_version(version)
        return any(_set_admits(alt, version) for alt in self.alternatives)

    def __str__(self) -> str:
        return " || ".join(" ".join(str(c) for c in alt) or "*" for alt in self.alternatives)


def _set_admits(comparators: tuple[Comparator, ...], version: semver.Version) -> bool:
    if not all(c.test(version) for c in comparators):
        return False
    if version.prerelease is None:
        return True
    # Prereleases only match a set that opts into the same release tuple.
    tuple_ = (version.major, version.minor, version.patch)
    return any(
        c.version.prerelease is not None
        and (c.version.major, c.version.minor, c.version.patch) == tuple_
        for c in comparators
    )


def is_workspace_protocol(spec: str) -> bool:
    return spec.strip().startswith(WORKSPACE_PROTOCOL)


def is_path_alias(spec: str) -> bool:
    """Return True for ``file:``, ``link:`` and ``portal:`` specifiers."""
    return spec.strip().startswith(PATH_ALIAS_PREFIXES)


def path_alias_target(spec: str) -> str:
    """Return the path part of a path alias (``file:../b`` → ``../b``)."""
    spec = spec.strip()
    for prefix in PATH_ALIAS_PREFIXES:
        if spec.startswith(prefix):
            return spec[len(prefix) :]
    raise InvalidRangeError(f"{spec!r} is not a path alias")


def _part(text: str | None) -> int | None:
    if text is None or text in _WILDCARDS:
        return None
    return int(text)


def _term_comparators(term: str) -> list[Comparator]:
    if term in _ANY:
        return []
    m = _TERM_RE.match(term)
    if not m:
        raise InvalidRangeError(f"invalid range term: {term!r}")

    op = m.group("op") or ""
    major = _part(m.group("major"))
    minor = _part(m.group("minor")) if major is not None else None
    patch = _part(m.group("patch")) if minor is not None else None
    pre = m.group("pre") if patch is not None else None

    if major is None:
        if op in ("", "=", "^", "~", "~>", ">=", "<="):
            return []
        raise InvalidRangeError(f"{term!r} can never be satisfied")

    low = semver.Version(major, minor or 0, patch or 0, prerelease=pre)

    if op == "^":
        if major > 0 or minor is None:
            upper = semver.Version(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            upper = semver.Version(0, minor + 1, 0)
        else:
            upper = semver.Version(0, 0, patch + 1)
        return [Comparator(">=", low), Comparator("<", upper)]

    if op in ("~", "~>"):
        if minor is None:
            upper = semver.Version(major + 1, 0, 0)
        else:
            upper = semver.Version(major, minor + 1, 0)
        return [Comparator(">=", low), Comparator("<", upper)]

    if op in ("", "="):
        if minor is None:
            return [Comparator(">=", low), Comparator("<", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", low), Comparator("<", semver.Version(major, minor + 1, 0))]
        return [Comparator("=", low)]

    if op == ">":
        if minor is None:
            return [Comparator(">=", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", semver.Version(major, minor + 1, 0))]
        return [Comparator(">", low)]

    if op == "<=":
        if minor is None:
            return [Comparator("<", semver.Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator("<", semver.Version(major, minor + 1, 0))]
        return [Comparator("<=", low)]

    # ">=" and "<" take the padded version as-is.
    return [Comparator(op, low)]


def _hyphen_comparators(low: str, high: str) -> list[Comparator]:
    lower = [c for c in _term_comparators(low) if c.op != "<"]
    upper = [c for c in _term_comparators("<=" + high)]
    return [Comparator(">=", c.version) if c.op == "=" else c for c in lower] + upper


@lru_cache(maxsize=4096)
def parse_range(text: str) -> VersionRange:
    """Parse a range expression.

    Raises:
        InvalidRangeError: If any term is malformed.
    """
    alternatives: list[tuple[Comparator, ...]] = []
    for alt in text.split("||"):
        alt = alt.strip()
        parts = _HYPHEN_RE.split(alt)
        if len(parts) == 2:
            alternatives.append(tuple(_hyphen_comparators(parts[0].strip(), parts[1].strip())))
            continue
        if len(parts) > 2:
            raise InvalidRangeError(f"invalid hyphen range: {alt!r}")
        alt = _OPERATOR_GAP_RE.sub(r"\1", alt)
        comparators: list[Comparator] = []
        for term in alt.split():
            comparators.extend(_term_comparators(term))
        alternatives.append(tuple(comparators))
    return VersionRange(raw=text, alternatives=tuple(alternatives))


def range_admits(spec: str, version: semver.Version | str) -> bool:
    """Return True if a declared dependency specifier admits ``version``.

    Workspace-protocol wildcards and path aliases admit everything;
    malformed ranges admit nothing.
    """
    spec = spec.strip()
    if is_path_alias(spec):
        return True
    if is_workspace_protocol(spec):
        inner = spec[len(WORKSPACE_PROTOCOL) :].strip()
        if inner in ("", "*", "^", "~"):
            return True
        spec = inner
    try:
        return parse_range(spec).admits(version)
    except ValueError:
        return False


def _widen_term(term: str, version: semver.Version) -> str:
    term = _OPERATOR_GAP_RE.sub(r"\1", term.strip())
    m = _TERM_RE.match(term)
    if term in _ANY or (m and m.group("major") in _WILDCARDS):
        # Wildcards never admit prereleases; only an exact pin does.
        return term if version.prerelease is None else str(version)
    if not m:
        raise RangeWidenError(f"cannot widen compound range {term!r}")

    op = m.group("op") or ""
    minor, patch = m.group("minor"), m.group("patch")

    # Partial and x-ranges keep their precision: 1.x → 2.x, 1.2 → 2.0.
    if op in ("", "=") and (patch is None or patch in _WILDCARDS):
        if minor is None:
            return f"{op}{version.major}"
        if minor in _WILDCARDS:
            return f"{op}{version.major}.{minor}"
        if patch is None:
            return f"{op}{version.major}.{version.minor}"
        return f"{op}{version.major}.{version.minor}.{patch}"

    if op == ">":
        op = ">="
    elif op == "<":
        op = "<="
    return f"{op}{version}"


def widen_range(spec: str, version: semver.Version | str) -> str:
    """Return the smallest rewrite of ``spec`` that admits ``version``.

    The operator style of ``spec`` is preserved:

        widen_range("^1.0.0", "2.0.0") → "^2.0.0"
        widen_range("~1.2.0", "1.3.0") → "~1.3.0"
        widen_range("1.x", "2.1.0") → "2.x"
        widen_range("^1.0.0 || ^2.0.0", "3.0.0") → "^1.0.0 || ^2.0.0 || ^3.0.0"
        widen_range("workspace:^1.0.0", "2.0.0") → "workspace:^2.0.0"

    Specifiers that already admit ``version`` are returned unchanged.

    Raises:
        RangeWidenError: For comparator sets, hyphen ranges, or when no
            style-preserving rewrite admits ``version``.
        InvalidRangeError: If ``spec`` cannot be parsed.
    """
    if isinstance(version, str):
        version = parse_version(version)
    spec = spec.strip()
    if range_admits(spec, version):
        return spec

    if is_workspace_protocol(spec):
        inner = spec[len(WORKSPACE_PROTOCOL) :].strip()
        return WORKSPACE_PROTOCOL + widen_range(inner, version)

    parse_range(spec)
    alternatives = [a.strip() for a in spec.split("||")]
    if len(alternatives) > 1:
        candidate = f"{spec} || {_widen_term(alternatives[-1], version)}"
    else:
        if _HYPHEN_RE.search(spec):
            raise RangeWidenError(f"cannot widen hyphen range {spec!r}")
        candidate = _widen_term(spec, version)

    if not range_admits(candidate, version):
        raise RangeWidenError(f"no rewrite of {spec!r} in the same style admits {version}")
    return candidate
