"""Glob matching for workspace patterns and file filters.

Patterns are matched against workspace-relative POSIX paths:

- ``*`` matches within one path segment
- ``?`` matches one character other than ``/``
- ``**`` matches any number of whole segments (including none)
- ``[abc]`` / ``[!abc]`` character classes
- ``{a,b}`` alternatives

A leading ``./`` and trailing ``/`` are ignored.
"""

from __future__ import annotations

import re
from functools import lru_cache


def normalize_pattern(pattern: str) -> str:
    pattern = pattern.strip()
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.rstrip("/")


def _translate(pattern: str) -> str:
    out: list[str] = []
    i, n = 0, len(pattern)
    depth = 0
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                at_start = i == 0 or pattern[i - 1] == "/"
                i += 2
                if at_start and i < n and pattern[i] == "/":
                    # "**/" swallows zero or more leading segments
                    out.append("(?:[^/]+/)*")
                    i += 1
                elif at_start and i == n:
                    out.append(".*")
                else:
                    out.append("[^/]*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : j]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
                i = j
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(c))
        i += 1
    if depth:
        raise ValueError(f"unbalanced braces in glob {pattern!r}")
    return "".join(out)


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into an anchored regular expression.

    Raises:
        ValueError: If braces are unbalanced.
    """
    return re.compile(rf"\A{_translate(normalize_pattern(pattern))}\Z")


def glob_match(pattern: str, path: str) -> bool:
    return compile_glob(pattern).match(path.strip("/")) is not None


def matches_any(patterns: tuple[str, ...] | list[str], path: str) -> bool:
    return any(glob_match(p, path) for p in patterns)
