"""Tests for monoplan.globs."""

from __future__ import annotations

import pytest

from monoplan.globs import compile_glob, glob_match, matches_any


class TestGlobMatch:
    @pytest.mark.parametrize(
        ("pattern", "path", "expected"),
        [
            ("packages/*", "packages/core", True),
            ("packages/*", "packages/core/nested", False),
            ("packages/**", "packages/core/nested", True),
            ("**/tests/**", "packages/a/tests/unit.ts", True),
            ("**/tests/**", "tests/unit.ts", True),
            ("**/*.md", "README.md", True),
            ("**/*.md", "packages/a/docs/guide.md", True),
            ("apps/web", "apps/web", True),
            ("./apps/*/", "apps/web", True),
            ("pkg-?", "pkg-a", True),
            ("pkg-?", "pkg-ab", False),
            ("pkg-[ab]", "pkg-b", True),
            ("pkg-[!ab]", "pkg-b", False),
            ("{apps,libs}/*", "libs/util", True),
            ("{apps,libs}/*", "tools/util", False),
            ("**/*.{test,spec}.ts", "src/a.spec.ts", True),
        ],
    )
    def test_patterns(self, pattern: str, path: str, expected: bool) -> None:
        assert glob_match(pattern, path) is expected

    def test_unbalanced_braces(self) -> None:
        with pytest.raises(ValueError):
            compile_glob("{a,b")

    def test_matches_any(self) -> None:
        assert matches_any(["apps/*", "libs/*"], "libs/x")
        assert not matches_any([], "libs/x")
