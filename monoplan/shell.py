"""Shell and git utilities.

Provides a thin wrapper around subprocess for git operations, plus output
formatting helpers used by the engine and the CLI.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import NoReturn


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "diff", "--name-status").
        cwd: Directory to run git in. Defaults to the current directory.
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail.

    Returns:
        Stdout from the git command with the trailing newline removed.

    Raises:
        subprocess.CalledProcessError: If ``check`` is set and git fails.
        FileNotFoundError: If git is not installed.
    """
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=check
    )
    return result.stdout.rstrip("\n")


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate the phases of an engine run in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def fatal(msg: str, code: int = 1) -> NoReturn:
    """Print an error message to stderr and exit with ``code``."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(code)
