"""File-system and version-control providers.

The engine never touches the disk or git directly: it goes through a
:class:`FileProvider` and a :class:`VcsProvider` injected at construction.
``LocalFileProvider`` and ``GitProvider`` are the real implementations;
tests can pass anything with the same methods.

Async callers wrap either provider in :class:`AsyncFileProvider` /
:class:`AsyncVcsProvider`, which run each blocking call through
``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import ProviderError
from .models import ChangeKind, FileChange
from .shell import git


@dataclass(frozen=True)
class WalkEntry:
    """One entry of a directory walk.

    Attributes:
        path: POSIX path relative to the walk root.
        is_dir: Whether the entry is a directory (after following links).
        via_symlink: Whether the entry is a symlink or sits below one.
    """

    path: str
    is_dir: bool
    via_symlink: bool = False


@runtime_checkable
class FileProvider(Protocol):
    def read_text(self, path: Path) -> str: ...

    def write_text(self, path: Path, content: str) -> None: ...

    def exists(self, path: Path) -> bool: ...

    def mkdir(self, path: Path) -> None: ...

    def walk(self, root: Path, skip: Iterable[str] = ()) -> list[WalkEntry]: ...

    def create_exclusive(self, path: Path, content: str) -> bool: ...

    def remove(self, path: Path) -> None: ...

    def modified_time(self, path: Path) -> float: ...


@runtime_checkable
class VcsProvider(Protocol):
    def current_revision(self) -> str: ...

    def current_branch(self) -> str: ...

    def changed_files(self, base: str, head: str | None = None) -> list[FileChange]: ...


class LocalFileProvider:
    """FileProvider backed by the local file system.

    Every ``OSError`` is re-raised as :class:`ProviderError`.
    """

    def read_text(self, path: Path) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ProviderError(f"Cannot read {path}: {e}", causes=[e]) from e

    def write_text(self, path: Path, content: str) -> None:
        """Write ``content`` to ``path`` atomically.

        The content goes to a temporary sibling first and is renamed into
        place, so readers see either the old file or the new one.
        """
        path = Path(path)
        try:
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        except OSError as e:
            raise ProviderError(f"Cannot write {path}: {e}", causes=[e]) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            os.replace(tmp, path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise ProviderError(f"Cannot write {path}: {e}", causes=[e]) from e

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def mkdir(self, path: Path) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProviderError(f"Cannot create directory {path}: {e}", causes=[e]) from e

    def create_exclusive(self, path: Path, content: str) -> bool:
        """Create ``path`` only if it does not exist yet.

        Returns:
            False if the file already existed.
        """
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise ProviderError(f"Cannot create {path}: {e}", causes=[e]) from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        return True

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            raise ProviderError(f"Cannot remove {path}: {e}", causes=[e]) from e

    def modified_time(self, path: Path) -> float:
        """Return the modification time of ``path`` in seconds since the epoch."""
        try:
            return Path(path).stat().st_mtime
        except OSError as e:
            raise ProviderError(f"Cannot stat {path}: {e}", causes=[e]) from e

    def walk(self, root: Path, skip: Iterable[str] = ()) -> list[WalkEntry]:
        """Walk ``root`` and return every entry in lexicographic order.

        Directories named in ``skip`` are neither returned nor entered.
        Symlinked directories are entered (their entries are flagged
        ``via_symlink``) unless they lead back to one of their ancestors.
        """
        skip = frozenset(skip)
        entries: list[WalkEntry] = []
        root = Path(root)

        def visit(directory: Path, rel: str, via_symlink: bool, ancestors: frozenset[str]) -> None:
            try:
                children = sorted(os.scandir(directory), key=lambda e: e.name)
            except OSError as e:
                raise ProviderError(f"Cannot list {directory}: {e}", causes=[e]) from e
            for child in children:
                child_rel = f"{rel}/{child.name}" if rel else child.name
                is_link = child.is_symlink()
                try:
                    is_dir = child.is_dir()
                except OSError:
                    # Dangling symlink
                    is_dir = False
                if is_dir and child.name in skip:
                    continue
                entries.append(WalkEntry(child_rel, is_dir, via_symlink or is_link))
                if not is_dir:
                    continue
                real = os.path.realpath(child.path)
                if real in ancestors:
                    continue
                visit(Path(child.path), child_rel, via_symlink or is_link, ancestors | {real})

        visit(root, "", False, frozenset({os.path.realpath(root)}))
        entries.sort(key=lambda e: e.path)
        return entries


_STATUS_KINDS = {
    "A": ChangeKind.ADDED,
    "C": ChangeKind.ADDED,
    "D": ChangeKind.DELETED,
    "M": ChangeKind.MODIFIED,
    "T": ChangeKind.MODIFIED,
    "R": ChangeKind.RENAMED,
}


def parse_name_status(output: str, *, staged: bool = False) -> list[FileChange]:
    """Parse ``git diff --name-status -z`` output.

    Renames and copies carry two paths; for copies only the new path is
    reported, as an addition.

    Example:
        "M\\0src/a.ts\\0R100\\0old.ts\\0new.ts\\0" →
        [FileChange(path="src/a.ts"), FileChange(path="new.ts", kind=RENAMED,
         previous_path="old.ts")]
    """
    tokens = [t for t in output.split("\0") if t]
    changes: list[FileChange] = []
    i = 0
    while i < len(tokens):
        status = tokens[i]
        letter = status[:1]
        kind = _STATUS_KINDS.get(letter, ChangeKind.MODIFIED)
        if letter in ("R", "C"):
            old, new = tokens[i + 1], tokens[i + 2]
            i += 3
            previous = old if letter == "R" else None
            changes.append(FileChange(path=new, kind=kind, staged=staged, previous_path=previous))
        else:
            changes.append(FileChange(path=tokens[i + 1], kind=kind, staged=staged))
            i += 2
    return changes


class GitProvider:
    """VcsProvider backed by the ``git`` command line.

    Args:
        root: Repository working directory.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _git(self, *args: str) -> str:
        try:
            return git(*args, cwd=self.root)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
            raise ProviderError(f"git {' '.join(args)} failed: {detail}", causes=[e]) from e
        except OSError as e:
            raise ProviderError(f"Cannot run git: {e}", causes=[e]) from e

    def current_revision(self) -> str:
        return self._git("rev-parse", "HEAD").strip()

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()

    def changed_files(self, base: str, head: str | None = None) -> list[FileChange]:
        """List files changed between two revisions.

        With ``head`` set, compares the two commits. Without it, compares
        ``base`` against the index (``staged=True``) and the index against
        the working tree (``staged=False``); a path in both lists is
        reported once, as staged.

        Returns:
            Changes sorted by path.
        """
        if head is not None:
            changes = parse_name_status(self._git("diff", "--name-status", "-z", "-M", base, head))
            return sorted(changes, key=lambda c: c.path)

        staged = parse_name_status(
            self._git("diff", "--name-status", "-z", "-M", "--cached", base), staged=True
        )
        unstaged = parse_name_status(self._git("diff", "--name-status", "-z", "-M"))
        by_path = {c.path: c for c in unstaged}
        by_path.update({c.path: c for c in staged})
        return [by_path[p] for p in sorted(by_path)]


class AsyncFileProvider:
    """Awaitable view of a FileProvider."""

    def __init__(self, inner: FileProvider) -> None:
        self.inner = inner

    async def read_text(self, path: Path) -> str:
        return await asyncio.to_thread(self.inner.read_text, path)

    async def write_text(self, path: Path, content: str) -> None:
        await asyncio.to_thread(self.inner.write_text, path, content)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(self.inner.exists, path)

    async def mkdir(self, path: Path) -> None:
        await asyncio.to_thread(self.inner.mkdir, path)

    async def walk(self, root: Path, skip: Iterable[str] = ()) -> list[WalkEntry]:
        return await asyncio.to_thread(self.inner.walk, root, tuple(skip))

    async def modified_time(self, path: Path) -> float:
        return await asyncio.to_thread(self.inner.modified_time, path)


class AsyncVcsProvider:
    """Awaitable view of a VcsProvider."""

    def __init__(self, inner: VcsProvider) -> None:
        self.inner = inner

    async def current_revision(self) -> str:
        return await asyncio.to_thread(self.inner.current_revision)

    async def current_branch(self) -> str:
        return await asyncio.to_thread(self.inner.current_branch)

    async def changed_files(self, base: str, head: str | None = None) -> list[FileChange]:
        return await asyncio.to_thread(self.inner.changed_files, base, head)
