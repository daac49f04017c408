"""Changeset store.

Each changeset is one TOML record, ``<id>.toml``, inside the store
directory (``.changesets/`` by default). Records are written atomically
through the file provider and are never edited in place: a state change
rewrites the whole record. Applied and discarded records stay on disk until
:meth:`ChangesetStore.compact` removes them.

Writers take a best-effort advisory lock, a ``.lock`` file in the store
directory holding the writer's pid and a timestamp. A lock older than
``STALE_LOCK_SECONDS`` (by its timestamp, or by its file time when the
content is empty or garbled) is assumed abandoned and broken. Readers never
take the lock.
"""

from __future__ import annotations

import os
import secrets
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from tomlkit.exceptions import TOMLKitError

from .cancellation import CancellationToken
from .errors import ChangesetError, ProviderError
from .models import BumpKind, Changeset, ChangesetStatus, Workspace
from .providers import FileProvider, LocalFileProvider
from .toml import dump_changeset, load_changeset

LOCK_NAME = ".lock"
RECORD_SUFFIX = ".toml"
STALE_LOCK_SECONDS = 30.0
LOCK_WAIT_SECONDS = 2.0


class ChangesetStore:
    """Persists changesets in one directory.

    Args:
        directory: Store directory; created on first write.
        files: File provider for every read and write.
        token: Polled after each provider call.
    """

    def __init__(
        self,
        directory: Path,
        files: FileProvider | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.directory = Path(directory)
        self.files = files or LocalFileProvider()
        self.token = token or CancellationToken()
        self._id_lock = threading.Lock()
        self._last_millis = -1
        self._sequence = 0

    def new_id(self) -> str:
        """Return a fresh identifier: ``<unix millis>-<sequence>-<random hex>``.

        The sequence counts creates that share a millisecond on this store,
        so ids sort in creation order; the random suffix separates ids made
        by different processes at the same instant.
        """
        with self._id_lock:
            millis = time.time_ns() // 1_000_000
            if millis <= self._last_millis:
                millis = self._last_millis
                self._sequence += 1
            else:
                self._last_millis = millis
                self._sequence = 0
            return f"{millis:013d}-{self._sequence:04d}-{secrets.token_hex(3)}"

    def _path(self, changeset_id: str) -> Path:
        return self.directory / f"{changeset_id}{RECORD_SUFFIX}"

    @contextmanager
    def _locked(self) -> Iterator[None]:
        lock = self.directory / LOCK_NAME
        self.files.mkdir(self.directory)
        deadline = time.monotonic() + LOCK_WAIT_SECONDS
        while not self.files.create_exclusive(lock, f"{os.getpid()} {time.time()}\n"):
            if self._lock_is_stale(lock):
                self.files.remove(lock)
                continue
            if time.monotonic() >= deadline:
                raise ChangesetError(
                    f"Changeset store {self.directory} is locked by another writer; "
                    f"delete {lock} if no other process is running"
                )
            time.sleep(0.05)
        try:
            yield
        finally:
            self.files.remove(lock)

    def _lock_is_stale(self, lock: Path) -> bool:
        try:
            text = self.files.read_text(lock)
            try:
                _, stamp = text.split()
                written = float(stamp)
            except ValueError:
                # A writer creates the lock before filling it in.
                written = self.files.modified_time(lock)
        except ProviderError:
            # Released between our attempt and this read.
            return False
        return time.time() - written > STALE_LOCK_SECONDS

    def _write(self, changeset: Changeset) -> None:
        self.files.write_text(self._path(changeset.id), dump_changeset(changeset))
        self.token.raise_if_cancelled()

    def create(
        self,
        workspace: Workspace,
        package: str,
        bump: BumpKind | str,
        description: str,
        author: str,
        *,
        environments: Iterable[str] = (),
        production_deployment: bool = False,
    ) -> Changeset:
        """Validate and persist a new pending changeset.

        Raises:
            ChangesetError: If the package is not an internal package, the
                bump is unknown, the description or author is empty, or the
                record cannot be written.
        """
        if not workspace.is_internal(package):
            raise ChangesetError(f"Unknown package: {package}", packages=[package])
        try:
            bump = BumpKind(bump)
        except ValueError as e:
            raise ChangesetError(f"Invalid bump kind: {bump!r}", causes=[e]) from e
        if not description.strip():
            raise ChangesetError("Changeset description must not be empty", packages=[package])
        if not author.strip():
            raise ChangesetError("Changeset author must not be empty", packages=[package])

        now = datetime.now(timezone.utc)
        changeset = Changeset(
            id=self.new_id(),
            package=package,
            bump=bump,
            description=description.strip(),
            author=author.strip(),
            created_at=now.replace(microsecond=now.microsecond // 1000 * 1000),
            environments=tuple(dict.fromkeys(environments)),
            production_deployment=production_deployment,
        )
        with self._locked():
            self._write_new(changeset)
        return changeset

    def _write_new(self, changeset: Changeset) -> None:
        if self.files.exists(self._path(changeset.id)):
            raise ChangesetError(f"Changeset {changeset.id} already exists")
        try:
            self._write(changeset)
        except ProviderError as e:
            raise ChangesetError(f"Cannot write changeset {changeset.id}: {e}", causes=[e]) from e

    def _load(self, path: Path) -> Changeset:
        text = self.files.read_text(path)
        self.token.raise_if_cancelled()
        try:
            return load_changeset(text)
        except (ValueError, TOMLKitError) as e:
            raise ChangesetError(f"Corrupt changeset record {path.name}: {e}", causes=[e]) from e

    def get(self, changeset_id: str) -> Changeset:
        """Return one changeset.

        Raises:
            ChangesetError: If no record has this id.
        """
        path = self._path(changeset_id)
        if not self.files.exists(path):
            raise ChangesetError(f"No changeset with id {changeset_id}")
        return self._load(path)

    def record_paths(self) -> list[Path]:
        if not self.files.exists(self.directory):
            return []
        entries = self.files.walk(self.directory)
        self.token.raise_if_cancelled()
        return [
            self.directory / e.path
            for e in entries
            if not e.is_dir and "/" not in e.path and e.path.endswith(RECORD_SUFFIX)
            and not e.path.startswith(".")
        ]

    def list(
        self,
        *,
        status: ChangesetStatus | None = None,
        package: str | None = None,
        author: str | None = None,
        environment: str | None = None,
    ) -> list[Changeset]:
        """Return matching changesets, oldest first.

        A changeset without environments targets every environment.
        """
        found: list[Changeset] = []
        for path in self.record_paths():
            try:
                changeset = self._load(path)
            except ProviderError:
                # Removed by a concurrent compaction.
                if self.files.exists(path):
                    raise
                continue
            if status is not None and changeset.status is not status:
                continue
            if package is not None and changeset.package != package:
                continue
            if author is not None and changeset.author != author:
                continue
            if environment is not None and not applies_to(changeset, environment):
                continue
            found.append(changeset)
        return sorted(found, key=lambda c: c.id)

    def pending(self, environment: str | None = None) -> list[Changeset]:
        return self.list(status=ChangesetStatus.PENDING, environment=environment)

    def _transition(self, changeset_id: str, status: ChangesetStatus) -> Changeset:
        with self._locked():
            current = self.get(changeset_id)
            if current.status is not ChangesetStatus.PENDING:
                raise ChangesetError(
                    f"Changeset {changeset_id} is {current.status.value}, not pending",
                    packages=[current.package],
                )
            updated = current.model_copy(update={"status": status})
            try:
                self._write(updated)
            except ProviderError as e:
                raise ChangesetError(f"Cannot update changeset {changeset_id}: {e}", causes=[e]) from e
        return updated

    def mark_applied(self, changeset_id: str) -> Changeset:
        return self._transition(changeset_id, ChangesetStatus.APPLIED)

    def discard(self, changeset_id: str) -> Changeset:
        return self._transition(changeset_id, ChangesetStatus.DISCARDED)

    def compact(self) -> list[str]:
        """Delete applied and discarded records.

        Returns:
            Ids of the removed records.
        """
        removed: list[str] = []
        with self._locked():
            for changeset in self.list():
                if changeset.status is ChangesetStatus.PENDING:
                    continue
                self.files.remove(self._path(changeset.id))
                self.token.raise_if_cancelled()
                removed.append(changeset.id)
        return removed


def applies_to(changeset: Changeset, environment: str) -> bool:
    return not changeset.environments or environment in changeset.environments
