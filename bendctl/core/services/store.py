"""
Version store — the authoritative record of installed releases.

The store owns a profile's directory tree and its ``versions.json``
index.  Every open cross-checks the index against the tree and the
current pointer; any disagreement raises ``StoreCorruption`` instead of
being papered over.

Mutations (``record``, ``mark_current``, ``remove``) run under the
profile lock, re-read the index first (another process may have
changed it), apply the change to a copy and only adopt the copy once
it is durably on disk.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from bendctl.core.errors import (
    StoreCorruption,
    VersionAlreadyInstalled,
    VersionInUse,
    VersionNotInstalled,
)
from bendctl.core.models.profile import POINTER_LINK, STAGING_PREFIX, Profile, validate_tag
from bendctl.core.models.version import InstalledVersion, VersionIndex
from bendctl.core.persistence.index_file import load_index, save_index
from bendctl.core.persistence.lock import ProfileLock
from bendctl.core.persistence.pointer import CurrentPointer

logger = logging.getLogger(__name__)


# ── Consistency checks ──────────────────────────────────────────


def find_problems(index: VersionIndex, pointer_tag: str | None) -> list[str]:
    """Return every invariant violation between index, tree and pointer."""
    problems: list[str] = []

    seen: set[str] = set()
    for record in index.versions:
        if record.tag in seen:
            problems.append(f"Duplicate record for {record.tag}")
        seen.add(record.tag)
        if not Path(record.install_path).is_dir():
            problems.append(f"Install directory of {record.tag} is missing: {record.install_path}")

    current = index.current_tags()
    if len(current) > 1:
        problems.append(f"More than one current version: {', '.join(current)}")

    if not index.is_empty and not current:
        problems.append("No version is marked current")

    index_current = current[0] if current else None
    if pointer_tag != index_current:
        if pointer_tag is None:
            problems.append(f"Index marks {index_current} current but the current pointer is unset")
        elif index_current is None:
            problems.append(f"Current pointer names {pointer_tag} but no version is marked current")
        else:
            problems.append(
                f"Current pointer names {pointer_tag} but the index marks {index_current} current"
            )

    return problems


@dataclass
class StoreReport:
    """Result of a read-only store inspection."""

    profile: str
    versions: int = 0
    current: str | None = None
    pointer: str | None = None
    problems: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    staging: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "healthy": self.healthy,
            "versions": self.versions,
            "current": self.current,
            "pointer": self.pointer,
            "problems": self.problems,
            "orphans": self.orphans,
            "staging": self.staging,
        }


def scan_tree(profile: Profile, index: VersionIndex) -> tuple[list[str], list[str]]:
    """Directories under ``bin/`` that the index does not know about.

    Returns:
        ``(orphans, staging)`` — complete-looking version directories
        with no record, and leftover extraction staging directories.
    """
    orphans: list[str] = []
    staging: list[str] = []
    if not profile.bin_dir.is_dir():
        return orphans, staging

    known = {r.tag for r in index.versions}
    for entry in sorted(profile.bin_dir.iterdir()):
        if entry.is_symlink() or not entry.is_dir():
            continue
        if entry.name.startswith(STAGING_PREFIX):
            staging.append(entry.name)
        elif entry.name.startswith(".") or entry.name == POINTER_LINK:
            continue
        elif entry.name not in known:
            orphans.append(entry.name)
    return orphans, staging


def inspect_store(profile: Profile) -> StoreReport:
    """Inspect a profile without raising on corruption."""
    report = StoreReport(profile=profile.name)
    try:
        index = load_index(profile.index_path)
    except StoreCorruption as e:
        report.problems.append(e.message)
        return report

    pointer = CurrentPointer(profile).read()
    current = index.current()
    report.versions = len(index.versions)
    report.current = current.tag if current else None
    report.pointer = pointer
    report.problems = find_problems(index, pointer)
    report.orphans, report.staging = scan_tree(profile, index)
    return report


# ── Store ───────────────────────────────────────────────────────


class VersionStore:
    """Handle on one profile's installed versions.

    Obtain it with ``VersionStore.open(profile)`` and pass it to every
    component that needs the store; there is no process-global store.
    """

    def __init__(
        self,
        profile: Profile,
        index: VersionIndex,
        *,
        lock_timeout: float = 10.0,
        pointer: CurrentPointer | None = None,
    ) -> None:
        self._profile = profile
        self._index = index
        self._lock_timeout = lock_timeout
        self._pointer = pointer or CurrentPointer(profile)
        self._lock: ProfileLock | None = None

    @classmethod
    def open(
        cls,
        profile: Profile,
        *,
        lock_timeout: float = 10.0,
        pointer: CurrentPointer | None = None,
    ) -> VersionStore:
        """Load and validate the store of ``profile``.

        Raises:
            StoreCorruption: If the index, tree and pointer disagree.
        """
        pointer = pointer or CurrentPointer(profile)
        index = cls._load_checked(profile, pointer)
        logger.debug("Opened store %s (%d versions)", profile.root, len(index.versions))
        return cls(profile, index, lock_timeout=lock_timeout, pointer=pointer)

    @staticmethod
    def _load_checked(profile: Profile, pointer: CurrentPointer) -> VersionIndex:
        index = load_index(profile.index_path)
        problems = find_problems(index, pointer.read())
        if problems:
            for problem in problems:
                logger.error("Store %s: %s", profile.name, problem)
            raise StoreCorruption(
                f"Profile '{profile.name}' is inconsistent: {'; '.join(problems)}",
                problems=problems,
            )
        return index

    # ── Accessors ───────────────────────────────────────────────

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def pointer(self) -> CurrentPointer:
        return self._pointer

    def list(self) -> list[InstalledVersion]:
        """Installed versions, most recently installed first."""
        return [r.model_copy() for r in self._index.newest_first()]

    def get_current(self) -> InstalledVersion | None:
        current = self._index.current()
        return current.model_copy() if current else None

    def find(self, tag: str) -> InstalledVersion | None:
        record = self._index.find(tag)
        return record.model_copy() if record else None

    def drift(self) -> tuple[list[str], list[str]]:
        """See ``scan_tree``."""
        return scan_tree(self._profile, self._index)

    # ── Locking ─────────────────────────────────────────────────

    @contextmanager
    def locked(self) -> Iterator[VersionStore]:
        """Hold the profile lock and work on a freshly validated index.

        Re-entrant: nested use inside an outer ``locked()`` block is a
        no-op.
        """
        if self._lock is not None:
            yield self
            return

        lock = ProfileLock(self._profile.lock_path, timeout=self._lock_timeout)
        with lock:
            self._lock = lock
            try:
                self.reload()
                yield self
            finally:
                self._lock = None

    def reload(self) -> None:
        """Re-read and re-validate the index from disk."""
        self._index = self._load_checked(self._profile, self._pointer)

    def _require_lock(self) -> None:
        if self._lock is None:
            raise RuntimeError("Store mutation attempted without holding the profile lock")

    def _commit(self, index: VersionIndex) -> None:
        save_index(index, self._profile.index_path)
        self._index = index

    # ── Mutations ───────────────────────────────────────────────

    def record(self, tag: str, path: Path) -> InstalledVersion:
        """Record a freshly unpacked version.

        The first version recorded in an empty store becomes current.

        Raises:
            VersionAlreadyInstalled: If ``tag`` already has a record.
            StoreLocked: If the profile lock cannot be acquired.
        """
        tag = validate_tag(tag)
        with self.locked():
            if self._index.find(tag) is not None:
                raise VersionAlreadyInstalled(f"{tag} is already installed")
            if not path.is_dir():
                raise VersionNotInstalled(f"Install directory for {tag} does not exist")

            activate = self._index.current() is None
            record = InstalledVersion(tag=tag, install_path=str(path), is_current=activate)
            index = self._index.model_copy(deep=True)
            index.add(record)

            if activate:
                self._pointer.write(tag)
                try:
                    self._commit(index)
                except BaseException:
                    self._pointer.clear()
                    raise
            else:
                self._commit(index)

        logger.info("Recorded %s at %s%s", tag, path, " (current)" if activate else "")
        return record.model_copy()

    def mark_current(self, tag: str) -> None:
        """Make ``tag`` the only current record. Caller holds the lock."""
        self._require_lock()
        if self._index.find(tag) is None:
            raise VersionNotInstalled(f"{tag} is not installed")
        index = self._index.model_copy(deep=True)
        index.set_current(tag)
        self._commit(index)

    def remove(self, tag: str, *, purge_downloads: bool = True) -> InstalledVersion:
        """Uninstall ``tag``. The current version cannot be removed.

        Raises:
            VersionNotInstalled: If there is no record for ``tag``.
            VersionInUse: If ``tag`` is the current version.
        """
        with self.locked():
            record = self._index.find(tag)
            if record is None:
                raise VersionNotInstalled(f"{tag} is not installed")
            if record.is_current:
                raise VersionInUse(f"{tag} is the current version; switch to another version first")

            index = self._index.model_copy(deep=True)
            index.drop(tag)
            self._commit(index)

            shutil.rmtree(record.install_path, ignore_errors=True)
            if purge_downloads:
                shutil.rmtree(self._profile.download_dir(tag), ignore_errors=True)

        logger.info("Removed %s", tag)
        return record.model_copy()


# ── Explicit repair ─────────────────────────────────────────────


def repair_store(profile: Profile, *, lock_timeout: float = 10.0) -> list[str]:
    """Bring a corrupt profile back to a consistent state.

    Only run on operator request.  Rules, in order:

    1. Records whose install directory is gone are dropped.
    2. Exactly one record stays current: the pointer's tag if it is
       still recorded, else the previously current one, else the newest.
    3. The pointer is rewritten from the index.
    4. Staging leftovers and orphan version directories are deleted.

    Returns:
        Human-readable list of the actions taken (empty if none).
    """
    actions: list[str] = []
    pointer = CurrentPointer(profile)

    with ProfileLock(profile.lock_path, timeout=lock_timeout):
        index = load_index(profile.index_path)
        pointer_tag = pointer.read()
        fixed = index.model_copy(deep=True)

        seen: set[str] = set()
        kept: list[InstalledVersion] = []
        for record in fixed.versions:
            if record.tag in seen:
                actions.append(f"Dropped duplicate record for {record.tag}")
                continue
            if not Path(record.install_path).is_dir():
                actions.append(f"Dropped {record.tag}: install directory missing")
                continue
            seen.add(record.tag)
            kept.append(record)
        fixed.versions = kept

        if fixed.versions:
            current_tags = fixed.current_tags()
            if pointer_tag and fixed.find(pointer_tag) is not None:
                target = pointer_tag
            elif current_tags:
                target = current_tags[-1]
            else:
                target = fixed.newest_first()[0].tag
            if current_tags != [target]:
                actions.append(f"Marked {target} as the only current version")
            fixed.set_current(target)
        else:
            target = None

        if fixed.model_dump(exclude={"updated_at"}) != index.model_dump(exclude={"updated_at"}):
            save_index(fixed, profile.index_path)

        if pointer_tag != target:
            if target is None:
                pointer.clear()
                actions.append("Cleared current pointer (store is empty)")
            else:
                pointer.write(target)
                actions.append(f"Current pointer → {target}")

        orphans, staging = scan_tree(profile, fixed)
        for name in staging + orphans:
            shutil.rmtree(profile.bin_dir / name, ignore_errors=True)
            actions.append(f"Deleted unrecorded directory bin/{name}")

    for action in actions:
        logger.warning("Repair %s: %s", profile.name, action)
    return actions
