"""
Unpacker — extract a staged archive into ``bin/<tag>``.

Extraction happens in a ``bin/.staging-<tag>-*`` directory which is
renamed to ``bin/<tag>`` only once the entry point is confirmed to be
an executable file.  A failed or interrupted unpack removes its staging
directory, so the store never sees a half-installed version.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path

from bendctl.core.errors import CorruptPackage, VersionAlreadyInstalled
from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import STAGING_PREFIX, validate_tag
from bendctl.core.persistence.index_file import fsync_dir
from bendctl.core.services.store import VersionStore

logger = logging.getLogger(__name__)


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class Unpacker:
    """Extracts archives into the store's managed tree."""

    def __init__(self, config: CtlConfig, store: VersionStore) -> None:
        self._config = config
        self._store = store

    def unpack(self, archive: Path, tag: str) -> Path:
        """Extract ``archive`` as version ``tag``.

        Returns:
            The final install directory.

        Raises:
            VersionAlreadyInstalled: ``tag`` is already recorded.
            CorruptPackage: Unreadable archive or missing/non-executable
                entry point.
        """
        tag = validate_tag(tag)
        profile = self._store.profile
        target = profile.install_dir(tag)
        profile.bin_dir.mkdir(parents=True, exist_ok=True)

        self._clear_leftover(tag, target)

        staging = Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{tag}-", dir=profile.bin_dir))
        try:
            members = self._extract(archive, staging)
            self._check_entry_point(staging, tag)
            if target.exists():
                raise VersionAlreadyInstalled(f"{tag} was installed by another process")
            os.rename(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        fsync_dir(profile.bin_dir)
        logger.info("Unpacked %s (%d entries) into %s", archive.name, members, target)
        return target

    def _clear_leftover(self, tag: str, target: Path) -> None:
        """Purge a directory left behind by an earlier failed attempt."""
        with self._store.locked():
            if self._store.find(tag) is not None:
                raise VersionAlreadyInstalled(f"{tag} is already installed")
            if target.exists() or target.is_symlink():
                logger.warning("Removing leftover directory for unrecorded %s", tag)
                _remove_path(target)

    def _extract(self, archive: Path, dest: Path) -> int:
        try:
            with tarfile.open(archive, "r:*") as tar:
                members = tar.getmembers()
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
            raise CorruptPackage(f"Cannot extract {archive.name}: {e}") from e
        return len(members)

    def _check_entry_point(self, root: Path, tag: str) -> Path:
        entry = root / self._config.entry_point
        if not entry.is_file():
            raise CorruptPackage(f"{tag}: {self._config.entry_point} is missing from the archive")
        if entry.stat().st_size == 0:
            raise CorruptPackage(f"{tag}: {self._config.entry_point} is empty")
        if not os.access(entry, os.X_OK):
            raise CorruptPackage(f"{tag}: {self._config.entry_point} is not executable")
        return entry
