"""
Current pointer — the atomically replaceable "which version is active".

Preferred form is a relative symlink ``bin/current -> <tag>`` so other
tools can run ``bin/current/bin/databend-query`` directly.  A new link
is created under a temporary name and ``os.replace``d over the old one,
which is atomic on POSIX: an observer sees the old target or the new
one, never neither.

Where symlinks are not available the pointer is a one-line
``current.tag`` file, written with the same temp-then-rename pattern.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

from bendctl.core.models.profile import Profile
from bendctl.core.persistence.index_file import fsync_dir

logger = logging.getLogger(__name__)


class CurrentPointer:
    """Read and atomically repoint the current version of a profile."""

    def __init__(self, profile: Profile, use_symlink: bool | None = None) -> None:
        self._profile = profile
        self._use_symlink = use_symlink

    @property
    def link(self) -> Path:
        return self._profile.pointer_link

    @property
    def file(self) -> Path:
        return self._profile.pointer_file

    def read(self) -> str | None:
        """Tag the pointer designates, or None if unset."""
        link = self.link
        if link.is_symlink():
            return Path(os.readlink(link)).name
        if self.file.is_file():
            tag = self.file.read_text(encoding="utf-8").strip()
            return tag or None
        return None

    def write(self, tag: str) -> None:
        """Atomically repoint to ``tag``."""
        if self._symlinks_supported():
            self._write_link(tag)
            # the link wins on read; drop a stale file form
            self.file.unlink(missing_ok=True)
        else:
            self._write_file(tag)
        logger.info("Current pointer → %s", tag)

    def clear(self) -> None:
        """Remove the pointer entirely (only valid for an empty store)."""
        if self.link.is_symlink():
            self.link.unlink()
        self.file.unlink(missing_ok=True)

    # ── Internals ───────────────────────────────────────────────

    def _symlinks_supported(self) -> bool:
        if self._use_symlink is not None:
            return self._use_symlink

        bin_dir = self._profile.bin_dir
        bin_dir.mkdir(parents=True, exist_ok=True)
        probe = bin_dir / f".probe-{secrets.token_hex(4)}"
        try:
            probe.symlink_to(".")
        except (OSError, NotImplementedError):
            self._use_symlink = False
        else:
            probe.unlink()
            self._use_symlink = True
        return self._use_symlink

    def _write_link(self, tag: str) -> None:
        bin_dir = self._profile.bin_dir
        bin_dir.mkdir(parents=True, exist_ok=True)
        tmp = bin_dir / f".current-{secrets.token_hex(4)}"
        try:
            tmp.symlink_to(tag, target_is_directory=True)
            os.replace(tmp, self.link)
        except BaseException:
            if tmp.is_symlink():
                tmp.unlink()
            raise
        fsync_dir(bin_dir)

    def _write_file(self, tag: str) -> None:
        root = self._profile.root
        root.mkdir(parents=True, exist_ok=True)
        tmp = root / f".current-{secrets.token_hex(4)}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(tag + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.file)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        fsync_dir(root)
