"""
Profile — one isolated release tree on this host.

Every path the store, fetcher and unpacker touch is derived here so
the layout is defined in exactly one place::

    <root>/
        versions.json          index of installed versions
        audit.ndjson           operation ledger
        .lock                  profile lock file
        current.tag            pointer fallback (no symlink support)
        downloads/<tag>/       staged archives
        bin/<tag>/             extracted releases
        bin/current -> <tag>   current pointer
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from bendctl.core.errors import InvalidTag

INDEX_FILE = "versions.json"
AUDIT_FILE = "audit.ndjson"
LOCK_FILE = ".lock"
POINTER_FILE = "current.tag"
POINTER_LINK = "current"
STAGING_PREFIX = ".staging-"

_PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_tag(tag: str) -> str:
    """Ensure ``tag`` can be used as a single directory name.

    Raises:
        InvalidTag: If the tag is empty, hidden, reserved or contains
            a path separator.
    """
    tag = (tag or "").strip()
    if not tag:
        raise InvalidTag("Version tag is empty")
    if "/" in tag or "\\" in tag or tag.startswith(".") or "\x00" in tag:
        raise InvalidTag(f"Invalid version tag: {tag!r}")
    if tag == POINTER_LINK:
        raise InvalidTag(f"'{tag}' is reserved")
    return tag


@dataclass(frozen=True)
class Profile:
    """A named profile rooted at ``root``."""

    name: str
    root: Path

    def __post_init__(self) -> None:
        if not _PROFILE_NAME_RE.match(self.name):
            raise ValueError(f"Invalid profile name: {self.name!r}")

    @property
    def downloads_dir(self) -> Path:
        return self.root / "downloads"

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE

    @property
    def audit_path(self) -> Path:
        return self.root / AUDIT_FILE

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    @property
    def pointer_link(self) -> Path:
        return self.bin_dir / POINTER_LINK

    @property
    def pointer_file(self) -> Path:
        return self.root / POINTER_FILE

    def install_dir(self, tag: str) -> Path:
        return self.bin_dir / validate_tag(tag)

    def download_dir(self, tag: str) -> Path:
        return self.downloads_dir / validate_tag(tag)

    def ensure(self) -> None:
        """Create the profile skeleton if missing."""
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        self.bin_dir.mkdir(parents=True, exist_ok=True)
