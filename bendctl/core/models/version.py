"""
Version index — the persisted record of installed releases.

Serialized to ``<profile>/versions.json`` and loaded on every
operation.  The index is the single source of truth; the directory
tree under ``bin/`` is cross-checked against it, never trusted alone.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class InstalledVersion(BaseModel):
    """One installed release."""

    tag: str
    install_path: str
    installed_at: str = Field(default_factory=_now_iso)
    is_current: bool = False


class VersionIndex(BaseModel):
    """Root index model — serialized to versions.json.

    ``versions`` is kept in install order (oldest first).
    """

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    updated_at: str = Field(default_factory=_now_iso)

    # ── Records ──────────────────────────────────────────────────
    versions: list[InstalledVersion] = Field(default_factory=list)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    @property
    def is_empty(self) -> bool:
        return not self.versions

    def find(self, tag: str) -> InstalledVersion | None:
        """Look up a record by tag."""
        for record in self.versions:
            if record.tag == tag:
                return record
        return None

    def current(self) -> InstalledVersion | None:
        """The current record, or None (first one wins if several)."""
        for record in self.versions:
            if record.is_current:
                return record
        return None

    def current_tags(self) -> list[str]:
        return [r.tag for r in self.versions if r.is_current]

    def newest_first(self) -> list[InstalledVersion]:
        """Records ordered most recently installed first."""
        return list(reversed(self.versions))

    def add(self, record: InstalledVersion) -> None:
        self.versions.append(record)

    def set_current(self, tag: str) -> None:
        """Flip ``is_current`` so that only ``tag`` is current."""
        for record in self.versions:
            record.is_current = record.tag == tag

    def drop(self, tag: str) -> InstalledVersion | None:
        """Remove and return the record for ``tag``."""
        for i, record in enumerate(self.versions):
            if record.tag == tag:
                return self.versions.pop(i)
        return None
