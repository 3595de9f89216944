"""
Release types — platform descriptor and resolved release reference.

Both are transient: produced per invocation by the fetcher and never
written to the index.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Platform:
    """Host architecture + OS triple, e.g. ``x86_64-unknown-linux-gnu``."""

    arch: str
    vendor: str
    os: str
    libc: str = ""

    @property
    def triple(self) -> str:
        parts = [self.arch, self.vendor, self.os]
        if self.libc:
            parts.append(self.libc)
        return "-".join(parts)

    @classmethod
    def parse(cls, triple: str) -> Platform:
        """Build a Platform from its triple string."""
        parts = triple.split("-")
        if len(parts) == 4:
            return cls(arch=parts[0], vendor=parts[1], os=parts[2], libc=parts[3])
        if len(parts) == 3:
            return cls(arch=parts[0], vendor=parts[1], os=parts[2])
        raise ValueError(f"Not a platform triple: {triple!r}")

    def __str__(self) -> str:
        return self.triple


@dataclass(frozen=True)
class ReleaseRef:
    """A tag resolved to a concrete archive for one platform."""

    tag: str
    platform: Platform
    archive_name: str
    url: str
    checksum_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "platform": self.platform.triple,
            "archive_name": self.archive_name,
            "url": self.url,
            "checksum_url": self.checksum_url,
        }
