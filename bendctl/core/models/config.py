"""
Tool configuration — where releases come from and how they are handled.

Loaded from an optional YAML file; every field has a working default
so bendctl runs without any configuration at all.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

DEFAULT_PLATFORMS = [
    "x86_64-unknown-linux-gnu",
    "x86_64-unknown-linux-musl",
    "aarch64-unknown-linux-gnu",
    "aarch64-unknown-linux-musl",
    "x86_64-apple-darwin",
    "aarch64-apple-darwin",
]


class CtlConfig(BaseModel):
    """Root configuration model."""

    version: int = 1

    # ── Remote ───────────────────────────────────────────────────
    tag_url: str = "https://api.github.com/repos/datafuselabs/databend/tags"
    download_url: str = "https://github.com/datafuselabs/databend/releases/download"
    archive_template: str = "databend-{tag}-{platform}.tar.gz"
    checksum_suffix: str = ".sha256"
    require_checksum: bool = False
    platforms: list[str] = Field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    max_tag_pages: int = Field(default=10, ge=1)

    # ── Package layout ───────────────────────────────────────────
    entry_point: str = "bin/databend-query"
    keep_downloads: bool = True

    # ── Timeouts / retries ───────────────────────────────────────
    network_timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    lock_timeout: float = Field(default=10.0, ge=0)

    @field_validator("download_url", "tag_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("entry_point")
    @classmethod
    def _relative_entry_point(cls, value: str) -> str:
        if not value or value.startswith("/") or ".." in value.split("/"):
            raise ValueError("entry_point must be a relative path inside the archive")
        return value

    def archive_name(self, tag: str, platform: str) -> str:
        return self.archive_template.format(tag=tag, platform=platform)
