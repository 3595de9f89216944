"""
Packages use cases — fetch, list and switch releases.

This is the layer the CLI talks to.  Each function builds the store
and services it needs for one profile, runs the operation and returns
a result object; no ``BendctlError`` or ``OSError`` escapes from here.  Failures are
turned into a single ``StatusLine`` naming the step that failed.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from bendctl.core.errors import BendctlError, StorageError, StoreCorruption
from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import Profile
from bendctl.core.models.version import InstalledVersion
from bendctl.core.persistence.audit import AuditEntry, AuditWriter
from bendctl.core.persistence.index_file import load_index
from bendctl.core.services.fetcher import LATEST, ArchiveFetcher, ProgressCallback
from bendctl.core.services.store import StoreReport, VersionStore, inspect_store, repair_store
from bendctl.core.services.switcher import Switcher
from bendctl.core.services.unpacker import Unpacker

logger = logging.getLogger(__name__)

_ERROR_PREFIX = {
    "config_error": "Configuration error",
    "invalid_tag": "Invalid version tag",
    "unsupported_platform": "Unsupported platform",
    "tag_not_found": "Unknown version",
    "network_error": "Network error",
    "integrity_error": "Download failed verification",
    "corrupt_package": "Corrupt package",
    "version_not_installed": "Version not installed",
    "version_already_installed": "Already installed",
    "version_in_use": "Version in use",
    "store_locked": "Profile busy",
    "store_corruption": "Profile store is corrupt (run 'bendctl packages verify')",
    "storage_error": "Storage error",
}


def describe_error(error: BendctlError) -> str:
    """One human-readable line for ``error``."""
    prefix = _ERROR_PREFIX.get(error.kind, "Error")
    hint = " — try again" if error.retryable else ""
    return f"{prefix}: {error.message}{hint}"


# ── Result types ────────────────────────────────────────────────


@dataclass
class StatusLine:
    """One step of an operation, as shown to the operator."""

    ok: bool
    step: str
    message: str

    def to_dict(self) -> dict:
        return {"ok": self.ok, "step": self.step, "message": self.message}


@dataclass
class _Result:
    profile: str = ""
    lines: list[StatusLine] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def _add(self, step: str, message: str) -> None:
        self.lines.append(StatusLine(ok=True, step=step, message=message))

    def _fail(self, step: str, error: BendctlError | OSError) -> None:
        if isinstance(error, OSError):
            error = StorageError.from_os_error(error)
        self.error = describe_error(error)
        self.error_kind = error.kind
        self.lines.append(StatusLine(ok=False, step=step, message=self.error))

    def _base_dict(self) -> dict:
        data: dict = {"ok": self.ok, "profile": self.profile}
        if self.lines:
            data["steps"] = [line.to_dict() for line in self.lines]
        if self.error:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        return data


@dataclass
class FetchResult(_Result):
    requested: str = LATEST
    tag: str | None = None
    platform: str | None = None
    install_path: str | None = None
    current: bool = False
    already_installed: bool = False

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "requested": self.requested,
            "tag": self.tag,
            "platform": self.platform,
            "install_path": self.install_path,
            "current": self.current,
            "already_installed": self.already_installed,
        })
        return data


@dataclass
class VersionRow:
    version: str
    path: str
    current: bool
    installed_at: str = ""

    @classmethod
    def from_record(cls, record: InstalledVersion) -> VersionRow:
        return cls(
            version=record.tag,
            path=record.install_path,
            current=record.is_current,
            installed_at=record.installed_at,
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "path": self.path,
            "current": self.current,
            "installed_at": self.installed_at,
        }


@dataclass
class ListResult(_Result):
    rows: list[VersionRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["versions"] = [row.to_dict() for row in self.rows]
        return data


@dataclass
class SwitchResult(_Result):
    tag: str = ""
    previous: str | None = None
    changed: bool = False

    @property
    def line(self) -> StatusLine | None:
        return self.lines[-1] if self.lines else None

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({"tag": self.tag, "previous": self.previous, "changed": self.changed})
        return data


@dataclass
class CurrentResult(_Result):
    row: VersionRow | None = None

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["current"] = self.row.to_dict() if self.row else None
        return data


@dataclass
class RemoveResult(_Result):
    tag: str = ""

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["tag"] = self.tag
        return data


@dataclass
class VerifyResult(_Result):
    report: StoreReport | None = None

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["report"] = self.report.to_dict() if self.report else None
        return data


@dataclass
class RepairResult(_Result):
    actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self._base_dict()
        data["actions"] = self.actions
        return data


# ── Audit helper ────────────────────────────────────────────────


def _audit(
    profile: Profile,
    operation: str,
    tag: str,
    result: _Result,
    started: float,
    *,
    status: str | None = None,
    **context: object,
) -> None:
    entry = AuditEntry(
        operation=operation,
        profile=profile.name,
        tag=tag,
        status=status or ("ok" if result.ok else "failed"),
        error_kind=result.error_kind or "",
        message=result.error or "",
        duration_ms=int((time.monotonic() - started) * 1000),
        context={k: v for k, v in context.items() if v is not None},
    )
    AuditWriter(profile.audit_path).write(entry)


def _discard_unrecorded(profile: Profile, tag: str, path: Path) -> None:
    """Delete an unpacked directory unless the index has recorded it."""
    try:
        if load_index(profile.index_path).find(tag) is not None:
            return
    except StoreCorruption:
        return
    shutil.rmtree(path, ignore_errors=True)


# ── Operations ──────────────────────────────────────────────────


def fetch_version(
    config: CtlConfig,
    profile: Profile,
    tag_or_latest: str = LATEST,
    *,
    progress: ProgressCallback | None = None,
    keep_download: bool | None = None,
    fetcher: ArchiveFetcher | None = None,
) -> FetchResult:
    """Resolve, download, unpack and record a release.

    One status line is produced per completed step; the first failing
    step ends the operation with a failure line.  The first version
    fetched into an empty profile becomes current.
    """
    started = time.monotonic()
    result = FetchResult(profile=profile.name, requested=tag_or_latest)
    keep = config.keep_downloads if keep_download is None else keep_download
    step = "Store"
    unpacked: Path | None = None

    try:
        store = VersionStore.open(profile, lock_timeout=config.lock_timeout)
        fetcher = fetcher or ArchiveFetcher(config, profile)

        step = "Arch"
        result.platform = fetcher.platform.triple
        result._add(step, f"Arch {result.platform}")

        step = "Tag"
        ref = fetcher.resolve(tag_or_latest)
        result.tag = ref.tag
        result._add(step, f"Tag {ref.tag}")

        existing = store.find(ref.tag)
        if existing is not None:
            result.already_installed = True
            result.install_path = existing.install_path
            result.current = existing.is_current
            result._add("Installed", f"Installed {ref.tag} is already at {existing.install_path}")
            _audit(profile, "fetch", ref.tag, result, started, status="noop")
            return result

        step = "Download"
        archive = fetcher.fetch(ref, progress=progress)
        if fetcher.reused:
            result._add(step, f"Download {ref.archive_name} (already staged)")
        else:
            result._add(step, f"Download {ref.url}")

        step = "Unpack"
        unpacked = Unpacker(config, store).unpack(archive, ref.tag)
        result._add(step, f"Unpack {unpacked}")

        step = "Record"
        record = store.record(ref.tag, unpacked)
        unpacked = None
        result.install_path = record.install_path
        result.current = record.is_current
        suffix = " (current)" if record.is_current else ""
        result._add(step, f"Record {ref.tag}{suffix}")

        if not keep:
            shutil.rmtree(profile.download_dir(ref.tag), ignore_errors=True)

    except (BendctlError, OSError) as e:
        logger.debug("fetch %s failed at %s: %s", tag_or_latest, step, e)
        if unpacked is not None and result.tag:
            _discard_unrecorded(profile, result.tag, unpacked)
        result._fail(step, e)
    except KeyboardInterrupt:
        if unpacked is not None and result.tag:
            _discard_unrecorded(profile, result.tag, unpacked)
        _audit(profile, "fetch", result.tag or tag_or_latest, result, started,
               status="interrupted", step=step)
        raise

    _audit(profile, "fetch", result.tag or tag_or_latest, result, started,
           platform=result.platform, step=None if result.ok else step)
    return result


def list_versions(config: CtlConfig, profile: Profile) -> ListResult:
    """Installed versions, most recently installed first."""
    result = ListResult(profile=profile.name)
    try:
        store = VersionStore.open(profile, lock_timeout=config.lock_timeout)
    except (BendctlError, OSError) as e:
        result._fail("List", e)
        return result
    result.rows = [VersionRow.from_record(r) for r in store.list()]
    return result


def switch_version(config: CtlConfig, profile: Profile, tag: str) -> SwitchResult:
    """Make ``tag`` the current version."""
    started = time.monotonic()
    result = SwitchResult(profile=profile.name, tag=tag)
    try:
        store = VersionStore.open(profile, lock_timeout=config.lock_timeout)
        outcome = Switcher(store).switch_to(tag)
    except (BendctlError, OSError) as e:
        result._fail("Switch", e)
        _audit(profile, "switch", tag, result, started)
        return result

    result.previous = outcome.previous
    result.changed = outcome.changed
    if outcome.changed:
        was = f" (was {outcome.previous})" if outcome.previous else ""
        result._add("Switch", f"Switch {tag} is now current{was}")
        _audit(profile, "switch", tag, result, started, previous=outcome.previous)
    else:
        result._add("Switch", f"Switch {tag} is already current")
        _audit(profile, "switch", tag, result, started, status="noop")
    return result


def current_version(config: CtlConfig, profile: Profile) -> CurrentResult:
    result = CurrentResult(profile=profile.name)
    try:
        store = VersionStore.open(profile, lock_timeout=config.lock_timeout)
    except (BendctlError, OSError) as e:
        result._fail("Current", e)
        return result
    current = store.get_current()
    result.row = VersionRow.from_record(current) if current else None
    return result


def remove_version(config: CtlConfig, profile: Profile, tag: str) -> RemoveResult:
    """Uninstall a version that is not current."""
    started = time.monotonic()
    result = RemoveResult(profile=profile.name, tag=tag)
    try:
        store = VersionStore.open(profile, lock_timeout=config.lock_timeout)
        store.remove(tag)
    except (BendctlError, OSError) as e:
        result._fail("Remove", e)
    else:
        result._add("Remove", f"Remove {tag}")
    _audit(profile, "remove", tag, result, started)
    return result


def verify_store(config: CtlConfig, profile: Profile) -> VerifyResult:
    """Read-only consistency report; never raises on corruption."""
    result = VerifyResult(profile=profile.name)
    try:
        result.report = inspect_store(profile)
    except OSError as e:
        result._fail("Verify", e)
        return result
    for problem in result.report.problems:
        result.lines.append(StatusLine(ok=False, step="Verify", message=problem))
    if result.report.problems:
        result.error = f"{len(result.report.problems)} problem(s) found"
        result.error_kind = "store_corruption"
    return result


def repair_store_state(config: CtlConfig, profile: Profile) -> RepairResult:
    """Operator-requested repair of an inconsistent profile."""
    started = time.monotonic()
    result = RepairResult(profile=profile.name)
    try:
        result.actions = repair_store(profile, lock_timeout=config.lock_timeout)
    except (BendctlError, OSError) as e:
        result._fail("Repair", e)
    else:
        for action in result.actions:
            result._add("Repair", action)
    _audit(profile, "repair", "", result, started,
           status=None if result.error or result.actions else "noop",
           actions=len(result.actions))
    return result


def history(profile: Profile, limit: int = 20) -> list[AuditEntry]:
    """Most recent ledger entries for ``profile``, oldest first."""
    return AuditWriter(profile.audit_path).read_recent(limit)
