"""
Error taxonomy for release management.

Services raise these; the packages use cases catch ``BendctlError``
(and plain ``OSError``, as ``StorageError``) and turn it into a single
status line.  ``kind`` is the stable name used in JSON output and the
audit ledger.
"""

from __future__ import annotations


class BendctlError(Exception):
    """Base class for every error bendctl reports to the operator."""

    kind = "error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class ConfigError(BendctlError):
    """Raised when the configuration file is invalid or unreadable."""

    kind = "config_error"


class InvalidTag(BendctlError):
    """Tag cannot be used as a directory name."""

    kind = "invalid_tag"


class UnsupportedPlatform(BendctlError):
    """No release archive is published for the host platform."""

    kind = "unsupported_platform"


class TagNotFound(BendctlError):
    """The requested tag does not exist in the remote listing."""

    kind = "tag_not_found"


class NetworkError(BendctlError):
    """Transport failure talking to the release server."""

    kind = "network_error"
    retryable = True

    def __init__(self, message: str = "", *, status: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class IntegrityError(BendctlError):
    """Downloaded archive failed verification."""

    kind = "integrity_error"


class CorruptPackage(BendctlError):
    """Archive extracted but does not contain a usable binary."""

    kind = "corrupt_package"


class VersionNotInstalled(BendctlError):
    kind = "version_not_installed"


class VersionAlreadyInstalled(BendctlError):
    kind = "version_already_installed"


class VersionInUse(BendctlError):
    """Refusing to remove the current version."""

    kind = "version_in_use"


class StoreLocked(BendctlError):
    """Another bendctl process holds the profile lock."""

    kind = "store_locked"
    retryable = True


class StoreCorruption(BendctlError):
    """The version index and the directory tree disagree.

    Never repaired implicitly; ``bendctl packages verify`` lists the
    problems and ``bendctl packages repair`` fixes what it safely can.
    """

    kind = "store_corruption"

    def __init__(self, message: str = "", problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        if not message and self.problems:
            message = "; ".join(self.problems)
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["problems"] = self.problems
        return data


class StorageError(BendctlError):
    """Reading or writing the profile directory failed."""

    kind = "storage_error"

    @classmethod
    def from_os_error(cls, error: OSError) -> StorageError:
        where = f" ({error.filename})" if error.filename else ""
        return cls(f"{error.strerror or error}{where}")
