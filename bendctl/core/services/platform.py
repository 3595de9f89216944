"""
Platform detection — which archive variant fits this host.

Read-only system probes: ``platform``, ``ldd --version`` (musl vs
glibc) and ``sysctl sysctl.proc_translated`` (x86_64 Python running
under Rosetta on Apple silicon, which should still get the native
aarch64 build).
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
from collections.abc import Iterable

from bendctl.core.errors import UnsupportedPlatform
from bendctl.core.models.release import Platform

logger = logging.getLogger(__name__)

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "armv7l": "armv7",
    "armv6l": "arm",
}


def _normalise_arch(machine: str) -> str:
    machine = machine.lower()
    return _ARCH_ALIASES.get(machine, machine)


def _linux_libc() -> str:
    """``musl`` or ``gnu``."""
    name, _version = platform.libc_ver()
    if name == "glibc":
        return "gnu"

    if not shutil.which("ldd"):
        return "gnu"
    try:
        r = subprocess.run(
            ["ldd", "--version"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return "gnu"
    # musl's ldd prints its banner on stderr and exits 1
    if "musl" in (r.stdout + r.stderr).lower():
        return "musl"
    return "gnu"


def _running_under_rosetta() -> bool:
    if not shutil.which("sysctl"):
        return False
    try:
        r = subprocess.run(
            ["sysctl", "-in", "sysctl.proc_translated"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return r.stdout.strip() == "1"


def host_platform() -> Platform:
    """Describe the running host, without checking it is supported."""
    system = platform.system().lower()
    arch = _normalise_arch(platform.machine())

    if system == "linux":
        return Platform(arch=arch, vendor="unknown", os="linux", libc=_linux_libc())
    if system == "darwin":
        if arch == "x86_64" and _running_under_rosetta():
            arch = "aarch64"
        return Platform(arch=arch, vendor="apple", os="darwin")
    if system == "windows":
        return Platform(arch=arch, vendor="pc", os="windows", libc="msvc")
    return Platform(arch=arch, vendor="unknown", os=system or "unknown")


def detect_platform(supported: Iterable[str]) -> Platform:
    """Detect the host platform and make sure a release exists for it.

    Args:
        supported: Triples that have published archives.

    Raises:
        UnsupportedPlatform: If the host triple is not in ``supported``.
    """
    host = host_platform()
    supported = list(supported)
    if host.triple not in supported:
        raise UnsupportedPlatform(
            f"No release is published for {host.triple} "
            f"(supported: {', '.join(supported) or 'none'})"
        )
    logger.debug("Detected platform %s", host.triple)
    return host
