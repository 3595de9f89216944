"""
Tests for host platform detection.
"""

import subprocess
from unittest.mock import patch

import pytest

from bendctl.core.errors import UnsupportedPlatform
from bendctl.core.models.config import DEFAULT_PLATFORMS
from bendctl.core.services.platform import detect_platform, host_platform

_MOD = "bendctl.core.services.platform"


def _completed(stdout: str = "", stderr: str = "", code: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=code, stdout=stdout, stderr=stderr)


class TestHostPlatform:
    def test_linux_glibc(self):
        with patch(f"{_MOD}.platform.system", return_value="Linux"), \
             patch(f"{_MOD}.platform.machine", return_value="x86_64"), \
             patch(f"{_MOD}.platform.libc_ver", return_value=("glibc", "2.35")):
            assert host_platform().triple == "x86_64-unknown-linux-gnu"

    def test_linux_musl_via_ldd(self):
        banner = "musl libc (x86_64)\nVersion 1.2.4\n"
        with patch(f"{_MOD}.platform.system", return_value="Linux"), \
             patch(f"{_MOD}.platform.machine", return_value="aarch64"), \
             patch(f"{_MOD}.platform.libc_ver", return_value=("", "")), \
             patch(f"{_MOD}.shutil.which", return_value="/usr/bin/ldd"), \
             patch(f"{_MOD}.subprocess.run", return_value=_completed(stderr=banner, code=1)):
            assert host_platform().triple == "aarch64-unknown-linux-musl"

    def test_linux_ldd_missing_defaults_to_gnu(self):
        with patch(f"{_MOD}.platform.system", return_value="Linux"), \
             patch(f"{_MOD}.platform.machine", return_value="x86_64"), \
             patch(f"{_MOD}.platform.libc_ver", return_value=("", "")), \
             patch(f"{_MOD}.shutil.which", return_value=None):
            assert host_platform().libc == "gnu"

    def test_arm64_alias(self):
        with patch(f"{_MOD}.platform.system", return_value="Darwin"), \
             patch(f"{_MOD}.platform.machine", return_value="arm64"):
            assert host_platform().triple == "aarch64-apple-darwin"

    def test_rosetta_gets_native_build(self):
        with patch(f"{_MOD}.platform.system", return_value="Darwin"), \
             patch(f"{_MOD}.platform.machine", return_value="x86_64"), \
             patch(f"{_MOD}.shutil.which", return_value="/usr/sbin/sysctl"), \
             patch(f"{_MOD}.subprocess.run", return_value=_completed(stdout="1\n")):
            assert host_platform().triple == "aarch64-apple-darwin"

    def test_intel_mac(self):
        with patch(f"{_MOD}.platform.system", return_value="Darwin"), \
             patch(f"{_MOD}.platform.machine", return_value="x86_64"), \
             patch(f"{_MOD}.shutil.which", return_value="/usr/sbin/sysctl"), \
             patch(f"{_MOD}.subprocess.run", return_value=_completed(stdout="0\n")):
            assert host_platform().triple == "x86_64-apple-darwin"


class TestDetectPlatform:
    def test_supported(self):
        with patch(f"{_MOD}.platform.system", return_value="Linux"), \
             patch(f"{_MOD}.platform.machine", return_value="amd64"), \
             patch(f"{_MOD}.platform.libc_ver", return_value=("glibc", "2.35")):
            assert detect_platform(DEFAULT_PLATFORMS).triple == "x86_64-unknown-linux-gnu"

    def test_windows_unsupported(self):
        with patch(f"{_MOD}.platform.system", return_value="Windows"), \
             patch(f"{_MOD}.platform.machine", return_value="AMD64"):
            with pytest.raises(UnsupportedPlatform, match="x86_64-pc-windows-msvc"):
                detect_platform(DEFAULT_PLATFORMS)

    def test_exotic_arch_unsupported(self):
        with patch(f"{_MOD}.platform.system", return_value="Linux"), \
             patch(f"{_MOD}.platform.machine", return_value="riscv64"), \
             patch(f"{_MOD}.platform.libc_ver", return_value=("glibc", "2.35")):
            with pytest.raises(UnsupportedPlatform):
                detect_platform(DEFAULT_PLATFORMS)
