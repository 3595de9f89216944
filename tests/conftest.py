"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import io
import json
import tarfile
import urllib.error
from pathlib import Path
from unittest.mock import patch

import pytest

from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import Profile
from bendctl.core.models.release import Platform

LINUX_GNU = Platform.parse("x86_64-unknown-linux-gnu")

TAG_URL = "https://api.github.com/repos/datafuselabs/databend/tags"
DOWNLOAD_URL = "https://github.com/datafuselabs/databend/releases/download"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own bendctl settings out of the tests."""
    for name in (
        "BENDCTL_HOME",
        "BENDCTL_PROFILE",
        "BENDCTL_CONFIG",
        "BENDCTL_LOG_LEVEL",
        "BENDCTL_LOG_FILE",
        "BENDCTL_LOG_FILE_LEVEL",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def profile(tmp_path: Path) -> Profile:
    """A fresh, empty profile under tmp_path."""
    return Profile(name="test", root=tmp_path / "home" / "test")


@pytest.fixture
def config() -> CtlConfig:
    """Defaults, with retries that never sleep long."""
    return CtlConfig(retry_base_delay=0, retry_max_delay=0, lock_timeout=1)


# ── Archives ────────────────────────────────────────────────────


def make_archive(
    files: dict[str, bytes] | None = None,
    *,
    mode: int = 0o755,
) -> bytes:
    """Build a .tar.gz in memory.

    By default it holds an executable ``bin/databend-query``.
    """
    if files is None:
        files = {"bin/databend-query": b"#!/bin/sh\necho databend\n"}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode if name.startswith("bin/") else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def write_archive(path: Path, data: bytes | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data if data is not None else make_archive())
    return path


def archive_url(tag: str, platform: Platform = LINUX_GNU) -> str:
    return f"{DOWNLOAD_URL}/{tag}/databend-{tag}-{platform.triple}.tar.gz"


# ── Fake remote ─────────────────────────────────────────────────


class FakeResponse:
    """Just enough of an ``http.client.HTTPResponse`` for the fetcher."""

    def __init__(self, body: bytes, headers: dict[str, str] | None = None) -> None:
        self._buf = io.BytesIO(body)
        self.headers = {"Content-Length": str(len(body))}
        self.headers.update(headers or {})

    def read(self, n: int = -1) -> bytes:
        return self._buf.read(n)

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        self._buf.close()


class FakeRemote:
    """Maps URLs to bodies (bytes), errors (Exception) or callables.

    Unknown URLs answer 404.
    """

    def __init__(self) -> None:
        self.routes: dict[str, object] = {}
        self.calls: list[str] = []
        self.requests: list[object] = []

    def tags(self, *tags: str) -> None:
        self.routes[TAG_URL] = json.dumps([{"name": t} for t in tags]).encode()

    def release(self, tag: str, data: bytes | None = None, platform: Platform = LINUX_GNU) -> bytes:
        body = data if data is not None else make_archive()
        self.routes[archive_url(tag, platform)] = body
        return body

    def count(self, url: str) -> int:
        return self.calls.count(url)

    def __call__(self, req: object, timeout: float | None = None) -> FakeResponse:
        url = getattr(req, "full_url", req)
        self.calls.append(url)
        self.requests.append(req)
        route = self.routes.get(url)
        if callable(route):
            route = route()
        if route is None:
            raise urllib.error.HTTPError(url, 404, "Not Found", {}, None)
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(route)


@pytest.fixture
def remote() -> FakeRemote:
    """Patch urlopen with an in-memory release server."""
    fake = FakeRemote()
    with patch("bendctl.core.services.fetcher.urllib.request.urlopen", side_effect=fake):
        yield fake


@pytest.fixture
def on_linux_gnu():
    """Pretend the host is x86_64-unknown-linux-gnu."""
    with patch("bendctl.core.services.fetcher.detect_platform", return_value=LINUX_GNU):
        yield LINUX_GNU
