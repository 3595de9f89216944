"""
Archive fetcher — resolve a tag, download its archive, verify it.

Downloads land in a per-invocation ``downloads/<tag>/<archive>.*.part``
file and are renamed to their final name only after verification, so
nothing half-written is ever mistaken for a staged archive and two
concurrent fetches of one tag never write the same file.  Nothing
here touches the version index.

Verification:
  - SHA-256 against ``<archive url><checksum_suffix>`` when published.
  - The gzip stream is always read end to end (CRC32 check) and the
    tar headers walked, which also catches truncated transfers.
"""

from __future__ import annotations

import gzip
import hashlib
import http.client
import json
import logging
import os
import re
import tarfile
import tempfile
import urllib.error
import urllib.request
import zlib
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from bendctl import __version__
from bendctl.core.errors import (
    IntegrityError,
    NetworkError,
    TagNotFound,
    UnsupportedPlatform,
)
from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import Profile, validate_tag
from bendctl.core.models.release import Platform, ReleaseRef
from bendctl.core.reliability.retry import RetryPolicy, call_with_retry
from bendctl.core.services.platform import detect_platform

logger = logging.getLogger(__name__)

LATEST = "latest"

_CHUNK = 64 * 1024
_LINK_NEXT_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')
_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_RETRYABLE_STATUS = {408, 425, 429}

ProgressCallback = Callable[[int, int], None]


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def check_archive(path: Path) -> int:
    """Read a .tar.gz end to end.

    Returns:
        Number of tar members.

    Raises:
        IntegrityError: If the gzip stream or tar structure is damaged.
    """
    try:
        if path.name.endswith((".gz", ".tgz")):
            with gzip.open(path, "rb") as gz:
                while gz.read(_CHUNK):
                    pass
        with tarfile.open(path, "r:*") as tar:
            members = tar.getmembers()
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise IntegrityError(f"Archive {path.name} is damaged: {e}") from e
    if not members:
        raise IntegrityError(f"Archive {path.name} is empty")
    return len(members)


def _fmt_size(n: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


class ArchiveFetcher:
    """Resolve + download + verify release archives for one profile."""

    def __init__(
        self,
        config: CtlConfig,
        profile: Profile,
        *,
        platform: Platform | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config
        self._profile = profile
        self._platform = platform
        self._policy = RetryPolicy(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        self._sleep = sleep
        self.reused = False

    # ── Platform ────────────────────────────────────────────────

    @property
    def platform(self) -> Platform:
        """Host platform, detected once per fetcher."""
        if self._platform is None:
            self._platform = detect_platform(self._config.platforms)
        return self._platform

    # ── HTTP ────────────────────────────────────────────────────

    def _headers(self, url: str, accept: str | None = None) -> dict[str, str]:
        headers = {"User-Agent": f"bendctl/{__version__}"}
        if accept:
            headers["Accept"] = accept
        token = os.environ.get("GITHUB_TOKEN")
        if token and url.startswith("https://api.github.com/"):
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _open(self, url: str, accept: str | None = None) -> Any:
        """Open ``url``; transport failures become ``NetworkError``."""
        req = urllib.request.Request(url, headers=self._headers(url, accept))
        try:
            return urllib.request.urlopen(req, timeout=self._config.network_timeout)
        except urllib.error.HTTPError as e:
            retryable = e.code >= 500 or e.code in _RETRYABLE_STATUS
            raise NetworkError(
                f"HTTP {e.code} from {url}", status=e.code, retryable=retryable
            ) from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            reason = getattr(e, "reason", e)
            raise NetworkError(f"Cannot reach {url}: {reason}") from e

    def _retry(self, fn: Callable[[], Any], label: str) -> Any:
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        return call_with_retry(fn, self._policy, label=label, **kwargs)

    def _read_json(self, url: str) -> tuple[Any, str | None]:
        with self._open(url, accept="application/vnd.github+json") as resp:
            try:
                body = resp.read()
            except (OSError, http.client.HTTPException) as e:
                raise NetworkError(f"Connection lost reading {url}: {e}") from e
            link = resp.headers.get("Link", "") if resp.headers else ""
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise NetworkError(f"Malformed JSON from {url}: {e}", retryable=False) from e
        m = _LINK_NEXT_RE.search(link or "")
        return data, m.group(1) if m else None

    # ── Resolve ─────────────────────────────────────────────────

    def iter_tag_pages(self) -> Iterator[list[str]]:
        """Yield pages of remote tags, newest first."""
        url: str | None = self._config.tag_url
        for _ in range(self._config.max_tag_pages):
            if url is None:
                return
            page_url = url
            data, url = self._retry(lambda: self._read_json(page_url), f"List tags ({page_url})")
            if not isinstance(data, list):
                raise NetworkError(f"Unexpected tag listing from {page_url}", retryable=False)
            yield [
                str(item["name"])
                for item in data
                if isinstance(item, dict) and item.get("name")
            ]

    def latest_tag(self) -> str:
        for page in self.iter_tag_pages():
            if page:
                return page[0]
        raise TagNotFound("The remote release listing is empty")

    def tag_exists(self, tag: str) -> bool:
        return any(tag in page for page in self.iter_tag_pages())

    def resolve(self, tag_or_latest: str = LATEST) -> ReleaseRef:
        """Turn a tag (or ``latest``) into a concrete release reference.

        Raises:
            UnsupportedPlatform: Host has no published variant.
            TagNotFound: Tag missing from the remote listing.
            NetworkError: Listing unreachable after retries.
        """
        platform = self.platform

        if tag_or_latest == LATEST:
            tag = self.latest_tag()
            logger.info("Latest tag is %s", tag)
        else:
            tag = validate_tag(tag_or_latest)
            if not self.tag_exists(tag):
                raise TagNotFound(f"Tag {tag} was not found in the remote release listing")

        archive = self._config.archive_name(tag, platform.triple)
        url = f"{self._config.download_url}/{tag}/{archive}"
        suffix = self._config.checksum_suffix
        return ReleaseRef(
            tag=tag,
            platform=platform,
            archive_name=archive,
            url=url,
            checksum_url=url + suffix if suffix else None,
        )

    # ── Download ────────────────────────────────────────────────

    def staged_path(self, ref: ReleaseRef) -> Path:
        return self._profile.download_dir(ref.tag) / ref.archive_name

    def fetch(self, ref: ReleaseRef, progress: ProgressCallback | None = None) -> Path:
        """Download and verify ``ref``; return the staged archive path.

        A previously staged archive is reused if it still verifies.

        Raises:
            UnsupportedPlatform: No archive for this platform (HTTP 404).
            NetworkError: Download failed after retries.
            IntegrityError: Verification failed; the file is deleted.
        """
        dest = self.staged_path(ref)
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.reused = False

        if dest.is_file():
            try:
                self.verify(ref, dest)
            except IntegrityError as e:
                logger.warning("Discarding staged %s: %s", dest.name, e)
                dest.unlink(missing_ok=True)
            else:
                logger.info("Reusing staged archive %s", dest.name)
                self.reused = True
                return dest

        fd, name = tempfile.mkstemp(dir=dest.parent, prefix=dest.name + ".", suffix=".part")
        os.close(fd)
        part = Path(name)
        try:
            self._retry(lambda: self._download(ref, part, progress), f"Download {ref.archive_name}")
            self.verify(ref, part)
            os.replace(part, dest)
        except BaseException:
            part.unlink(missing_ok=True)
            raise

        logger.info("Staged %s (%s)", dest.name, _fmt_size(dest.stat().st_size))
        return dest

    def resolve_and_fetch(
        self,
        tag_or_latest: str = LATEST,
        progress: ProgressCallback | None = None,
    ) -> Path:
        return self.fetch(self.resolve(tag_or_latest), progress=progress)

    def _download(self, ref: ReleaseRef, part: Path, progress: ProgressCallback | None) -> int:
        try:
            resp = self._open(ref.url)
        except NetworkError as e:
            if e.status == 404:
                raise UnsupportedPlatform(
                    f"No {ref.platform.triple} archive is published for {ref.tag}"
                ) from e
            raise

        with resp:
            total = int(resp.headers.get("Content-Length") or 0) if resp.headers else 0
            downloaded = 0
            last_pct = -5
            with open(part, "wb") as f:
                while True:
                    try:
                        chunk = resp.read(_CHUNK)
                    except (OSError, http.client.HTTPException) as e:
                        raise NetworkError(f"Connection lost downloading {ref.url}: {e}") from e
                    if not chunk:
                        break
                    f.write(chunk)
                    downloaded += len(chunk)
                    if progress is not None:
                        progress(downloaded, total)
                    if total > 0:
                        pct = downloaded * 100 // total
                        if pct >= last_pct + 5:
                            last_pct = pct
                            logger.info(
                                "Download progress: %d%% (%s / %s)",
                                pct, _fmt_size(downloaded), _fmt_size(total),
                            )
                f.flush()
                os.fsync(f.fileno())

        if total and downloaded != total:
            raise NetworkError(
                f"Truncated download of {ref.archive_name}: {downloaded} of {total} bytes"
            )
        return downloaded

    # ── Verify ──────────────────────────────────────────────────

    def expected_checksum(self, ref: ReleaseRef) -> str | None:
        """Published SHA-256 of ``ref``, or None if none is published."""
        if not ref.checksum_url:
            return None
        url = ref.checksum_url

        def _get() -> bytes:
            with self._open(url) as resp:
                try:
                    return resp.read()
                except (OSError, http.client.HTTPException) as e:
                    raise NetworkError(f"Connection lost reading {url}: {e}") from e

        try:
            body = self._retry(_get, f"Fetch checksum {ref.archive_name}")
        except NetworkError as e:
            if e.status == 404:
                return None
            raise

        text = body.decode("utf-8", errors="replace").strip()
        digest = text.split()[0] if text else ""
        if not _SHA256_RE.match(digest):
            raise IntegrityError(f"Published checksum for {ref.archive_name} is malformed")
        return digest.lower()

    def verify(self, ref: ReleaseRef, path: Path) -> None:
        """Check ``path`` against the published checksum and its own structure.

        Raises:
            IntegrityError: On any mismatch or damage.
        """
        expected = self.expected_checksum(ref)
        if expected is None and self._config.require_checksum:
            raise IntegrityError(f"No checksum is published for {ref.archive_name}")

        if expected is not None:
            actual = sha256_file(path)
            if actual != expected:
                raise IntegrityError(
                    f"SHA256 mismatch for {ref.archive_name}: expected {expected}, got {actual}"
                )
            logger.debug("Checksum OK for %s", ref.archive_name)

        check_archive(path)
