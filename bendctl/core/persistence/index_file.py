"""
Index file persistence — durable read/write for VersionIndex.

The index lives in ``<profile>/versions.json``.  Writes go to a temp
file in the same directory, are fsync'd, renamed over the target with
``os.replace`` and the directory entry is fsync'd, so a crash leaves
either the old index or the new one on disk, never a torn file.

Unlike most state, a corrupt index is NOT replaced with a fresh one:
that would silently forget installed versions.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from bendctl.core.errors import StoreCorruption
from bendctl.core.models.version import VersionIndex

logger = logging.getLogger(__name__)


def load_index(path: Path) -> VersionIndex:
    """Load the version index.

    Returns:
        VersionIndex. A missing file yields an empty index.

    Raises:
        StoreCorruption: If the file exists but cannot be parsed.
    """
    if not path.is_file():
        logger.debug("No index at %s — empty store", path)
        return VersionIndex()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StoreCorruption(f"Cannot read version index {path}: {e}") from e

    try:
        index = VersionIndex.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise StoreCorruption(f"Version index {path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise StoreCorruption(f"Version index {path} has an invalid layout: {e}") from e

    logger.debug("Loaded index from %s (%d versions)", path, len(index.versions))
    return index


def save_index(index: VersionIndex, path: Path) -> None:
    """Durably write the version index.

    Args:
        index: The index to save (its ``updated_at`` is refreshed).
        path: Target path of the index file.
    """
    index.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(index.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".versions_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save version index to %s", path)
        raise

    fsync_dir(path.parent)
    logger.debug("Index saved to %s", path)


def fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a completed rename survives a crash."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Some filesystems (and Windows) refuse fsync on directories.
        pass
    finally:
        os.close(fd)
