"""
Switcher — make an installed version current.

Order of operations, all under the profile lock:

    1. reload + validate the index
    2. atomically repoint ``bin/current``
    3. durably update the index

If step 3 fails the pointer is put back.  If even that fails, the
next ``VersionStore.open`` sees the pointer and index disagree and
reports ``StoreCorruption``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bendctl.core.errors import VersionNotInstalled
from bendctl.core.models.profile import validate_tag
from bendctl.core.services.store import VersionStore

logger = logging.getLogger(__name__)


@dataclass
class SwitchOutcome:
    """What a switch did."""

    tag: str
    previous: str | None
    changed: bool
    install_path: str = ""

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "previous": self.previous,
            "changed": self.changed,
            "install_path": self.install_path,
        }


class Switcher:
    """Repoints the current version of one store."""

    def __init__(self, store: VersionStore) -> None:
        self._store = store

    def switch_to(self, tag: str) -> SwitchOutcome:
        """Make ``tag`` current.

        Switching to the version that is already current writes nothing.

        Raises:
            VersionNotInstalled: No record for ``tag``.
            StoreLocked: Profile lock not acquired in time.
            StoreCorruption: Store failed validation on reload.
        """
        tag = validate_tag(tag)
        store = self._store

        with store.locked():
            target = store.find(tag)
            if target is None:
                raise VersionNotInstalled(f"{tag} is not installed")

            current = store.get_current()
            previous = current.tag if current else None
            if previous == tag:
                logger.info("%s is already current", tag)
                return SwitchOutcome(tag=tag, previous=previous, changed=False,
                                     install_path=target.install_path)

            store.pointer.write(tag)
            try:
                store.mark_current(tag)
            except BaseException:
                logger.error("Index update failed after repointing to %s, rolling back", tag)
                try:
                    if previous is not None:
                        store.pointer.write(previous)
                    else:
                        store.pointer.clear()
                except OSError as rollback_error:
                    logger.error("Could not restore current pointer: %s", rollback_error)
                raise

        logger.info("Switched current version %s → %s", previous, tag)
        return SwitchOutcome(tag=tag, previous=previous, changed=True,
                             install_path=target.install_path)
