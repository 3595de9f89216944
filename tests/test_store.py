"""
Tests for the version store — records, invariants, drift detection, repair.
"""

import json
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from bendctl.core.errors import (
    StoreCorruption,
    StoreLocked,
    VersionAlreadyInstalled,
    VersionInUse,
    VersionNotInstalled,
)
from bendctl.core.models.profile import Profile
from bendctl.core.persistence.lock import ProfileLock
from bendctl.core.persistence.pointer import CurrentPointer
from bendctl.core.services.store import (
    VersionStore,
    find_problems,
    inspect_store,
    repair_store,
)


def _install_dir(profile: Profile, tag: str) -> Path:
    path = profile.install_dir(tag)
    (path / "bin").mkdir(parents=True)
    return path


def _store_with(profile: Profile, *tags: str) -> VersionStore:
    store = VersionStore.open(profile, lock_timeout=1)
    for tag in tags:
        store.record(tag, _install_dir(profile, tag))
    return store


class TestRecord:
    def test_empty_store(self, profile: Profile):
        store = VersionStore.open(profile)
        assert store.list() == []
        assert store.get_current() is None

    def test_first_record_becomes_current(self, profile: Profile):
        store = _store_with(profile, "v1")
        current = store.get_current()
        assert current is not None and current.tag == "v1"
        assert store.pointer.read() == "v1"

    def test_second_record_is_not_current(self, profile: Profile):
        store = _store_with(profile, "v1", "v2")
        assert store.get_current().tag == "v1"
        assert [r.tag for r in store.list()] == ["v2", "v1"]
        assert [r.is_current for r in store.list()] == [False, True]

    def test_duplicate_tag(self, profile: Profile):
        store = _store_with(profile, "v1")
        with pytest.raises(VersionAlreadyInstalled):
            store.record("v1", profile.install_dir("v1"))

    def test_missing_directory(self, profile: Profile):
        store = VersionStore.open(profile)
        with pytest.raises(VersionNotInstalled):
            store.record("v1", profile.install_dir("v1"))
        assert store.list() == []

    def test_persisted_across_open(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        reopened = VersionStore.open(profile)
        assert [r.tag for r in reopened.list()] == ["v2", "v1"]

    def test_list_returns_copies(self, profile: Profile):
        store = _store_with(profile, "v1")
        store.list()[0].is_current = False
        assert store.get_current() is not None

    def test_sees_changes_from_other_handle(self, profile: Profile):
        first = VersionStore.open(profile, lock_timeout=1)
        second = VersionStore.open(profile, lock_timeout=1)
        first.record("v1", _install_dir(profile, "v1"))
        second.record("v2", _install_dir(profile, "v2"))
        assert [r.tag for r in VersionStore.open(profile).list()] == ["v2", "v1"]

    def test_failed_commit_clears_new_pointer(self, profile: Profile):
        store = VersionStore.open(profile)
        path = _install_dir(profile, "v1")
        with patch("bendctl.core.services.store.save_index", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.record("v1", path)
        assert store.pointer.read() is None
        assert VersionStore.open(profile).list() == []

    def test_locked_profile(self, profile: Profile):
        store = VersionStore.open(profile, lock_timeout=0.1)
        path = _install_dir(profile, "v1")
        with ProfileLock(profile.lock_path):
            with pytest.raises(StoreLocked):
                store.record("v1", path)

    def test_mark_current_requires_lock(self, profile: Profile):
        store = _store_with(profile, "v1", "v2")
        with pytest.raises(RuntimeError):
            store.mark_current("v2")


class TestRemove:
    def test_remove_non_current(self, profile: Profile):
        store = _store_with(profile, "v1", "v2")
        profile.download_dir("v2").mkdir(parents=True)
        store.remove("v2")
        assert [r.tag for r in store.list()] == ["v1"]
        assert not profile.install_dir("v2").exists()
        assert not profile.download_dir("v2").exists()

    def test_remove_current_refused(self, profile: Profile):
        store = _store_with(profile, "v1", "v2")
        with pytest.raises(VersionInUse):
            store.remove("v1")
        assert profile.install_dir("v1").is_dir()

    def test_remove_unknown(self, profile: Profile):
        store = _store_with(profile, "v1")
        with pytest.raises(VersionNotInstalled):
            store.remove("v9")


class TestConsistency:
    def test_missing_install_dir_is_corruption(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        (profile.install_dir("v2") / "bin").rmdir()
        profile.install_dir("v2").rmdir()
        with pytest.raises(StoreCorruption) as exc:
            VersionStore.open(profile)
        assert any("v2" in p for p in exc.value.problems)

    def test_pointer_mismatch_is_corruption(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        CurrentPointer(profile).write("v2")
        with pytest.raises(StoreCorruption, match="pointer"):
            VersionStore.open(profile)

    def test_two_current_is_corruption(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        data = json.loads(profile.index_path.read_text())
        for record in data["versions"]:
            record["is_current"] = True
        profile.index_path.write_text(json.dumps(data))
        with pytest.raises(StoreCorruption, match="More than one current"):
            VersionStore.open(profile)

    def test_find_problems_clean(self, profile: Profile):
        store = _store_with(profile, "v1")
        assert find_problems(store._index, "v1") == []

    def test_orphan_directory_is_drift_not_corruption(self, profile: Profile):
        store = _store_with(profile, "v1")
        (profile.bin_dir / "stray").mkdir()
        (profile.bin_dir / ".staging-v2-abc").mkdir()
        orphans, staging = VersionStore.open(profile).drift()
        assert orphans == ["stray"]
        assert staging == [".staging-v2-abc"]
        assert store.get_current().tag == "v1"

    def test_inspect_store_reports_without_raising(self, profile: Profile):
        _store_with(profile, "v1")
        profile.index_path.write_text("{{{")
        report = inspect_store(profile)
        assert not report.healthy
        assert report.to_dict()["healthy"] is False

    def test_inspect_healthy(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        report = inspect_store(profile)
        assert report.healthy
        assert report.versions == 2
        assert report.current == "v1"
        assert report.pointer == "v1"


class TestRepair:
    def test_nothing_to_do(self, profile: Profile):
        _store_with(profile, "v1")
        assert repair_store(profile) == []

    def test_drops_missing_and_rewrites_pointer(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        shutil.rmtree(profile.install_dir("v1"))
        actions = repair_store(profile)

        assert any("Dropped v1" in a for a in actions)
        store = VersionStore.open(profile)
        assert [r.tag for r in store.list()] == ["v2"]
        assert store.get_current().tag == "v2"
        assert store.pointer.read() == "v2"

    def test_follows_pointer_when_recorded(self, profile: Profile):
        _store_with(profile, "v1", "v2")
        CurrentPointer(profile).write("v2")
        repair_store(profile)
        assert VersionStore.open(profile).get_current().tag == "v2"

    def test_deletes_unrecorded_directories(self, profile: Profile):
        _store_with(profile, "v1")
        (profile.bin_dir / "stray").mkdir()
        (profile.bin_dir / ".staging-v2-abc").mkdir()
        actions = repair_store(profile)
        assert len(actions) == 2
        assert not (profile.bin_dir / "stray").exists()
        assert profile.install_dir("v1").is_dir()

    def test_empty_store_clears_pointer(self, profile: Profile):
        CurrentPointer(profile).write("ghost")
        actions = repair_store(profile)
        assert "Cleared current pointer (store is empty)" in actions
        assert CurrentPointer(profile).read() is None
