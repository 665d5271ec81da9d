"""Tests for the local failover/snapshot cache and durable file helpers."""

import os
from pathlib import Path

import pytest

from confsync.common.files import delete_file, file_version, read_text, write_text_atomic
from confsync.common.models import CacheTier, ConfigKey
from confsync.services.config.cache import LocalConfigCache

KEY = ConfigKey("app.properties", "DEFAULT_GROUP")
TENANT_KEY = ConfigKey("app.properties", "DEFAULT_GROUP", "dev")


@pytest.fixture
def cache(tmp_path: Path) -> LocalConfigCache:
    return LocalConfigCache("fixed-h_1", tmp_path)


class TestLayout:
    def test_paths_without_tenant(self, cache: LocalConfigCache, tmp_path: Path) -> None:
        root = tmp_path / "fixed-h_1_nacos"
        assert cache.failover_path(KEY) == root / "data" / "config-data" / "DEFAULT_GROUP" / "app.properties"
        assert cache.snapshot_path(KEY) == root / "snapshot" / "DEFAULT_GROUP" / "app.properties"

    def test_paths_with_tenant(self, cache: LocalConfigCache, tmp_path: Path) -> None:
        root = tmp_path / "fixed-h_1_nacos"
        assert cache.failover_path(TENANT_KEY) == (
            root / "data" / "config-data-tenant" / "dev" / "DEFAULT_GROUP" / "app.properties"
        )
        assert cache.snapshot_path(TENANT_KEY) == root / "snapshot-tenant" / "dev" / "DEFAULT_GROUP" / "app.properties"

    def test_clients_with_different_names_do_not_collide(self, tmp_path: Path) -> None:
        first = LocalConfigCache("fixed-a_1", tmp_path)
        second = LocalConfigCache("fixed-b_1", tmp_path)
        first.save_snapshot(KEY, "from a")
        assert second.get_snapshot(KEY) is None


class TestReads:
    def test_missing_records_are_misses(self, cache: LocalConfigCache) -> None:
        assert cache.get_failover(KEY) is None
        assert cache.get_snapshot(KEY) is None
        assert cache.read(KEY, CacheTier.FAILOVER) is None
        assert cache.failover_version(KEY) is None

    def test_failover_record_read(self, cache: LocalConfigCache) -> None:
        path = cache.failover_path(KEY)
        path.parent.mkdir(parents=True)
        path.write_text("override=1", encoding="utf-8")

        entry = cache.read(KEY, CacheTier.FAILOVER)
        assert entry is not None
        assert entry.tier == CacheTier.FAILOVER
        assert entry.content.content == "override=1"
        assert cache.failover_version(KEY) is not None

    def test_failover_never_written_by_snapshot(self, cache: LocalConfigCache) -> None:
        cache.save_snapshot(KEY, "live")
        assert cache.get_failover(KEY) is None


class TestSnapshotWrites:
    def test_save_and_read_back(self, cache: LocalConfigCache) -> None:
        cache.save_snapshot(TENANT_KEY, "a=1\nb=2")
        assert cache.get_snapshot(TENANT_KEY) == "a=1\nb=2"

    def test_overwrite(self, cache: LocalConfigCache) -> None:
        cache.save_snapshot(KEY, "v1")
        cache.save_snapshot(KEY, "v2")
        assert cache.get_snapshot(KEY) == "v2"

    def test_none_removes_record(self, cache: LocalConfigCache) -> None:
        cache.save_snapshot(KEY, "v1")
        cache.save_snapshot(KEY, None)
        assert cache.get_snapshot(KEY) is None
        assert not cache.snapshot_path(KEY).exists()

    def test_disabled_snapshot_is_noop(self, tmp_path: Path) -> None:
        cache = LocalConfigCache("fixed-h_1", tmp_path, snapshot_enabled=False)
        cache.save_snapshot(KEY, "v1")
        assert not cache.snapshot_path(KEY).exists()
        assert cache.get_snapshot(KEY) is None

    def test_write_failure_is_logged_not_raised(self, cache: LocalConfigCache) -> None:
        # A regular file where the group directory should be
        blocker = cache.snapshot_path(KEY).parent
        blocker.parent.mkdir(parents=True)
        blocker.write_text("not a directory")

        cache.save_snapshot(KEY, "v1")
        assert cache.get_snapshot(KEY) is None

    def test_clean_snapshots(self, cache: LocalConfigCache) -> None:
        cache.save_snapshot(KEY, "v1")
        cache.save_snapshot(TENANT_KEY, "v2")
        assert cache.clean_snapshots() == 2
        assert cache.get_snapshot(KEY) is None
        assert cache.get_snapshot(TENANT_KEY) is None


class TestFileHelpers:
    def test_atomic_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "dir" / "record"
        write_text_atomic(target, "content")
        write_text_atomic(target, "content 2")
        assert read_text(target) == "content 2"
        assert [p.name for p in target.parent.iterdir()] == ["record"]

    def test_delete_reports_missing(self, tmp_path: Path) -> None:
        target = tmp_path / "record"
        assert delete_file(target) is False
        write_text_atomic(target, "x")
        assert delete_file(target) is True

    def test_file_version_tracks_mtime(self, tmp_path: Path) -> None:
        target = tmp_path / "record"
        assert file_version(target) is None
        write_text_atomic(target, "x")
        os.utime(target, (1000.0, 1000.0))
        assert file_version(target) == 1000.0
