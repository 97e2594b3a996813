"""Unit tests for the backup unit catalog and unit naming."""

import os
from datetime import datetime, timedelta

import pytest

from backup_retention.models import ArchivePeriod, PoolKind
from backup_retention.storage import naming
from backup_retention.storage.catalog import BackupUnitCatalog, measure_path

from common.fixtures import make_archive, make_pool, make_snapshot


class TestNaming:
    def test_snapshot_name_round_trip(self, now):
        name = naming.snapshot_name(now)
        assert name == "snapshot_2026-10-19_12-00-00"
        assert naming.parse_unit_time(name, PoolKind.SNAPSHOT) == now

    def test_archive_names(self, now):
        assert naming.archive_name("prj", ArchivePeriod.WEEKLY, now) == "prj_weekly_2026-10-19.tar.gz"
        assert naming.archive_name("prj", ArchivePeriod.MONTHLY, now) == "prj_monthly_2026-10-19.tar.gz"

    def test_period_keys(self, now):
        assert naming.period_key(now, ArchivePeriod.WEEKLY) == "2026-W43"
        assert naming.period_key(now, ArchivePeriod.MONTHLY) == "2026-10"
        # ISO weeks can belong to the previous year
        assert naming.period_key(datetime(2027, 1, 1), ArchivePeriod.WEEKLY) == "2026-W53"

    def test_legacy_monthly_name(self):
        created = naming.parse_unit_time("prj_monthly_2026-09.tar.gz", PoolKind.MONTHLY_ARCHIVE)
        assert created == datetime(2026, 9, 1)
        assert naming.parse_unit_time("prj_weekly_2026-09.tar.gz", PoolKind.WEEKLY_ARCHIVE) is None

    @pytest.mark.parametrize("name", [
        "snapshot_2026-10-19_12-00-00.partial",
        "snapshot_latest",
        "snapshot_2026-13-40_12-00-00",
        ".DS_Store",
    ])
    def test_rejects_non_units(self, name):
        assert naming.parse_unit_time(name, PoolKind.SNAPSHOT) is None


class TestBackupUnitCatalog:
    def test_empty_pool(self, snapshot_pool):
        assert BackupUnitCatalog().scan(snapshot_pool) == []

    def test_missing_root(self, tmp_path):
        pool = make_pool(tmp_path / "absent", "snapshot", create_root=False)
        assert BackupUnitCatalog().scan(pool) == []

    def test_newest_first(self, snapshot_pool, now):
        for hours in (30, 1, 13):
            make_snapshot(snapshot_pool.root, now - timedelta(hours=hours))
        units = BackupUnitCatalog().scan(snapshot_pool)
        assert [unit.created_at for unit in units] == [
            now - timedelta(hours=1),
            now - timedelta(hours=13),
            now - timedelta(hours=30),
        ]
        assert all(unit.pool_id == snapshot_pool.id for unit in units)

    def test_order_uses_name_not_mtime(self, snapshot_pool, now):
        old = make_snapshot(snapshot_pool.root, now - timedelta(days=3))
        make_snapshot(snapshot_pool.root, now - timedelta(hours=1))
        # Touching the old snapshot must not make it the head
        future = (now + timedelta(days=1)).timestamp()
        os.utime(old, (future, future))
        head = BackupUnitCatalog().scan(snapshot_pool)[0]
        assert head.created_at == now - timedelta(hours=1)

    def test_ignores_partial_and_foreign_entries(self, snapshot_pool, now):
        make_snapshot(snapshot_pool.root, now - timedelta(hours=2))
        (snapshot_pool.root / (naming.snapshot_name(now) + naming.PARTIAL_SUFFIX)).mkdir()
        (snapshot_pool.root / "notes.txt").write_text("not a unit")
        (snapshot_pool.root / naming.snapshot_name(now - timedelta(hours=5))).write_text("file")
        units = BackupUnitCatalog().scan(snapshot_pool)
        assert [unit.id for unit in units] == [naming.snapshot_name(now - timedelta(hours=2))]

    def test_snapshot_base_marker(self, snapshot_pool, now):
        make_snapshot(snapshot_pool.root, now - timedelta(hours=2),
                      base="snapshot_2026-10-19_09-00-00")
        unit = BackupUnitCatalog().scan(snapshot_pool)[0]
        assert unit.base_unit == "snapshot_2026-10-19_09-00-00"

    def test_archives(self, tmp_path, now):
        pool = make_pool(tmp_path / "weekly", "weekly-archive", policy="weekly")
        make_archive(pool.root, ArchivePeriod.WEEKLY, now - timedelta(days=7), size=300)
        make_archive(pool.root, ArchivePeriod.WEEKLY, now, size=200)
        make_archive(pool.root, ArchivePeriod.MONTHLY, now)
        units = BackupUnitCatalog().scan(pool)
        assert [unit.id for unit in units] == [
            "prj_weekly_2026-10-19.tar.gz",
            "prj_weekly_2026-10-12.tar.gz",
        ]
        assert units[0].size == 200
        assert units[0].reclaimable == 200

    def test_mirror_pool(self, tmp_path, now):
        pool = make_pool(tmp_path / "archive", "mirror", policy="mirror")
        assert BackupUnitCatalog().scan(pool) == []
        mirror = pool.root / naming.MIRROR_DIR
        mirror.mkdir()
        (mirror / naming.MIRROR_MARKER).write_text(now.isoformat() + "\n")
        units = BackupUnitCatalog().scan(pool)
        assert len(units) == 1
        assert units[0].id == naming.MIRROR_DIR
        assert units[0].created_at == now

    def test_system_pool_has_no_units(self, tmp_path, now):
        pool = make_pool(tmp_path / "tm", "system")
        make_snapshot(pool.root, now)
        assert BackupUnitCatalog().scan(pool) == []

    @pytest.mark.asyncio
    async def test_list_and_head(self, snapshot_pool, now):
        catalog = BackupUnitCatalog(timeout=10)
        assert await catalog.head(snapshot_pool) is None
        make_snapshot(snapshot_pool.root, now - timedelta(hours=3))
        make_snapshot(snapshot_pool.root, now - timedelta(hours=1))
        units = await catalog.list(snapshot_pool)
        assert len(units) == 2
        head = await catalog.head(snapshot_pool)
        assert head.id == naming.snapshot_name(now - timedelta(hours=1))


class TestMeasurePath:
    def test_hard_links_are_not_reclaimable(self, tmp_path):
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        (first / "shared.bin").write_bytes(b"s" * 500)
        os.link(first / "shared.bin", second / "shared.bin")
        (second / "changed.bin").write_bytes(b"c" * 100)

        size, reclaimable = measure_path(second)
        assert size == 600
        assert reclaimable == 100

    def test_missing_path(self, tmp_path):
        assert measure_path(tmp_path / "gone") == (0, 0)
