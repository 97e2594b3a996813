"""Unit tests for tiered cleanup."""

from datetime import timedelta

import pytest

from backup_retention.models import CleanupTier, SpaceUsage
from backup_retention.policy.retention import RetentionPolicy
from backup_retention.protection import cleanup
from backup_retention.protection.cleanup import CleanupExecutor, deletion_candidates
from backup_retention.storage import naming

from common.fixtures import GB, grows_with_deletions, make_snapshot

AGES = (1, 5, 13, 25, 30)


@pytest.fixture
def executor(catalog, accountant, clock, event_log):
    return CleanupExecutor(catalog, accountant, RetentionPolicy(), clock, event_log, timeout=30)


@pytest.fixture
def populated_pool(snapshot_pool, now):
    """Snapshots aged 1h, 5h, 13h, 25h and 30h."""
    for hours in AGES:
        make_snapshot(snapshot_pool.root, now - timedelta(hours=hours))
    return snapshot_pool


def usage(available):
    return SpaceUsage(total=500 * GB, used=500 * GB - available, available=available)


def name_for(now, hours):
    return naming.snapshot_name(now - timedelta(hours=hours))


class TestDeletionCandidates:
    def test_oldest_first_without_head(self, catalog, populated_pool, now):
        units = catalog.scan(populated_pool)
        candidates = deletion_candidates(units, now)
        assert [unit.id for unit in candidates] == [name_for(now, h) for h in (30, 25, 13, 5)]

    def test_empty(self, now):
        assert deletion_candidates([], now) == []


class TestCleanupExecutor:
    @pytest.mark.asyncio
    async def test_normal_tier_removes_units_past_24h(self, executor, populated_pool, now):
        report = await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB))

        assert sorted(d.id for d in report.deleted) == sorted([name_for(now, 25), name_for(now, 30)])
        assert report.preserved == [name_for(now, h) for h in (1, 5, 13)]
        assert report.considered == 5
        assert not report.failures
        assert not (populated_pool.root / name_for(now, 30)).exists()
        assert (populated_pool.root / name_for(now, 13)).exists()

    @pytest.mark.asyncio
    async def test_deletes_oldest_first(self, executor, populated_pool, now):
        report = await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB))
        assert [d.id for d in report.deleted] == [name_for(now, 30), name_for(now, 25)]

    @pytest.mark.asyncio
    async def test_moderate_tier_without_early_stop(self, executor, populated_pool, now):
        report = await executor.clean(populated_pool, CleanupTier.MODERATE, usage(10 * GB),
                                      early_stop=False)
        assert [d.id for d in report.deleted] == [name_for(now, h) for h in (30, 25, 13)]
        assert not report.stopped_early

    @pytest.mark.asyncio
    async def test_early_stop_once_above_warning(self, executor, accountant, populated_pool, now):
        accountant.set_available(
            populated_pool.id, grows_with_deletions(populated_pool.root, 13 * GB, GB)
        )
        report = await executor.clean(populated_pool, CleanupTier.MODERATE, usage(13 * GB))

        assert [d.id for d in report.deleted] == [name_for(now, 30), name_for(now, 25)]
        assert report.stopped_early
        assert report.final_available == 15 * GB
        assert name_for(now, 13) in report.preserved

    @pytest.mark.asyncio
    async def test_critical_keeps_only_head(self, executor, accountant, populated_pool, now):
        accountant.set_available(populated_pool.id, GB)
        report = await executor.clean(populated_pool, CleanupTier.CRITICAL, usage(GB))

        assert len(report.deleted) == 4
        assert report.preserved == [name_for(now, 1)]
        remaining = [p.name for p in populated_pool.root.iterdir()]
        assert remaining == [name_for(now, 1)]

    @pytest.mark.asyncio
    async def test_critical_with_single_old_head(self, executor, snapshot_pool, now):
        make_snapshot(snapshot_pool.root, now - timedelta(hours=30))
        report = await executor.clean(snapshot_pool, CleanupTier.CRITICAL, usage(GB))
        assert report.deleted == []
        assert report.preserved == [name_for(now, 30)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier", list(CleanupTier))
    @pytest.mark.parametrize("early_stop", [True, False])
    async def test_head_always_survives(self, executor, populated_pool, now, tier, early_stop):
        report = await executor.clean(populated_pool, tier, usage(GB), early_stop=early_stop)
        assert name_for(now, 1) not in {d.id for d in report.deleted}
        assert (populated_pool.root / name_for(now, 1)).is_dir()

    @pytest.mark.asyncio
    async def test_empty_pool(self, executor, snapshot_pool):
        report = await executor.clean(snapshot_pool, CleanupTier.CRITICAL, usage(GB))
        assert report.considered == 0
        assert report.deleted == []
        assert report.final_available == GB

    @pytest.mark.asyncio
    async def test_deletion_failure_does_not_stop_pass(self, executor, populated_pool, now,
                                                       monkeypatch):
        original = cleanup._remove
        stuck = name_for(now, 30)

        def remove(path):
            if path.name == stuck:
                raise PermissionError(13, "Permission denied", str(path))
            original(path)

        monkeypatch.setattr(cleanup, "_remove", remove)
        report = await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB))

        assert [f.id for f in report.failures] == [stuck]
        assert "Permission denied" in report.failures[0].error
        assert [d.id for d in report.deleted] == [name_for(now, 25)]
        assert stuck not in report.preserved
        assert (populated_pool.root / stuck).exists()

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, executor, populated_pool, now, event_log):
        report = await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB),
                                      dry_run=True)
        assert report.dry_run
        assert [d.id for d in report.deleted] == [name_for(now, 30), name_for(now, 25)]
        assert len(list(populated_pool.root.iterdir())) == 5
        assert event_log.read() == []

    @pytest.mark.asyncio
    async def test_records_events(self, executor, populated_pool, now, event_log):
        await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB))
        events = event_log.read()
        assert [e["unit"] for e in events] == [name_for(now, 30), name_for(now, 25)]
        assert all(e["action"] == "delete" and e["outcome"] == "deleted" for e in events)
        assert events[0]["reclaimed"] == 1000

    @pytest.mark.asyncio
    async def test_unavailable_pool_is_skipped(self, executor, accountant, populated_pool):
        accountant.unavailable.add(populated_pool.id)
        report = await executor.clean(populated_pool, CleanupTier.NORMAL)
        assert report.skipped == "PoolUnavailable"
        assert report.deleted == []

    @pytest.mark.asyncio
    async def test_reports_reclaimed_bytes(self, executor, populated_pool):
        report = await executor.clean(populated_pool, CleanupTier.NORMAL, usage(100 * GB))
        assert report.reclaimed == 2000
