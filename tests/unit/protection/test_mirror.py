"""Unit tests for the daily mirror."""

import pytest

from backup_retention.models import CreationStatus
from backup_retention.protection.mirror import MirrorUpdater
from backup_retention.storage import naming

from common.fixtures import FakeCopier, make_pool


@pytest.fixture
def mirror_pool(tmp_path, source_dir):
    return make_pool(tmp_path / "archive", "mirror", policy="mirror", source=source_dir)


@pytest.fixture
def updater(catalog, accountant, copier, clock, event_log):
    return MirrorUpdater(catalog, accountant, copier, clock, event_log, timeout=30)


class TestMirrorUpdater:
    @pytest.mark.asyncio
    async def test_syncs_once_per_day(self, updater, copier, clock, mirror_pool, now):
        first = await updater.maybe_update_mirror(mirror_pool)
        assert first.status == CreationStatus.CREATED
        assert first.unit_id == naming.MIRROR_DIR
        assert copier.calls[0]["delete"] is True
        marker = mirror_pool.root / naming.MIRROR_DIR / naming.MIRROR_MARKER
        assert marker.read_text().strip() == now.isoformat()

        clock.advance(hours=6)
        second = await updater.maybe_update_mirror(mirror_pool)
        assert second.status == CreationStatus.ALREADY_SATISFIED
        assert len(copier.calls) == 1

        clock.advance(days=1)
        third = await updater.maybe_update_mirror(mirror_pool)
        assert third.status == CreationStatus.CREATED
        assert len(copier.calls) == 2

    @pytest.mark.asyncio
    async def test_mirror_contents(self, updater, mirror_pool):
        await updater.maybe_update_mirror(mirror_pool)
        assert (mirror_pool.root / naming.MIRROR_DIR / "README.md").read_text() == "# prj\n"

    @pytest.mark.asyncio
    async def test_copy_failure(self, catalog, accountant, clock, event_log, mirror_pool):
        updater = MirrorUpdater(catalog, accountant, FakeCopier(fail=True), clock, event_log)
        result = await updater.maybe_update_mirror(mirror_pool)

        assert result.status == CreationStatus.FAILED
        marker = mirror_pool.root / naming.MIRROR_DIR / naming.MIRROR_MARKER
        assert not marker.exists()
