"""Unit tests for run metrics."""

from datetime import datetime

from backup_retention.models import (
    CleanupTier,
    CreationResult,
    CreationStatus,
    DeletedUnit,
    HealthReport,
    PoolKind,
    PoolOutcome,
    RetentionReport,
    Severity,
    SpaceUsage,
    UnitFailure,
)
from backup_retention.monitoring.metrics import RunMetrics


def build_report():
    snapshots = PoolOutcome(
        pool_id="snapshots",
        kind=PoolKind.SNAPSHOT,
        usage=SpaceUsage(total=1000, used=900, available=100),
        tier=CleanupTier.MODERATE,
        retention=RetentionReport(
            pool_id="snapshots",
            tier=CleanupTier.MODERATE,
            deleted=[DeletedUnit("a", 50), DeletedUnit("b", 70)],
            failures=[UnitFailure("c", "Permission denied")],
            final_available=220,
        ),
        creation=CreationResult(pool_id="snapshots", status=CreationStatus.CREATED),
    )
    usb = PoolOutcome(pool_id="usb", kind=PoolKind.SNAPSHOT)
    usb.degrade("Pool usb is not available", Severity.UNAVAILABLE)
    return HealthReport(
        started_at=datetime(2026, 10, 19, 12, 0, 0),
        finished_at=datetime(2026, 10, 19, 12, 5, 0),
        outcomes=[snapshots, usb],
        pending_repositories=4,
    )


class TestRunMetrics:
    def test_observe(self):
        metrics = RunMetrics()
        metrics.observe(build_report())
        sample = metrics.registry.get_sample_value

        assert sample("backup_pool_available_bytes", {"pool": "snapshots"}) == 220
        assert sample("backup_pool_total_bytes", {"pool": "snapshots"}) == 1000
        assert sample("backup_pool_cleanup_tier", {"pool": "snapshots"}) == 1
        assert sample("backup_units_deleted_total", {"pool": "snapshots"}) == 2
        assert sample("backup_bytes_reclaimed_total", {"pool": "snapshots"}) == 120
        assert sample("backup_unit_deletion_failures_total", {"pool": "snapshots"}) == 1
        assert sample("backup_unit_creation_status",
                      {"pool": "snapshots", "status": "created"}) == 1
        assert sample("backup_unit_creation_status",
                      {"pool": "snapshots", "status": "failed"}) == 0
        assert sample("backup_pool_severity", {"pool": "usb"}) == 2
        assert sample("backup_pool_available_bytes", {"pool": "usb"}) is None
        assert sample("backup_pending_repositories") == 4

    def test_dry_run_does_not_count_deletions(self):
        report = build_report()
        report.outcomes[0].retention.dry_run = True
        metrics = RunMetrics()
        metrics.observe(report)
        assert metrics.registry.get_sample_value(
            "backup_units_deleted_total", {"pool": "snapshots"}) is None

    def test_write_textfile(self, tmp_path):
        metrics = RunMetrics()
        metrics.observe(build_report())
        path = tmp_path / "textfile" / "backup.prom"
        metrics.write(path)
        assert "backup_pending_repositories 4.0" in path.read_text()

    def test_newest_unit_age(self):
        report = build_report()
        report.outcomes[0].head_age_seconds = 5400
        metrics = RunMetrics()
        metrics.observe(report)
        sample = metrics.registry.get_sample_value
        assert sample("backup_pool_newest_unit_age_seconds", {"pool": "snapshots"}) == 5400
        assert sample("backup_pool_newest_unit_age_seconds", {"pool": "usb"}) is None
