from pathlib import Path
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile

from ..models import CreationStatus, HealthReport

TIER_VALUES = {"normal": 0, "moderate": 1, "aggressive": 2, "critical": 3}


class RunMetrics:
    """Prometheus metrics describing one orchestrator run.

    Each run gets its own registry; it is meant to be written out with the
    node exporter textfile collector rather than scraped from a server.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.available_bytes = Gauge(
            'backup_pool_available_bytes',
            'Available space in the pool after cleanup',
            ['pool'],
            registry=self.registry
        )
        self.total_bytes = Gauge(
            'backup_pool_total_bytes',
            'Total capacity of the pool filesystem',
            ['pool'],
            registry=self.registry
        )
        self.cleanup_tier = Gauge(
            'backup_pool_cleanup_tier',
            'Cleanup tier applied (0=normal, 1=moderate, 2=aggressive, 3=critical)',
            ['pool'],
            registry=self.registry
        )
        self.units_deleted = Counter(
            'backup_units_deleted',
            'Backup units deleted by cleanup',
            ['pool'],
            registry=self.registry
        )
        self.bytes_reclaimed = Counter(
            'backup_bytes_reclaimed',
            'Bytes reclaimed by cleanup',
            ['pool'],
            registry=self.registry
        )
        self.deletion_failures = Counter(
            'backup_unit_deletion_failures',
            'Units that could not be deleted',
            ['pool'],
            registry=self.registry
        )
        self.creation = Gauge(
            'backup_unit_creation_status',
            'Creation outcome of the last run (1 for the observed status)',
            ['pool', 'status'],
            registry=self.registry
        )
        self.severity = Gauge(
            'backup_pool_severity',
            'Pool severity (0=ok, 1=degraded, 2=unavailable)',
            ['pool'],
            registry=self.registry
        )
        self.head_age = Gauge(
            'backup_pool_newest_unit_age_seconds',
            'Age of the newest backup unit in the pool',
            ['pool'],
            registry=self.registry
        )
        self.pending_repositories = Gauge(
            'backup_pending_repositories',
            'Repositories with uncommitted changes',
            registry=self.registry
        )
        self.last_run = Gauge(
            'backup_last_run_timestamp_seconds',
            'Time the last run finished',
            registry=self.registry
        )

    def observe(self, report: HealthReport) -> None:
        """Record a finished health report."""
        for outcome in report.outcomes:
            pool = outcome.pool_id
            self.severity.labels(pool=pool).set(outcome.severity.value)
            if outcome.usage is not None:
                self.total_bytes.labels(pool=pool).set(outcome.usage.total)
                available = outcome.usage.available
                if outcome.retention and outcome.retention.final_available is not None:
                    available = outcome.retention.final_available
                self.available_bytes.labels(pool=pool).set(available)
            if outcome.tier is not None:
                self.cleanup_tier.labels(pool=pool).set(TIER_VALUES[outcome.tier.value])
            if outcome.retention is not None and not outcome.retention.dry_run:
                self.units_deleted.labels(pool=pool).inc(len(outcome.retention.deleted))
                self.bytes_reclaimed.labels(pool=pool).inc(outcome.retention.reclaimed)
                self.deletion_failures.labels(pool=pool).inc(len(outcome.retention.failures))
            if outcome.head_age_seconds is not None:
                self.head_age.labels(pool=pool).set(outcome.head_age_seconds)
            if outcome.creation is not None:
                for status in CreationStatus:
                    self.creation.labels(pool=pool, status=status.value).set(
                        1 if outcome.creation.status == status else 0
                    )
        if report.pending_repositories is not None:
            self.pending_repositories.set(report.pending_repositories)
        if report.finished_at is not None:
            self.last_run.set(report.finished_at.timestamp())

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(str(path), self.registry)
