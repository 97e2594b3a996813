"""
Tiered cleanup of backup units.

Deletion candidates are every unit older than the tier's retention window,
excluding the head of the pool. Candidates are removed oldest first; for
escalated tiers the pass stops as soon as the pool is back above the tier's
release threshold.
"""
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from ..collaborators.process import run_blocking
from ..engine.clock import Clock, SystemClock
from ..engine.state import EventLog
from ..errors import (
    CommandTimeout,
    MeasurementFailed,
    PoolUnavailable,
    UnitDeletionFailed,
)
from ..models import (
    BackupUnit,
    CleanupTier,
    DeletedUnit,
    RetentionReport,
    SpaceUsage,
    StoragePool,
    UnitFailure,
)
from ..policy.retention import RetentionPolicy
from ..policy.tiers import release_threshold
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog


def deletion_candidates(units: List[BackupUnit], cutoff) -> List[BackupUnit]:
    """Units created before ``cutoff``, oldest first, never including the head.

    ``units`` may be in any order; the head is the unit with the latest
    creation time.
    """
    if not units:
        return []
    ordered = sorted(units, key=lambda unit: unit.created_at)
    return [unit for unit in ordered[:-1] if unit.created_at < cutoff]


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        os.remove(path)


class CleanupExecutor:
    """Computes and executes the deletion set for a pool at a given tier."""

    def __init__(self, catalog: BackupUnitCatalog, accountant: SpaceAccountant,
                 policy: RetentionPolicy, clock: Optional[Clock] = None,
                 event_log: Optional[EventLog] = None, timeout: float = 300):
        self.catalog = catalog
        self.accountant = accountant
        self.policy = policy
        self.clock = clock or SystemClock()
        self.event_log = event_log
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def clean(self, pool: StoragePool, tier: CleanupTier,
                    usage: Optional[SpaceUsage] = None, early_stop: bool = True,
                    dry_run: bool = False) -> RetentionReport:
        """Apply the retention window for ``tier`` to ``pool``.

        Args:
            pool: Pool to clean
            tier: Cleanup tier selected for the pool
            usage: Space measured before cleanup; measured here if omitted
            early_stop: Stop once the tier's release threshold is reached
            dry_run: Compute the plan without deleting anything

        Returns:
            RetentionReport describing what was deleted and preserved
        """
        report = RetentionReport(pool_id=pool.id, tier=tier, dry_run=dry_run)

        if usage is None:
            try:
                usage = await self.accountant.measure(pool)
            except (PoolUnavailable, MeasurementFailed) as e:
                self.logger.warning(e.message)
                report.skipped = e.code
                return report

        units = await self.catalog.list(pool)
        report.considered = len(units)
        available = usage.available

        window = self.policy.window_for(pool.kind, tier)
        now = self.clock.now()
        candidates = deletion_candidates(units, now - window)
        threshold = release_threshold(pool, tier) if early_stop else None

        self.logger.info(
            f"Cleaning pool {pool.id} at tier {tier.value}: {len(units)} units, "
            f"{len(candidates)} older than {window}"
        )

        processed = set()
        for unit in candidates:
            if threshold is not None and processed and available >= threshold:
                report.stopped_early = True
                self.logger.info(
                    f"Pool {pool.id} back above {threshold} bytes available, "
                    f"keeping {len(candidates) - len(processed)} remaining candidates"
                )
                break
            processed.add(unit.id)

            if dry_run:
                self.logger.info(f"Would remove {unit.id} ({unit.reclaimable} bytes)")
                report.deleted.append(DeletedUnit(unit.id, unit.reclaimable))
                available += unit.reclaimable
                continue

            try:
                await self._delete(unit)
            except UnitDeletionFailed as e:
                self.logger.error(e.message)
                report.failures.append(UnitFailure(unit.id, e.message))
                self._record(pool, unit, "failed", e.message)
                continue

            report.deleted.append(DeletedUnit(unit.id, unit.reclaimable))
            self._record(pool, unit, "deleted")
            available = await self._remeasure(pool, available + unit.reclaimable)

        deleted_ids = {d.id for d in report.deleted}
        failed_ids = {f.id for f in report.failures}
        report.preserved = [
            unit.id for unit in units
            if unit.id not in deleted_ids and unit.id not in failed_ids
        ]
        report.final_available = available

        self.logger.info(
            f"Cleanup of {pool.id} removed {len(report.deleted)} units, "
            f"reclaimed {report.reclaimed} bytes, {len(report.failures)} failures"
        )
        return report

    async def _delete(self, unit: BackupUnit) -> None:
        self.logger.info(f"Removing {unit.kind.value} unit: {unit.id}")
        try:
            await run_blocking(
                _remove, unit.path, timeout=self.timeout, operation=f"delete {unit.id}"
            )
        except CommandTimeout as e:
            raise UnitDeletionFailed(unit.id, e.message) from e
        except OSError as e:
            raise UnitDeletionFailed(unit.id, str(e)) from e

    async def _remeasure(self, pool: StoragePool, estimate: int) -> int:
        try:
            usage = await self.accountant.measure(pool)
        except (PoolUnavailable, MeasurementFailed) as e:
            self.logger.warning(f"{e.message}; continuing with estimate of {estimate} bytes")
            return estimate
        return usage.available

    def _record(self, pool: StoragePool, unit: BackupUnit, outcome: str,
                detail: Optional[str] = None) -> None:
        if self.event_log is None:
            return
        self.event_log.record(
            self.clock.now(), pool.id, unit.id, "delete", outcome, detail,
            reclaimed=unit.reclaimable if outcome == "deleted" else 0
        )
