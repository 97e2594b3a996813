"""
Run orchestration: measure, clean and create for every configured pool,
then assemble a single health report.
"""
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..collaborators.archiver import Archiver, TarArchiver
from ..collaborators.delta_copy import DeltaCopier, RsyncCopier
from ..collaborators.vcs import GitRepositoryScanner
from ..config.pool_config import EngineConfig
from ..errors import (
    CommandTimeout,
    MeasurementFailed,
    PoolBusy,
    PoolUnavailable,
    RetentionError,
)
from ..models import (
    ArchivePeriod,
    CleanupTier,
    CreationResult,
    HealthReport,
    PoolOutcome,
    RetentionReport,
    Severity,
    SpaceUsage,
    StoragePool,
)
from ..monitoring.metrics import RunMetrics
from ..policy.retention import RetentionPolicy
from ..policy.tiers import select_pool_tier, select_tier
from ..protection.archives import ArchiveScheduler
from ..protection.cleanup import CleanupExecutor
from ..protection.mirror import MirrorUpdater
from ..protection.snapshots import SnapshotCreator
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog
from .clock import Clock, SystemClock
from .locks import PoolLockRegistry
from .state import EventLog, ReportStore

logger = logging.getLogger(__name__)


class PoolPhase(Enum):
    IDLE = "idle"
    MEASURING = "measuring"
    CLEANING = "cleaning"
    CREATING = "creating"
    REPORTING = "reporting"


_TRANSITIONS = {
    PoolPhase.IDLE: {PoolPhase.MEASURING},
    PoolPhase.MEASURING: {PoolPhase.CLEANING, PoolPhase.REPORTING},
    PoolPhase.CLEANING: {PoolPhase.CREATING, PoolPhase.REPORTING},
    PoolPhase.CREATING: {PoolPhase.REPORTING},
    PoolPhase.REPORTING: {PoolPhase.IDLE},
}


class PoolRun:
    """State machine for one pool's pass through a run."""

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        self.phase = PoolPhase.IDLE
        self.history: List[PoolPhase] = [PoolPhase.IDLE]

    def transition(self, phase: PoolPhase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Illegal transition for pool {self.pool_id}: "
                f"{self.phase.value} -> {phase.value}"
            )
        logger.debug(f"Pool {self.pool_id}: {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.history.append(phase)

    def finish(self) -> None:
        """Move to REPORTING (if not there yet) and back to IDLE."""
        if self.phase == PoolPhase.IDLE:
            return
        if self.phase != PoolPhase.REPORTING:
            self.transition(PoolPhase.REPORTING)
        self.transition(PoolPhase.IDLE)


class Orchestrator:
    """Sequences accountant, tier selector, cleanup and creation per pool."""

    def __init__(self, pools: Iterable[StoragePool], policy: RetentionPolicy,
                 accountant: SpaceAccountant, catalog: BackupUnitCatalog,
                 cleaner: CleanupExecutor, snapshots: Optional[SnapshotCreator] = None,
                 archives: Optional[ArchiveScheduler] = None,
                 mirror: Optional[MirrorUpdater] = None, clock: Optional[Clock] = None,
                 locks: Optional[PoolLockRegistry] = None,
                 repository_scanner: Optional[GitRepositoryScanner] = None,
                 repositories_root: Optional[Path] = None, max_parallel: int = 1,
                 report_store: Optional[ReportStore] = None,
                 metrics: Optional[RunMetrics] = None,
                 metrics_path: Optional[Path] = None,
                 unit_index: Optional[BackupUnitCatalog] = None):
        self.pools = list(pools)
        self.policy = policy
        self.accountant = accountant
        self.catalog = catalog
        self.cleaner = cleaner
        self.snapshots = snapshots
        self.archives = archives
        self.mirror = mirror
        self.clock = clock or SystemClock()
        self.locks = locks or PoolLockRegistry(timeout=catalog.timeout)
        self.repository_scanner = repository_scanner
        self.repositories_root = repositories_root
        self.max_parallel = max(1, max_parallel)
        self.report_store = report_store
        self.metrics = metrics
        self.metrics_path = metrics_path
        # Listing without per-unit sizes, for head and freshness lookups
        self.unit_index = unit_index or BackupUnitCatalog(timeout=catalog.timeout, with_sizes=False)

    @classmethod
    def from_config(cls, config: EngineConfig, clock: Optional[Clock] = None,
                    copier: Optional[DeltaCopier] = None,
                    archiver: Optional[Archiver] = None) -> 'Orchestrator':
        """Wire up the engine from a loaded configuration."""
        settings = config.settings
        clock = clock or SystemClock()
        timeout = settings.operation_timeout
        event_log = EventLog(settings.state_dir / "events.jsonl")

        accountant = SpaceAccountant(timeout=timeout)
        catalog = BackupUnitCatalog(timeout=timeout)
        unit_index = BackupUnitCatalog(timeout=timeout, with_sizes=False)
        copier = copier or RsyncCopier(timeout=settings.copy_timeout)
        archiver = archiver or TarArchiver(timeout=settings.copy_timeout)
        pools_by_id: Dict[str, StoragePool] = {pool.id: pool for pool in config.pools}

        return cls(
            pools=config.pools,
            policy=config.policy,
            accountant=accountant,
            catalog=catalog,
            cleaner=CleanupExecutor(catalog, accountant, config.policy, clock, event_log, timeout),
            snapshots=SnapshotCreator(unit_index, accountant, copier, clock, event_log, timeout),
            archives=ArchiveScheduler(unit_index, accountant, archiver, clock, event_log, timeout,
                                      pools=pools_by_id),
            mirror=MirrorUpdater(unit_index, accountant, copier, clock, event_log, timeout),
            clock=clock,
            repository_scanner=GitRepositoryScanner() if config.repositories_root else None,
            repositories_root=config.repositories_root,
            max_parallel=settings.max_parallel_pools,
            report_store=ReportStore(settings.state_dir / "last_report.json"),
            metrics=RunMetrics() if settings.metrics_textfile else None,
            metrics_path=settings.metrics_textfile,
            unit_index=unit_index,
        )

    async def run(self, force_tier: Optional[CleanupTier] = None, dry_run: bool = False,
                  pool_ids: Optional[Iterable[str]] = None,
                  cancel_event: Optional[asyncio.Event] = None) -> HealthReport:
        """Execute one full pass over the configured pools.

        Always returns a report; per-pool failures are folded into it.
        """
        selected = self.pools
        if pool_ids:
            wanted = set(pool_ids)
            selected = [pool for pool in self.pools if pool.id in wanted]

        report = HealthReport(started_at=self.clock.now())
        logger.info(f"Starting retention run over {len(selected)} pools")
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def guarded(pool: StoragePool) -> PoolOutcome:
            async with semaphore:
                # Cancellation only takes effect between pools
                if cancel_event is not None and cancel_event.is_set():
                    outcome = PoolOutcome(pool_id=pool.id, kind=pool.kind,
                                          cloud_mirror=pool.cloud_mirror)
                    outcome.degrade("run cancelled before this pool started")
                    return outcome
                return await self.run_pool(pool, force_tier, dry_run)

        outcomes = await asyncio.gather(*(guarded(pool) for pool in selected))
        report.outcomes = list(outcomes)
        report.cancelled = cancel_event is not None and cancel_event.is_set()
        report.pending_repositories = await self._count_pending_repositories()
        report.finished_at = self.clock.now()

        logger.info(f"Retention run finished with severity {report.severity.name}")
        if not dry_run and self.report_store is not None:
            self.report_store.save(report)
        if self.metrics is not None:
            self.metrics.observe(report)
            if self.metrics_path is not None:
                try:
                    self.metrics.write(self.metrics_path)
                except OSError as e:
                    logger.error(f"Could not write metrics to {self.metrics_path}: {e}")
        return report

    async def run_pool(self, pool: StoragePool, force_tier: Optional[CleanupTier] = None,
                       dry_run: bool = False) -> PoolOutcome:
        """Measure, clean and create for a single pool under its lock."""
        outcome = PoolOutcome(pool_id=pool.id, kind=pool.kind, cloud_mirror=pool.cloud_mirror)
        run = PoolRun(pool.id)
        try:
            async with self.locks.hold(pool):
                await self._pass(pool, run, outcome, force_tier, dry_run)
        except PoolBusy as e:
            outcome.degrade(e.message)
        except RetentionError as e:
            logger.error(f"Pool {pool.id} failed: {e.message}")
            outcome.degrade(e.message)
        except Exception as e:
            # One pool's failure must never halt the others
            logger.exception(f"Unexpected error while processing pool {pool.id}")
            outcome.degrade(f"unexpected error: {e}")
        finally:
            run.finish()
            outcome.phases = [phase.value for phase in run.history]
        return outcome

    async def _pass(self, pool: StoragePool, run: PoolRun, outcome: PoolOutcome,
                    force_tier: Optional[CleanupTier], dry_run: bool) -> None:
        run.transition(PoolPhase.MEASURING)
        try:
            usage = await self.accountant.measure(pool)
        except PoolUnavailable as e:
            logger.warning(f"Skipping pool {pool.id}: {e.message}")
            outcome.retention = RetentionReport(pool_id=pool.id, skipped=e.code)
            outcome.degrade(e.message, Severity.UNAVAILABLE)
            return
        except MeasurementFailed as e:
            logger.warning(f"Skipping pool {pool.id}: {e.message}")
            outcome.retention = RetentionReport(pool_id=pool.id, skipped=e.code)
            outcome.degrade(e.message)
            return
        outcome.usage = usage

        if not pool.managed:
            if usage.available < pool.critical_threshold:
                outcome.degrade(f"{pool.id} below critical threshold ({usage.available} bytes free)")
            return

        automatic = select_tier(usage.available, pool.warning_threshold, pool.critical_threshold)
        tier = select_pool_tier(pool, usage.available, force_tier)
        outcome.tier = tier
        if tier != automatic:
            logger.warning(f"Pool {pool.id}: tier forced to {tier.value} "
                           f"(space alone gives {automatic.value})")

        run.transition(PoolPhase.CLEANING)
        retention = await self.cleaner.clean(
            pool, tier, usage, early_stop=tier == automatic, dry_run=dry_run
        )
        outcome.retention = retention
        for failure in retention.failures:
            outcome.degrade(failure.error)

        available = retention.final_available if retention.final_available is not None \
            else usage.available
        if available < pool.critical_threshold:
            outcome.degrade(f"{pool.id} still below critical threshold after cleanup")

        if not pool.creation.policy or dry_run:
            run.transition(PoolPhase.REPORTING)
            await self._check_freshness(pool, outcome)
            return

        run.transition(PoolPhase.CREATING)
        current = SpaceUsage(total=usage.total, used=max(usage.total - available, 0),
                             available=available)
        creation = await self._create(pool, current)
        outcome.creation = creation
        if creation is not None and creation.failed:
            outcome.degrade(f"protection degraded: {creation.error}")

        run.transition(PoolPhase.REPORTING)
        await self._check_freshness(pool, outcome)

    async def _check_freshness(self, pool: StoragePool, outcome: PoolOutcome) -> None:
        """Record the pool's newest unit and degrade the pool if it is too old."""
        try:
            units = await self.unit_index.list(pool)
        except (CommandTimeout, OSError) as e:
            message = e.message if isinstance(e, CommandTimeout) else str(e)
            logger.warning(f"Could not list units of {pool.id}: {message}")
            outcome.degrade(f"could not list units: {message}")
            return

        outcome.unit_count = len(units)
        if not units:
            return
        head = units[0]
        age = head.age(self.clock.now())
        outcome.head_unit = head.id
        outcome.head_age_seconds = int(age.total_seconds())

        limit = pool.max_head_age
        if limit is not None and age > limit:
            logger.warning(f"Pool {pool.id}: newest unit {head.id} is {age} old (limit {limit})")
            outcome.degrade(f"newest unit {head.id} is older than {limit}")

    async def _create(self, pool: StoragePool, usage: SpaceUsage) -> Optional[CreationResult]:
        policy = pool.creation.policy
        if policy == "snapshot" and self.snapshots is not None:
            return await self.snapshots.maybe_create_snapshot(pool, usage=usage)
        if policy in ("weekly", "monthly") and self.archives is not None:
            period = ArchivePeriod(policy)
            return await self.archives.maybe_create_archive(pool, period, usage=usage)
        if policy == "mirror" and self.mirror is not None:
            return await self.mirror.maybe_update_mirror(pool, usage=usage)
        logger.warning(f"No creator available for policy {policy!r} on pool {pool.id}")
        return None

    async def _count_pending_repositories(self) -> Optional[int]:
        if self.repository_scanner is None or self.repositories_root is None:
            return None
        try:
            return await self.repository_scanner.count_pending(self.repositories_root)
        except Exception as e:
            logger.error(f"Could not count repositories with pending changes: {e}")
            return None
