"""
Periodic compressed archives.

A weekly archive is produced once per ISO week and a monthly archive once
per calendar month, inside the first few days of that month. Existence is
checked by period key, never by exact timestamp.
"""
import os
import shutil
from pathlib import Path
from typing import Dict, Optional

from ..collaborators.archiver import Archiver
from ..collaborators.process import run_blocking
from ..engine.clock import Clock
from ..engine.state import EventLog, PeriodMarker
from ..errors import CommandFailed, CommandTimeout, UnitCreationFailed
from ..models import (
    ArchivePeriod,
    ArchiveResult,
    BackupUnit,
    CreationStatus,
    SpaceUsage,
    StoragePool,
)
from ..storage import naming
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog
from .creator import UnitCreator


def _copy_file(source: Path, target: Path) -> int:
    shutil.copy2(source, target)
    return os.path.getsize(target)


class ArchiveScheduler(UnitCreator):
    """Creates weekly and monthly archives when their period is not yet covered."""

    def __init__(self, catalog: BackupUnitCatalog, accountant: SpaceAccountant,
                 archiver: Archiver, clock: Optional[Clock] = None,
                 event_log: Optional[EventLog] = None, timeout: float = 300,
                 pools: Optional[Dict[str, StoragePool]] = None):
        super().__init__(catalog, accountant, clock, event_log, timeout)
        self.archiver = archiver
        self.pools = pools or {}

    def is_in_window(self, pool: StoragePool, period: ArchivePeriod) -> bool:
        if period == ArchivePeriod.MONTHLY:
            return self.clock.now().day <= pool.creation.monthly_window_days
        return True

    async def maybe_create_archive(self, pool: StoragePool, period: ArchivePeriod,
                                   source: Optional[Path] = None,
                                   usage: Optional[SpaceUsage] = None) -> ArchiveResult:
        """Create the archive for the current period unless one already exists."""
        now = self.clock.now()
        key = naming.period_key(now, period)

        if not self.is_in_window(pool, period):
            self.logger.info(
                f"Skipping {period.value} archive for {pool.id}: day {now.day} is past "
                f"the first {pool.creation.monthly_window_days} days of the month"
            )
            return ArchiveResult(pool_id=pool.id, status=CreationStatus.NOT_DUE, period_key=key)

        existing = await self._find_for_period(pool, period, key)
        if existing is not None:
            self.logger.info(f"{period.value.capitalize()} archive already exists for {key}: {existing}")
            return ArchiveResult(
                pool_id=pool.id, status=CreationStatus.ALREADY_SATISFIED,
                unit_id=existing, period_key=key
            )

        name = naming.archive_name(pool.creation.archive_prefix, period, now)
        try:
            await self._check_space(pool, usage)
            size = await self._create(pool, period, key, name, source)
        except UnitCreationFailed as e:
            return self._failed(pool, e, unit_id=name, period_key=key)

        await self._mark_period(pool, period, key)
        self._record(pool, name, "created", period_key=key, bytes=size)
        return ArchiveResult(
            pool_id=pool.id, status=CreationStatus.CREATED, unit_id=name,
            period_key=key, bytes=size
        )

    async def _mark_period(self, pool: StoragePool, period: ArchivePeriod, key: str) -> None:
        """Record the completed period; the archive itself already counts for it."""
        try:
            await run_blocking(PeriodMarker(pool.root).update, period.value, key,
                               timeout=self.timeout, operation=f"update {naming.PERIOD_MARKER}")
        except (CommandTimeout, OSError) as e:
            message = e.message if isinstance(e, CommandTimeout) else str(e)
            self.logger.error(f"Could not record {period.value} {key} for {pool.id}: {message}")

    async def _find_for_period(self, pool: StoragePool, period: ArchivePeriod,
                               key: str) -> Optional[str]:
        for unit in await self.catalog.list(pool):
            if naming.period_key(unit.created_at, period) == key:
                return unit.id
        last = await run_blocking(PeriodMarker(pool.root).last, period.value,
                                  timeout=self.timeout, operation=f"read {naming.PERIOD_MARKER}")
        if last == key:
            return f"{period.value} {key} (recorded in {naming.PERIOD_MARKER})"
        return None

    async def _seed_unit(self, pool: StoragePool, key: str) -> Optional[BackupUnit]:
        """Archive in the seed pool created in the current month, if any."""
        seed = self.pools.get(pool.creation.seed_pool) if pool.creation.seed_pool else None
        if seed is None:
            return None
        for unit in await self.catalog.list(seed):
            if naming.period_key(unit.created_at, ArchivePeriod.MONTHLY) == key:
                return unit
        return None

    async def _create(self, pool: StoragePool, period: ArchivePeriod, key: str,
                      name: str, source: Optional[Path]) -> int:
        target = pool.root / name
        partial = pool.root / (name + naming.PARTIAL_SUFFIX)
        await self._discard(partial)

        try:
            seed = await self._seed_unit(pool, key) if period == ArchivePeriod.MONTHLY else None
            if seed is not None:
                # Copying this month's weekly archive is cheaper than recompressing
                self.logger.info(f"Seeding {name} from {seed.pool_id}/{seed.id}")
                size = await run_blocking(_copy_file, seed.path, partial,
                                          timeout=self.archiver_timeout,
                                          operation=f"copy {seed.id}")
            else:
                source = await self._resolve_source(pool, source)
                self.logger.info(f"Creating {period.value} archive {name} from {source}")
                size = await self.archiver.create(source, partial, pool.creation.excludes)

            if not await self.archiver.verify(partial):
                raise UnitCreationFailed(pool.id, f"integrity check failed for {name}")
            await run_blocking(os.replace, partial, target, timeout=self.timeout,
                               operation=f"finalize {name}")
        except UnitCreationFailed:
            await self._discard(partial)
            raise
        except (CommandFailed, CommandTimeout) as e:
            await self._discard(partial)
            raise UnitCreationFailed(pool.id, e.message) from e
        except OSError as e:
            await self._discard(partial)
            raise UnitCreationFailed(pool.id, str(e)) from e

        self.logger.info(f"{period.value.capitalize()} archive {name} created: {size} bytes")
        return size

    @property
    def archiver_timeout(self) -> float:
        return getattr(self.archiver, "timeout", self.timeout)
