"""
Incremental snapshot creation.

Each snapshot is a full directory tree in which files unchanged since the
previous snapshot are hard links into it, so only changed files take
additional space.
"""
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from ..collaborators.delta_copy import DeltaCopier
from ..collaborators.process import run_blocking
from ..engine.clock import Clock
from ..engine.state import EventLog
from ..errors import CommandFailed, CommandTimeout, UnitCreationFailed
from ..models import (
    CreationStatus,
    SnapshotResult,
    SpaceUsage,
    StoragePool,
)
from ..storage import naming
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog
from .creator import UnitCreator


def _finalize(partial: Path, final: Path, base_unit: Optional[str]) -> None:
    if base_unit:
        (partial / naming.BASE_MARKER).write_text(base_unit + "\n", encoding="utf-8")
    os.replace(partial, final)


class SnapshotCreator(UnitCreator):
    """Creates a new snapshot when the head is older than the minimum interval."""

    def __init__(self, catalog: BackupUnitCatalog, accountant: SpaceAccountant,
                 copier: DeltaCopier, clock: Optional[Clock] = None,
                 event_log: Optional[EventLog] = None, timeout: float = 300):
        super().__init__(catalog, accountant, clock, event_log, timeout)
        self.copier = copier

    async def maybe_create_snapshot(self, pool: StoragePool, source: Optional[Path] = None,
                                    usage: Optional[SpaceUsage] = None) -> SnapshotResult:
        """Create a snapshot of ``source`` in ``pool`` if one is due.

        Calling again within the minimum interval is a no-op that returns
        NOT_DUE.
        """
        now = self.clock.now()
        units = await self.catalog.list(pool)
        head = units[0] if units else None
        interval = timedelta(seconds=pool.creation.min_interval_seconds)

        if head is not None and now - head.created_at < interval:
            self.logger.info(
                f"Snapshot not due for {pool.id}: head {head.id} is "
                f"{now - head.created_at} old (interval {interval})"
            )
            return SnapshotResult(
                pool_id=pool.id, status=CreationStatus.NOT_DUE,
                unit_id=head.id, base_unit=head.base_unit
            )

        name = naming.snapshot_name(now)
        final = pool.root / name
        base_id = head.id if head is not None else None
        try:
            if await self._blocking(pool, os.path.lexists, final, operation=f"check {name}"):
                return SnapshotResult(pool_id=pool.id, status=CreationStatus.NOT_DUE,
                                      unit_id=name)
            source = await self._resolve_source(pool, source)
            await self._check_space(pool, usage)
            transferred = await self._create(pool, source, name, head.path if head else None,
                                             base_id)
        except UnitCreationFailed as e:
            return self._failed(pool, e, unit_id=name, base_unit=base_id)

        self._record(pool, name, "created", base_unit=base_id, bytes=transferred)
        return SnapshotResult(
            pool_id=pool.id, status=CreationStatus.CREATED, unit_id=name,
            base_unit=base_id, bytes=transferred
        )

    async def _create(self, pool: StoragePool, source: Path, name: str,
                      base_path: Optional[Path], base_id: Optional[str]) -> int:
        final = pool.root / name
        partial = pool.root / (name + naming.PARTIAL_SUFFIX)
        await self._discard(partial)

        if base_path is not None:
            self.logger.info(f"Creating snapshot {name} linked against {base_id}")
        else:
            self.logger.info(f"No previous snapshot in {pool.id}, creating full snapshot {name}")

        try:
            await run_blocking(partial.mkdir, parents=True, timeout=self.timeout,
                               operation=f"create {partial.name}")
            result = await self.copier.copy(source, partial, link_base=base_path)
            await run_blocking(_finalize, partial, final, base_id,
                               timeout=self.timeout, operation=f"finalize {name}")
        except (CommandFailed, CommandTimeout) as e:
            await self._discard(partial)
            raise UnitCreationFailed(pool.id, e.message) from e
        except OSError as e:
            await self._discard(partial)
            raise UnitCreationFailed(pool.id, str(e)) from e

        self.logger.info(f"Snapshot {name} created, {result.bytes_transferred} bytes transferred")
        return result.bytes_transferred
