"""
Shared plumbing for components that add units to a pool.
"""
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from ..collaborators.process import run_blocking
from ..engine.clock import Clock, SystemClock
from ..engine.state import EventLog
from ..errors import CommandTimeout, MeasurementFailed, PoolUnavailable, UnitCreationFailed
from ..models import CreationResult, CreationStatus, SpaceUsage, StoragePool
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    elif path.exists():
        os.remove(path)


class UnitCreator:
    """Base class for the snapshot creator, archive scheduler and mirror updater."""

    def __init__(self, catalog: BackupUnitCatalog, accountant: SpaceAccountant,
                 clock: Optional[Clock] = None, event_log: Optional[EventLog] = None,
                 timeout: float = 300):
        self.catalog = catalog
        self.accountant = accountant
        self.clock = clock or SystemClock()
        self.event_log = event_log
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__module__)

    async def _blocking(self, pool: StoragePool, func, *args, operation: str, **kwargs):
        """Run a filesystem call within the timeout, as a creation failure if it expires."""
        try:
            return await run_blocking(func, *args, timeout=self.timeout,
                                      operation=operation, **kwargs)
        except CommandTimeout as e:
            raise UnitCreationFailed(pool.id, e.message) from e

    async def _resolve_source(self, pool: StoragePool, source: Optional[Path]) -> Path:
        source = Path(source) if source is not None else pool.creation.source
        if source is None or not await self._blocking(pool, os.path.isdir, source,
                                                      operation=f"check {source}"):
            raise UnitCreationFailed(pool.id, f"source directory not found: {source}")
        return source

    async def _check_space(self, pool: StoragePool, usage: Optional[SpaceUsage]) -> None:
        """Refuse to start a creation that could fill the pool."""
        required = pool.creation.min_free_bytes
        if not required:
            return
        if usage is None:
            try:
                usage = await self.accountant.measure(pool)
            except (PoolUnavailable, MeasurementFailed) as e:
                raise UnitCreationFailed(pool.id, e.message) from e
        if usage.available < required:
            raise UnitCreationFailed(
                pool.id,
                f"insufficient space: {usage.available} bytes available, {required} required"
            )

    async def _discard(self, path: Path) -> None:
        """Remove a partially created unit, logging rather than raising."""
        try:
            await run_blocking(_remove_path, path, timeout=self.timeout, operation=f"discard {path}")
        except Exception as e:
            self.logger.error(f"Could not remove partial unit {path}: {e}")

    def _failed(self, pool: StoragePool, error: UnitCreationFailed,
                unit_id: Optional[str] = None, **fields) -> CreationResult:
        self.logger.error(error.message)
        self._record(pool, unit_id or "-", "failed", error.message)
        return CreationResult(
            pool_id=pool.id, status=CreationStatus.FAILED, unit_id=unit_id,
            error=error.message, **fields
        )

    def _record(self, pool: StoragePool, unit_id: str, outcome: str,
                detail: Optional[str] = None, **extra) -> None:
        if self.event_log is None:
            return
        self.event_log.record(self.clock.now(), pool.id, unit_id, "create", outcome, detail, **extra)
