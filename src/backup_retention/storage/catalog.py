"""
Backup unit catalog.

Units are re-derived from the pool's durable storage on every call; no
in-memory state is trusted across calls.
"""
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from ..collaborators.process import run_blocking
from ..models import BackupUnit, PoolKind, StoragePool
from . import naming

logger = logging.getLogger(__name__)


def measure_path(path: Path) -> Tuple[int, int]:
    """Return (apparent size, bytes freed by deleting path).

    Every inode is counted once. Files that are hard-linked from elsewhere
    (link count above one) do not count towards the freed bytes.
    """
    try:
        stat = os.lstat(path)
    except FileNotFoundError:
        return 0, 0
    if not os.path.isdir(path) or os.path.islink(path):
        return stat.st_size, stat.st_size if stat.st_nlink <= 1 else 0

    seen = set()
    size = 0
    reclaimable = 0
    for dirpath, dirnames, filenames in os.walk(path):
        for filename in filenames:
            try:
                file_stat = os.lstat(os.path.join(dirpath, filename))
            except OSError:
                continue
            key = (file_stat.st_dev, file_stat.st_ino)
            if key in seen:
                continue
            seen.add(key)
            size += file_stat.st_size
            if file_stat.st_nlink <= 1:
                reclaimable += file_stat.st_size
    return size, reclaimable


def read_marker(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except (FileNotFoundError, NotADirectoryError):
        return None


def _parse_marker_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug(f"Ignoring unreadable marker value {value!r}")
        return None


class BackupUnitCatalog:
    """Enumerates the units in a pool, newest first."""

    def __init__(self, timeout: float = 300, with_sizes: bool = True):
        self.timeout = timeout
        self.with_sizes = with_sizes

    async def list(self, pool: StoragePool) -> List[BackupUnit]:
        return await run_blocking(
            self.scan, pool, timeout=self.timeout, operation=f"catalog of {pool.id}"
        )

    async def head(self, pool: StoragePool) -> Optional[BackupUnit]:
        units = await self.list(pool)
        return units[0] if units else None

    def scan(self, pool: StoragePool) -> List[BackupUnit]:
        """Synchronously enumerate units in ``pool``."""
        if not pool.managed or not pool.root.is_dir():
            return []

        if pool.kind == PoolKind.MIRROR:
            units = self._scan_mirror(pool)
        else:
            units = []
            for entry in sorted(pool.root.iterdir()):
                created_at = naming.parse_unit_time(
                    entry.name, pool.kind, pool.creation.archive_prefix
                )
                if created_at is None:
                    logger.debug(f"Skipping {entry.name} in pool {pool.id}")
                    continue
                if pool.kind == PoolKind.SNAPSHOT and not entry.is_dir():
                    continue
                if pool.kind != PoolKind.SNAPSHOT and not entry.is_file():
                    continue
                units.append(self._unit(pool, entry, created_at))

        units.sort(key=lambda unit: unit.created_at, reverse=True)
        return units

    def _scan_mirror(self, pool: StoragePool) -> List[BackupUnit]:
        mirror = pool.root / naming.MIRROR_DIR
        created_at = _parse_marker_time(read_marker(mirror / naming.MIRROR_MARKER))
        if not mirror.is_dir() or created_at is None:
            return []
        return [self._unit(pool, mirror, created_at)]

    def _unit(self, pool: StoragePool, path: Path, created_at: datetime) -> BackupUnit:
        size, reclaimable = measure_path(path) if self.with_sizes else (0, 0)
        base_unit = None
        if pool.kind == PoolKind.SNAPSHOT:
            base_unit = read_marker(path / naming.BASE_MARKER)
        return BackupUnit(
            pool_id=pool.id,
            id=path.name,
            kind=pool.kind,
            created_at=created_at,
            path=path,
            size=size,
            reclaimable=reclaimable,
            base_unit=base_unit,
        )
