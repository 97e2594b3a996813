"""Shared fakes and builders for the retention engine tests."""
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from backup_retention.collaborators.archiver import Archiver
from backup_retention.collaborators.delta_copy import CopyResult, DeltaCopier
from backup_retention.errors import CommandFailed, MeasurementFailed, PoolUnavailable
from backup_retention.models import (
    ArchivePeriod,
    CreationConfig,
    PoolKind,
    SpaceUsage,
    StoragePool,
)
from backup_retention.storage import naming
from backup_retention.storage.accountant import SpaceAccountant

GB = 1024 ** 3


def make_pool(root: Path, kind: str, warning: int = 15 * GB, critical: int = 5 * GB,
              policy: Optional[str] = None, source: Optional[Path] = None,
              pool_id: Optional[str] = None, create_root: bool = True, **creation) -> StoragePool:
    """Build a pool rooted at ``root``, creating the directory by default."""
    if create_root:
        root.mkdir(parents=True, exist_ok=True)
    return StoragePool(
        id=pool_id or root.name,
        root=root,
        kind=PoolKind(kind),
        warning_threshold=warning,
        critical_threshold=critical,
        creation=CreationConfig(policy=policy, source=source, **creation),
    )


def make_snapshot(root: Path, created_at: datetime, size: int = 1000,
                  base: Optional[str] = None) -> Path:
    path = root / naming.snapshot_name(created_at)
    path.mkdir(parents=True)
    (path / "data.bin").write_bytes(b"x" * size)
    if base:
        (path / naming.BASE_MARKER).write_text(base + "\n")
    return path


def make_archive(root: Path, period: ArchivePeriod, created_at: datetime,
                 prefix: str = "prj", size: int = 1000) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / naming.archive_name(prefix, period, created_at)
    path.write_bytes(b"a" * size)
    return path


def grows_with_deletions(root: Path, base: int, per_unit: int, prefix: str = "snapshot_"):
    """Available space that rises by ``per_unit`` for every unit removed from ``root``."""
    def count() -> int:
        return len([p for p in root.iterdir() if p.name.startswith(prefix)])

    initial = count()

    def level(pool: StoragePool) -> int:
        return base + (initial - count()) * per_unit

    return level


class FakeAccountant(SpaceAccountant):
    """Returns scripted measurements instead of reading the filesystem."""

    def __init__(self, default: int = 100 * GB, total: int = 500 * GB):
        super().__init__(timeout=30)
        self.default = default
        self.total = total
        self.levels = {}
        self.unavailable = set()
        self.failing = set()
        self.calls = []

    def set_available(self, pool_id: str, level) -> None:
        """``level`` is a byte count or a callable taking the pool."""
        self.levels[pool_id] = level

    async def measure(self, pool: StoragePool) -> SpaceUsage:
        self.calls.append(pool.id)
        if pool.id in self.unavailable:
            raise PoolUnavailable(pool.id, pool.root)
        if pool.id in self.failing:
            raise MeasurementFailed(pool.id, "simulated statfs failure")
        level = self.levels.get(pool.id, self.default)
        available = level(pool) if callable(level) else level
        return SpaceUsage(total=self.total, used=self.total - available, available=available)


class FakeCopier(DeltaCopier):
    """Plain recursive copy that records how it was called."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def copy(self, source: Path, target: Path, link_base: Optional[Path] = None,
                   delete: bool = True) -> CopyResult:
        self.calls.append({
            "source": source,
            "target": target,
            "link_base": link_base,
            "delete": delete,
        })
        if self.fail:
            raise CommandFailed("rsync", 23, "some files could not be transferred")
        shutil.copytree(source, target, dirs_exist_ok=True)
        transferred = sum(p.stat().st_size for p in source.rglob("*") if p.is_file())
        return CopyResult(bytes_transferred=transferred)


class FakeArchiver(Archiver):
    """Writes a placeholder archive; verification result is configurable."""

    def __init__(self, valid: bool = True, fail: bool = False):
        self.valid = valid
        self.fail = fail
        self.created = []
        self.verified = []

    async def create(self, source: Path, target: Path, excludes: Sequence[str] = ()) -> int:
        self.created.append(target)
        if self.fail:
            raise CommandFailed("tar", 2, "Cannot open: No such file or directory")
        target.write_bytes(b"archive of " + source.name.encode())
        return target.stat().st_size

    async def verify(self, target: Path) -> bool:
        self.verified.append(target)
        return self.valid
