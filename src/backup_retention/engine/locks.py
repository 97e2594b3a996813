"""Per-pool exclusive locks.

Cleanup and creation on the same pool must never overlap: a concurrent
create could look like a deletion candidate and a concurrent delete could
remove the base a new snapshot links against.
"""
import asyncio
import fcntl
import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from ..collaborators.process import run_blocking
from ..errors import CommandTimeout, PoolBusy
from ..models import StoragePool
from ..storage import naming

logger = logging.getLogger(__name__)


def lock_pool_file(pool: StoragePool) -> Optional[int]:
    """Take the pool's lock file without waiting.

    Returns the open descriptor, or None when the root does not exist.
    """
    # Pool roots are only locked once they are known to exist
    if not pool.root.is_dir():
        return None
    fd = os.open(pool.root / naming.LOCK_FILE, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        os.close(fd)
        logger.warning(f"Pool {pool.id} is locked by another process")
        raise PoolBusy(pool.id) from None
    return fd


def unlock_pool_file(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class PoolLockRegistry:
    """In-process asyncio locks backed by an on-disk lock file per pool."""

    def __init__(self, timeout: float = 300):
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    def get_lock(self, pool_id: str) -> asyncio.Lock:
        """Get or create the in-process lock for a pool"""
        if pool_id not in self._locks:
            self._locks[pool_id] = asyncio.Lock()
        return self._locks[pool_id]

    @asynccontextmanager
    async def hold(self, pool: StoragePool):
        """Hold the pool exclusively for the duration of the block.

        Raises:
            PoolBusy: another process holds the pool's lock file
            CommandTimeout: the lock file could not be reached in time
        """
        async with self.get_lock(pool.id):
            fd = await run_blocking(lock_pool_file, pool, timeout=self.timeout,
                                    operation=f"lock {pool.id}")
            try:
                yield
            finally:
                if fd is not None:
                    await self._release(pool, fd)

    async def _release(self, pool: StoragePool, fd: int) -> None:
        try:
            await run_blocking(unlock_pool_file, fd, timeout=self.timeout,
                               operation=f"unlock {pool.id}")
        except (CommandTimeout, OSError) as e:
            message = e.message if isinstance(e, CommandTimeout) else str(e)
            logger.error(f"Could not release lock on pool {pool.id}: {message}")
