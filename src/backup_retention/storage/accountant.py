"""
Space accounting for storage pools.
"""
import logging
import os

import psutil

from ..collaborators.process import run_blocking
from ..errors import CommandTimeout, MeasurementFailed, PoolUnavailable
from ..models import SpaceUsage, StoragePool

logger = logging.getLogger(__name__)


def read_usage(root: str):
    """Disk usage of the filesystem holding ``root``, None when root is missing."""
    if not os.path.isdir(root):
        return None
    return psutil.disk_usage(root)


class SpaceAccountant:
    """Reads total, used and available capacity for a pool's filesystem."""

    def __init__(self, timeout: float = 300):
        self.timeout = timeout

    async def measure(self, pool: StoragePool) -> SpaceUsage:
        """Measure the pool's filesystem.

        Raises:
            PoolUnavailable: the root location does not exist right now
            MeasurementFailed: the root exists but its usage could not be read
                in time
        """
        try:
            usage = await run_blocking(
                read_usage, str(pool.root),
                timeout=self.timeout, operation=f"disk usage of {pool.root}"
            )
        except CommandTimeout as e:
            raise MeasurementFailed(pool.id, e.message) from e
        except OSError as e:
            raise MeasurementFailed(pool.id, str(e)) from e

        if usage is None:
            logger.warning(f"Pool {pool.id} not found at {pool.root}")
            raise PoolUnavailable(pool.id, pool.root)

        space = SpaceUsage(total=usage.total, used=usage.used, available=usage.free)
        logger.info(
            f"Pool {pool.id}: {space.used} of {space.total} bytes used "
            f"({space.percent_used}%), {space.available} available"
        )
        return space
