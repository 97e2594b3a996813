"""Daily full mirror of the source directory."""
from pathlib import Path
from typing import Optional

from ..collaborators.delta_copy import DeltaCopier
from ..engine.clock import Clock
from ..engine.state import EventLog
from ..errors import CommandFailed, CommandTimeout, UnitCreationFailed
from ..models import CreationResult, CreationStatus, SpaceUsage, StoragePool
from ..storage import naming
from ..storage.accountant import SpaceAccountant
from ..storage.catalog import BackupUnitCatalog, read_marker
from .creator import UnitCreator


class MirrorUpdater(UnitCreator):
    """Refreshes the pool's current mirror at most once per calendar day."""

    def __init__(self, catalog: BackupUnitCatalog, accountant: SpaceAccountant,
                 copier: DeltaCopier, clock: Optional[Clock] = None,
                 event_log: Optional[EventLog] = None, timeout: float = 300):
        super().__init__(catalog, accountant, clock, event_log, timeout)
        self.copier = copier

    async def maybe_update_mirror(self, pool: StoragePool, source: Optional[Path] = None,
                                  usage: Optional[SpaceUsage] = None) -> CreationResult:
        now = self.clock.now()
        today = now.date().isoformat()
        mirror = pool.root / naming.MIRROR_DIR
        marker = mirror / naming.MIRROR_MARKER

        try:
            last_sync = await self._blocking(pool, read_marker, marker,
                                             operation=f"read {naming.MIRROR_MARKER}")
            if last_sync and last_sync[:10] == today:
                self.logger.info(f"Current mirror already synced today ({last_sync})")
                return CreationResult(
                    pool_id=pool.id, status=CreationStatus.ALREADY_SATISFIED,
                    unit_id=naming.MIRROR_DIR, period_key=today
                )

            source = await self._resolve_source(pool, source)
            await self._check_space(pool, usage)
            await self._blocking(pool, mirror.mkdir, parents=True, exist_ok=True,
                                 operation=f"create {mirror}")
            result = await self.copier.copy(source, mirror, delete=True)
            # Written after the copy since --delete would remove it
            await self._blocking(pool, marker.write_text, now.isoformat() + "\n",
                                 encoding="utf-8", operation=f"write {naming.MIRROR_MARKER}")
        except (CommandFailed, CommandTimeout) as e:
            return self._failed(pool, UnitCreationFailed(pool.id, e.message),
                                unit_id=naming.MIRROR_DIR, period_key=today)
        except OSError as e:
            return self._failed(pool, UnitCreationFailed(pool.id, str(e)),
                                unit_id=naming.MIRROR_DIR, period_key=today)
        except UnitCreationFailed as e:
            return self._failed(pool, e, unit_id=naming.MIRROR_DIR, period_key=today)

        self.logger.info(f"Daily mirror sync completed, {result.bytes_transferred} bytes transferred")
        self._record(pool, naming.MIRROR_DIR, "created", bytes=result.bytes_transferred)
        return CreationResult(
            pool_id=pool.id, status=CreationStatus.CREATED, unit_id=naming.MIRROR_DIR,
            period_key=today, bytes=result.bytes_transferred
        )
