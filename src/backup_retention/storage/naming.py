"""
Unit naming conventions.

A unit's creation time is embedded in its name so that ordering survives
copies and restores that rewrite filesystem timestamps.
"""
import re
from datetime import datetime
from typing import Optional

from ..models import ArchivePeriod, PoolKind

PARTIAL_SUFFIX = ".partial"
MIRROR_DIR = "current_mirror"
MIRROR_MARKER = ".last_sync"
BASE_MARKER = ".base_unit"
PERIOD_MARKER = ".last_period"
LOCK_FILE = ".retention.lock"

SNAPSHOT_FORMAT = "snapshot_%Y-%m-%d_%H-%M-%S"
ARCHIVE_SUFFIX = ".tar.gz"

_SNAPSHOT_RE = re.compile(r"^snapshot_(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})$")


def snapshot_name(created_at: datetime) -> str:
    return created_at.strftime(SNAPSHOT_FORMAT)


def archive_name(prefix: str, period: ArchivePeriod, created_at: datetime) -> str:
    return f"{prefix}_{period.value}_{created_at.strftime('%Y-%m-%d')}{ARCHIVE_SUFFIX}"


def period_key(moment: datetime, period: ArchivePeriod) -> str:
    """Calendar bucket for a moment: ISO week (2026-W42) or month (2026-10)."""
    if period == ArchivePeriod.WEEKLY:
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    return moment.strftime("%Y-%m")


def _archive_pattern(prefix: str, period: ArchivePeriod):
    return re.compile(
        rf"^{re.escape(prefix)}_{period.value}_(\d{{4}}-\d{{2}}(?:-\d{{2}})?){re.escape(ARCHIVE_SUFFIX)}$"
    )


def parse_unit_time(name: str, kind: PoolKind, prefix: str = "prj") -> Optional[datetime]:
    """Return the creation time embedded in a unit name, or None if it is not one."""
    if name.endswith(PARTIAL_SUFFIX):
        return None

    if kind == PoolKind.SNAPSHOT:
        match = _SNAPSHOT_RE.match(name)
        if not match:
            return None
        return _strptime(match.group(1), "%Y-%m-%d_%H-%M-%S")

    if kind in (PoolKind.WEEKLY_ARCHIVE, PoolKind.MONTHLY_ARCHIVE):
        period = ArchivePeriod.WEEKLY if kind == PoolKind.WEEKLY_ARCHIVE else ArchivePeriod.MONTHLY
        match = _archive_pattern(prefix, period).match(name)
        if not match:
            return None
        stamp = match.group(1)
        # Older monthly archives were named by month only
        if len(stamp) == 7:
            return _strptime(stamp, "%Y-%m") if period == ArchivePeriod.MONTHLY else None
        return _strptime(stamp, "%Y-%m-%d")

    return None


def _strptime(value: str, fmt: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, fmt)
    except ValueError:
        return None
