"""Data models for the tiered backup retention engine."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any


class PoolKind(Enum):
    SNAPSHOT = "snapshot"
    WEEKLY_ARCHIVE = "weekly-archive"
    MONTHLY_ARCHIVE = "monthly-archive"
    MIRROR = "mirror"
    SYSTEM = "system"  # Measured and reported only

    @property
    def managed(self) -> bool:
        """Whether the engine cleans and creates units in pools of this kind"""
        return self is not PoolKind.SYSTEM


class CleanupTier(Enum):
    """Cleanup severity, ordered from least to most permissive of deletion."""
    NORMAL = "normal"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, CleanupTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, CleanupTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, CleanupTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, CleanupTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_ORDER = [
    CleanupTier.NORMAL,
    CleanupTier.MODERATE,
    CleanupTier.AGGRESSIVE,
    CleanupTier.CRITICAL,
]


class ArchivePeriod(Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Severity(Enum):
    """Worst outcome of a pool pass; the value is the CLI exit code."""
    OK = 0
    DEGRADED = 1
    UNAVAILABLE = 2


class CreationStatus(Enum):
    CREATED = "created"
    NOT_DUE = "not_due"
    ALREADY_SATISFIED = "already_satisfied"
    FAILED = "failed"


@dataclass
class CreationConfig:
    """How new units are produced for a pool."""
    policy: Optional[str] = None  # snapshot | weekly | monthly | mirror
    source: Optional[Path] = None
    min_interval_seconds: int = 3600
    min_free_bytes: int = 0
    monthly_window_days: int = 7
    archive_prefix: str = "prj"
    excludes: List[str] = field(default_factory=list)
    seed_pool: Optional[str] = None
    max_head_age_seconds: Optional[int] = None  # None derives a limit from the policy


@dataclass
class StoragePool:
    """A named capacity domain holding backup units of one kind."""
    id: str
    root: Path
    kind: PoolKind
    warning_threshold: int
    critical_threshold: int
    creation: CreationConfig = field(default_factory=CreationConfig)
    force_tier: Optional[CleanupTier] = None
    cloud_mirror: bool = False

    @property
    def managed(self) -> bool:
        return self.kind.managed

    @property
    def max_head_age(self) -> Optional[timedelta]:
        """How old the newest unit may get before the pool counts as stale."""
        creation = self.creation
        if creation.max_head_age_seconds is not None:
            return timedelta(seconds=creation.max_head_age_seconds)
        if creation.policy == "snapshot":
            return timedelta(seconds=2 * creation.min_interval_seconds)
        if creation.policy == "weekly":
            return timedelta(days=8)
        if creation.policy == "monthly":
            return timedelta(days=31 + creation.monthly_window_days)
        if creation.policy == "mirror":
            return timedelta(days=1)
        return None


@dataclass(frozen=True)
class SpaceUsage:
    """Capacity of a pool in bytes."""
    total: int
    used: int
    available: int

    @property
    def percent_used(self) -> float:
        if not self.total:
            return 0.0
        return round(self.used * 100.0 / self.total, 1)


@dataclass(frozen=True)
class BackupUnit:
    """One immutable backup artifact (snapshot directory or archive file)."""
    pool_id: str
    id: str
    kind: PoolKind
    created_at: datetime
    path: Path
    size: int = 0
    reclaimable: int = 0
    base_unit: Optional[str] = None

    def age(self, now: datetime):
        return now - self.created_at


@dataclass
class DeletedUnit:
    id: str
    reclaimed: int


@dataclass
class UnitFailure:
    id: str
    error: str


@dataclass
class RetentionReport:
    """Result of one cleanup pass over a pool."""
    pool_id: str
    tier: Optional[CleanupTier] = None
    considered: int = 0
    deleted: List[DeletedUnit] = field(default_factory=list)
    preserved: List[str] = field(default_factory=list)
    failures: List[UnitFailure] = field(default_factory=list)
    final_available: Optional[int] = None
    stopped_early: bool = False
    skipped: Optional[str] = None
    dry_run: bool = False

    @property
    def reclaimed(self) -> int:
        return sum(unit.reclaimed for unit in self.deleted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool": self.pool_id,
            "tier": self.tier.value if self.tier else None,
            "considered": self.considered,
            "deleted": [{"id": d.id, "reclaimed": d.reclaimed} for d in self.deleted],
            "preserved": list(self.preserved),
            "failures": [{"id": f.id, "error": f.error} for f in self.failures],
            "reclaimed": self.reclaimed,
            "final_available": self.final_available,
            "stopped_early": self.stopped_early,
            "skipped": self.skipped,
            "dry_run": self.dry_run,
        }


@dataclass
class CreationResult:
    """Outcome of a snapshot, archive or mirror creation attempt."""
    pool_id: str
    status: CreationStatus
    unit_id: Optional[str] = None
    base_unit: Optional[str] = None
    period_key: Optional[str] = None
    bytes: int = 0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == CreationStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool": self.pool_id,
            "status": self.status.value,
            "unit": self.unit_id,
            "base_unit": self.base_unit,
            "period_key": self.period_key,
            "bytes": self.bytes,
            "error": self.error,
        }


# Snapshot and archive creation share a result shape
SnapshotResult = CreationResult
ArchiveResult = CreationResult


@dataclass
class PoolOutcome:
    """Everything one orchestrator pass learned about a pool."""
    pool_id: str
    kind: PoolKind
    severity: Severity = Severity.OK
    usage: Optional[SpaceUsage] = None
    tier: Optional[CleanupTier] = None
    retention: Optional[RetentionReport] = None
    creation: Optional[CreationResult] = None
    issues: List[str] = field(default_factory=list)
    cloud_mirror: bool = False
    phases: List[str] = field(default_factory=list)
    unit_count: Optional[int] = None
    head_unit: Optional[str] = None
    head_age_seconds: Optional[int] = None

    def degrade(self, issue: str, severity: Severity = Severity.DEGRADED) -> None:
        self.issues.append(issue)
        if severity.value > self.severity.value:
            self.severity = severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool": self.pool_id,
            "kind": self.kind.value,
            "severity": self.severity.name.lower(),
            "usage": {
                "total": self.usage.total,
                "used": self.usage.used,
                "available": self.usage.available,
            } if self.usage else None,
            "tier": self.tier.value if self.tier else None,
            "retention": self.retention.to_dict() if self.retention else None,
            "creation": self.creation.to_dict() if self.creation else None,
            "units": self.unit_count,
            "head": self.head_unit,
            "head_age_seconds": self.head_age_seconds,
            "issues": list(self.issues),
            "cloud_mirror": self.cloud_mirror,
        }


@dataclass
class HealthReport:
    """Aggregate of all pool outcomes for one run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: List[PoolOutcome] = field(default_factory=list)
    pending_repositories: Optional[int] = None
    cancelled: bool = False

    @property
    def severity(self) -> Severity:
        worst = Severity.OK
        for outcome in self.outcomes:
            if outcome.severity.value > worst.value:
                worst = outcome.severity
        return worst

    @property
    def exit_code(self) -> int:
        return self.severity.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "severity": self.severity.name.lower(),
            "exit_code": self.exit_code,
            "pending_repositories": self.pending_repositories,
            "cancelled": self.cancelled,
            "pools": [outcome.to_dict() for outcome in self.outcomes],
        }
