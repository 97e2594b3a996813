"""
Retention windows per pool kind and cleanup tier.

The table is configuration, not computation: a window is how old a unit may
grow before it becomes eligible for deletion at that tier. A zero window
means only the head of the pool survives.
"""
from datetime import timedelta
from typing import Dict, Iterable, Mapping

from ..errors import PolicyMisconfigured
from ..models import CleanupTier, PoolKind

DEFAULT_WINDOWS: Dict[PoolKind, Dict[CleanupTier, timedelta]] = {
    PoolKind.SNAPSHOT: {
        CleanupTier.NORMAL: timedelta(hours=24),
        CleanupTier.MODERATE: timedelta(hours=12),
        CleanupTier.AGGRESSIVE: timedelta(hours=6),
        CleanupTier.CRITICAL: timedelta(0),
    },
    PoolKind.WEEKLY_ARCHIVE: {
        CleanupTier.NORMAL: timedelta(days=28),
        CleanupTier.MODERATE: timedelta(days=21),
        CleanupTier.AGGRESSIVE: timedelta(days=14),
        CleanupTier.CRITICAL: timedelta(days=7),
    },
    PoolKind.MONTHLY_ARCHIVE: {
        CleanupTier.NORMAL: timedelta(days=180),
        CleanupTier.MODERATE: timedelta(days=120),
        CleanupTier.AGGRESSIVE: timedelta(days=90),
        CleanupTier.CRITICAL: timedelta(days=30),
    },
    # A mirror pool holds a single unit that is refreshed in place
    PoolKind.MIRROR: {
        CleanupTier.NORMAL: timedelta(0),
        CleanupTier.MODERATE: timedelta(0),
        CleanupTier.AGGRESSIVE: timedelta(0),
        CleanupTier.CRITICAL: timedelta(0),
    },
}


class RetentionPolicy:
    """Lookup table of retention windows."""

    def __init__(self, windows: Mapping[PoolKind, Mapping[CleanupTier, timedelta]] = None):
        source = DEFAULT_WINDOWS if windows is None else windows
        self._windows = {kind: dict(tiers) for kind, tiers in source.items()}

    def window_for(self, kind: PoolKind, tier: CleanupTier) -> timedelta:
        """Return the maximum age a unit of this kind may reach at this tier."""
        try:
            return self._windows[kind][tier]
        except KeyError:
            raise PolicyMisconfigured(
                f"No retention window defined for {kind.value}/{tier.value}"
            ) from None

    def validate(self, kinds: Iterable[PoolKind]) -> None:
        """Check every (kind, tier) pair that managed pools will need.

        Called once at startup so a missing entry never surfaces mid-run.
        """
        for kind in kinds:
            if not kind.managed:
                continue
            tiers = self._windows.get(kind)
            if tiers is None:
                raise PolicyMisconfigured(f"No retention windows defined for {kind.value}")
            missing = [tier.value for tier in CleanupTier if tier not in tiers]
            if missing:
                raise PolicyMisconfigured(
                    f"Retention windows for {kind.value} missing tiers: {', '.join(missing)}"
                )
            for tier, window in tiers.items():
                if window < timedelta(0):
                    raise PolicyMisconfigured(
                        f"Negative retention window for {kind.value}/{tier.value}"
                    )

    def with_overrides(self, overrides: Mapping[PoolKind, Mapping[CleanupTier, timedelta]]
                       ) -> 'RetentionPolicy':
        """Return a new policy with some windows replaced."""
        merged = {kind: dict(tiers) for kind, tiers in self._windows.items()}
        for kind, tiers in overrides.items():
            merged.setdefault(kind, {}).update(tiers)
        return RetentionPolicy(merged)

    def as_table(self) -> Dict[str, Dict[str, float]]:
        """Windows in hours, keyed by kind and tier value."""
        return {
            kind.value: {
                tier.value: window.total_seconds() / 3600
                for tier, window in tiers.items()
            }
            for kind, tiers in self._windows.items()
        }
