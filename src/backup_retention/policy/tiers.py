"""Cleanup tier selection from available space."""
from typing import Optional

from ..models import CleanupTier, StoragePool


def select_tier(available: int, warning_threshold: int, critical_threshold: int,
                override: Optional[CleanupTier] = None) -> CleanupTier:
    """Map available space onto a cleanup tier.

    Automatic escalation only ever yields NORMAL, MODERATE or CRITICAL.
    AGGRESSIVE is reserved for an operator override. An override can raise
    the tier but never lower it below what the space situation demands.
    """
    if available < critical_threshold:
        tier = CleanupTier.CRITICAL
    elif available < warning_threshold:
        tier = CleanupTier.MODERATE
    else:
        tier = CleanupTier.NORMAL

    if override is not None and override > tier:
        return override
    return tier


def select_pool_tier(pool: StoragePool, available: int,
                     override: Optional[CleanupTier] = None) -> CleanupTier:
    """Select the tier for a pool, honoring its configured forced tier."""
    forced = override
    if pool.force_tier is not None and (forced is None or pool.force_tier > forced):
        forced = pool.force_tier
    return select_tier(available, pool.warning_threshold, pool.critical_threshold, forced)


def release_threshold(pool: StoragePool, tier: CleanupTier) -> Optional[int]:
    """Available space at which an escalated cleanup pass may stop early.

    NORMAL is routine retention and has no release point.
    """
    if tier == CleanupTier.NORMAL:
        return None
    if tier == CleanupTier.CRITICAL:
        return pool.critical_threshold
    return pool.warning_threshold
