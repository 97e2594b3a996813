from .retention import DEFAULT_WINDOWS, RetentionPolicy
from .tiers import select_tier

__all__ = ['DEFAULT_WINDOWS', 'RetentionPolicy', 'select_tier']
