"""Pool and retention configuration management."""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..errors import PolicyMisconfigured
from ..models import CleanupTier, CreationConfig, PoolKind, StoragePool
from ..policy.retention import RetentionPolicy
from .base_config import EnvironmentSettings, load_environment_settings

GB = 1024 ** 3

_SIZE_UNITS = {
    "": 1, "b": 1,
    "k": 1024, "kb": 1024,
    "m": 1024 ** 2, "mb": 1024 ** 2,
    "g": GB, "gb": GB,
    "t": 1024 ** 4, "tb": 1024 ** 4,
}

_DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
}

CREATION_POLICIES = ("snapshot", "weekly", "monthly", "mirror")

DEFAULT_EXCLUDES = [
    "**/.git/objects",
    "**/.git/logs",
    "**/.git/refs/remotes",
    "**/node_modules",
    "**/__pycache__",
    "**/.pytest_cache",
    "**/*.tmp",
    "**/*.temp",
    "**/.DS_Store",
    "**/.Trash",
    "**/Thumbs.db",
    "**/*.pyc",
    "**/*.pyo",
    "**/*.class",
    "**/*.o",
    "**/*.so",
    "**/*.dylib",
    "**/build/",
    "**/dist/",
    "**/target/",
]

# Layout of the single external drive the scripts were written for
DEFAULT_POOLS: List[Dict[str, Any]] = [
    {
        "id": "snapshots",
        "root": "/Volumes/PrjSnapshots/hourly",
        "kind": "snapshot",
        "warning": "15GB",
        "critical": "5GB",
        "create": {"policy": "snapshot", "min_interval": "1h", "min_free": "50GB"},
    },
    {
        "id": "archive-weekly",
        "root": "/Volumes/PrjArchive/weekly",
        "kind": "weekly-archive",
        "warning": "8GB",
        "critical": "3GB",
        "create": {"policy": "weekly", "min_free": "25GB"},
    },
    {
        "id": "archive-monthly",
        "root": "/Volumes/PrjArchive/monthly",
        "kind": "monthly-archive",
        "warning": "8GB",
        "critical": "3GB",
        "create": {"policy": "monthly", "min_free": "25GB", "seed_pool": "archive-weekly"},
    },
    {
        "id": "mirror",
        "root": "/Volumes/PrjArchive",
        "kind": "mirror",
        "warning": "8GB",
        "critical": "3GB",
        "create": {"policy": "mirror", "min_free": "25GB"},
    },
    {
        "id": "system-backup",
        "root": "/Volumes/TimeMachine",
        "kind": "system",
        "warning": "50GB",
        "critical": "20GB",
    },
]


@dataclass
class EngineConfig:
    pools: List[StoragePool]
    policy: RetentionPolicy
    settings: EnvironmentSettings
    repositories_root: Optional[Path] = None
    pool_ids: List[str] = field(default_factory=list)

    def pool(self, pool_id: str) -> StoragePool:
        for pool in self.pools:
            if pool.id == pool_id:
                return pool
        raise KeyError(pool_id)


def parse_size(value: Any) -> int:
    """Parse a byte count such as 1048576, "512MB" or "15GB"."""
    if isinstance(value, bool):
        raise PolicyMisconfigured(f"Invalid size: {value!r}")
    try:
        if isinstance(value, (int, float)):
            return int(value)
        match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*", str(value))
        if not match or match.group(2).lower() not in _SIZE_UNITS:
            raise PolicyMisconfigured(f"Invalid size: {value!r}")
        return int(float(match.group(1)) * _SIZE_UNITS[match.group(2).lower()])
    except (OverflowError, ValueError):
        raise PolicyMisconfigured(f"Invalid size: {value!r}") from None


def parse_duration(value: Any) -> timedelta:
    """Parse a duration such as 3600, "12h" or "28d"."""
    if isinstance(value, bool):
        raise PolicyMisconfigured(f"Invalid duration: {value!r}")
    try:
        if isinstance(value, (int, float)):
            return timedelta(seconds=value)
        match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([smhdw]?)\s*", str(value).lower())
        if not match:
            raise PolicyMisconfigured(f"Invalid duration: {value!r}")
        return timedelta(seconds=float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"])
    except (OverflowError, ValueError):
        raise PolicyMisconfigured(f"Invalid duration: {value!r}") from None


def parse_tier(value: Optional[str]) -> Optional[CleanupTier]:
    if value is None:
        return None
    try:
        return CleanupTier(str(value).lower())
    except ValueError:
        raise PolicyMisconfigured(f"Unknown cleanup tier: {value!r}") from None


def parse_count(value: Any, name: str, minimum: int = 0) -> int:
    """Parse a whole number such as 7 or "7", rejecting anything below ``minimum``."""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise PolicyMisconfigured(f"Invalid {name}: {value!r}")
    try:
        number = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (OverflowError, TypeError, ValueError):
        raise PolicyMisconfigured(f"Invalid {name}: {value!r}") from None
    if number < minimum:
        raise PolicyMisconfigured(f"Invalid {name}: {value!r} (must be at least {minimum})")
    return number


def _require_mapping(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise PolicyMisconfigured(f"{what} must be a mapping, got {value!r}")
    return value


def _parse_kind(value: Any) -> PoolKind:
    try:
        return PoolKind(str(value))
    except ValueError:
        raise PolicyMisconfigured(f"Unknown pool kind: {value!r}") from None


def _parse_creation(raw: Any, pool_id: str, source_dir: Path) -> CreationConfig:
    if raw is None:
        return CreationConfig()
    raw = _require_mapping(raw, f"Pool {pool_id} create block")
    if not raw:
        return CreationConfig()
    policy = raw.get("policy")
    if policy not in CREATION_POLICIES:
        raise PolicyMisconfigured(f"Unknown creation policy: {policy!r}")

    excludes = raw.get("excludes", DEFAULT_EXCLUDES)
    if not isinstance(excludes, list):
        raise PolicyMisconfigured(f"Pool {pool_id} excludes must be a list, got {excludes!r}")
    max_head_age = raw.get("max_head_age")
    source = raw.get("source")
    seed_pool = raw.get("seed_pool")
    return CreationConfig(
        policy=policy,
        source=Path(str(source)).expanduser() if source else source_dir,
        min_interval_seconds=int(parse_duration(raw.get("min_interval", "1h")).total_seconds()),
        min_free_bytes=parse_size(raw.get("min_free", 0)),
        monthly_window_days=parse_count(raw.get("monthly_window_days", 7),
                                        "monthly_window_days", minimum=1),
        archive_prefix=str(raw.get("archive_prefix", "prj")),
        excludes=[str(pattern) for pattern in excludes],
        seed_pool=str(seed_pool) if seed_pool is not None else None,
        max_head_age_seconds=int(parse_duration(max_head_age).total_seconds())
        if max_head_age is not None else None,
    )


def _parse_pool(raw: Any, source_dir: Path) -> StoragePool:
    raw = _require_mapping(raw, "Pool definition")
    try:
        pool_id = str(raw["id"])
        root = Path(str(raw["root"])).expanduser()
        kind = _parse_kind(raw["kind"])
        warning = parse_size(raw["warning"])
        critical = parse_size(raw["critical"])
    except KeyError as e:
        raise PolicyMisconfigured(f"Pool definition missing field {e.args[0]!r}: {raw}") from None

    if not warning > critical >= 0:
        raise PolicyMisconfigured(
            f"Pool {pool_id}: warning threshold ({warning}) must exceed "
            f"critical threshold ({critical}) and critical must not be negative"
        )

    creation = _parse_creation(raw.get("create"), pool_id, source_dir)
    if creation.policy and not kind.managed:
        raise PolicyMisconfigured(f"Pool {pool_id} of kind {kind.value} cannot create units")

    return StoragePool(
        id=pool_id,
        root=root,
        kind=kind,
        warning_threshold=warning,
        critical_threshold=critical,
        creation=creation,
        force_tier=parse_tier(raw.get("force_tier")),
        cloud_mirror=bool(raw.get("cloud_mirror", False)),
    )


def _parse_windows(raw: Any) -> Dict[PoolKind, Dict[CleanupTier, timedelta]]:
    windows = {}
    for kind_name, tiers in _require_mapping(raw or {}, "Retention windows").items():
        kind = _parse_kind(kind_name)
        if not isinstance(tiers, dict):
            raise PolicyMisconfigured(f"Retention windows for {kind_name} must be a mapping")
        windows[kind] = {
            parse_tier(tier_name): parse_duration(window)
            for tier_name, window in tiers.items()
        }
    return windows


def build_engine_config(raw: Dict[str, Any],
                        settings: Optional[EnvironmentSettings] = None) -> EngineConfig:
    """Build and validate an EngineConfig from a parsed mapping.

    Raises:
        PolicyMisconfigured: any value is missing, of the wrong type or out of range
    """
    settings = settings or load_environment_settings()
    raw = _require_mapping(raw or {}, "Configuration")

    if "source" in raw:
        settings.source_dir = Path(str(raw["source"])).expanduser()
    if "state_dir" in raw:
        settings.state_dir = Path(str(raw["state_dir"])).expanduser()
    if "max_parallel_pools" in raw:
        settings.max_parallel_pools = parse_count(raw["max_parallel_pools"],
                                                  "max_parallel_pools", minimum=1)

    entries = raw.get("pools", DEFAULT_POOLS)
    if not isinstance(entries, list):
        raise PolicyMisconfigured(f"pools must be a list of pool definitions, got {entries!r}")
    pools = [_parse_pool(entry, settings.source_dir) for entry in entries]

    ids = [pool.id for pool in pools]
    duplicates = sorted({pool_id for pool_id in ids if ids.count(pool_id) > 1})
    if duplicates:
        raise PolicyMisconfigured(f"Duplicate pool ids: {', '.join(duplicates)}")

    for pool in pools:
        seed = pool.creation.seed_pool
        if seed and seed not in ids:
            raise PolicyMisconfigured(f"Pool {pool.id} seeds from unknown pool {seed}")

    policy = RetentionPolicy().with_overrides(_parse_windows(raw.get("retention", {})))
    policy.validate(pool.kind for pool in pools)

    repositories_root = raw.get("repositories_root")
    return EngineConfig(
        pools=pools,
        policy=policy,
        settings=settings,
        repositories_root=Path(str(repositories_root)).expanduser() if repositories_root else None,
        pool_ids=ids,
    )


def load_engine_config(config_path: Optional[Path] = None,
                       settings: Optional[EnvironmentSettings] = None) -> EngineConfig:
    """Load the engine configuration from YAML, falling back to built-in pools."""
    settings = settings or load_environment_settings()
    path = config_path or settings.config_path
    raw: Dict[str, Any] = {}
    if path is not None:
        path = Path(path).expanduser()
        if not path.exists():
            raise PolicyMisconfigured(f"Configuration file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PolicyMisconfigured(f"Invalid configuration file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise PolicyMisconfigured(f"Configuration file {path} must contain a mapping")
    return build_engine_config(raw, settings)
