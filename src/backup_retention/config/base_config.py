"""
Environment settings for the backup retention engine.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from ..errors import PolicyMisconfigured

load_dotenv()


@dataclass
class EnvironmentSettings:
    config_path: Optional[Path]
    state_dir: Path
    source_dir: Path
    log_file: Optional[Path]
    log_level: str
    operation_timeout: float
    copy_timeout: float
    max_parallel_pools: int
    metrics_textfile: Optional[Path]


def _optional_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value).expanduser() if value else None


def _positive_number(name: str, default: str, cast: Callable):
    value = os.getenv(name, default)
    try:
        number = cast(value)
    except ValueError:
        raise PolicyMisconfigured(f"{name} must be a number, got {value!r}") from None
    if not number > 0:
        raise PolicyMisconfigured(f"{name} must be positive, got {value!r}")
    return number


def load_environment_settings() -> EnvironmentSettings:
    """Load engine settings from environment variables (and a .env file).

    Raises:
        PolicyMisconfigured: a numeric setting is malformed or not positive
    """
    return EnvironmentSettings(
        config_path=_optional_path('BACKUP_CONFIG'),
        state_dir=Path(os.getenv('BACKUP_STATE_DIR', '~/.backup-retention')).expanduser(),
        source_dir=Path(os.getenv('BACKUP_SOURCE_DIR', '~/prj')).expanduser(),
        log_file=_optional_path('BACKUP_LOG_FILE'),
        log_level=os.getenv('BACKUP_LOG_LEVEL', 'INFO').upper(),
        operation_timeout=_positive_number('BACKUP_OPERATION_TIMEOUT', '300', float),
        copy_timeout=_positive_number('BACKUP_COPY_TIMEOUT', '3600', float),
        max_parallel_pools=_positive_number('BACKUP_MAX_PARALLEL_POOLS', '1', int),
        metrics_textfile=_optional_path('BACKUP_METRICS_TEXTFILE'),
    )
