from .base_config import EnvironmentSettings, load_environment_settings
from .pool_config import EngineConfig, load_engine_config, parse_duration, parse_size

__all__ = [
    'EnvironmentSettings',
    'EngineConfig',
    'load_environment_settings',
    'load_engine_config',
    'parse_duration',
    'parse_size',
]
