# chatvault/core/config/__init__.py

from chatvault.core.config.loader import DEFAULT_CONFIG_PATH, load_config
from chatvault.core.config.schema import SyncConfig

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SyncConfig",
    "load_config",
]
