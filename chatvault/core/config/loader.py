# chatvault/core/config/loader.py
"""
Configuration loader for chatvault.

Responsibilities:
- Load default config
- Load user config (optional)
- Expand ${ENV_VAR} placeholders
- Validate via schema
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from chatvault.core.config.schema import SyncConfig
from chatvault.core.exceptions import ConfigError
from chatvault.logging.logger import get_logger
from chatvault.logging.tags import CONFIG

logger = get_logger(__name__)


DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping, got {type(data).__name__}")

    return _expand_env(data)


def load_config(user_config_path: Path | str | None = None, **overrides: Any) -> SyncConfig:
    """
    Load and validate chatvault configuration.

    Precedence:
    - defaults
    - user config (overrides defaults)
    - keyword overrides
    """
    logger.debug(f"{CONFIG} Loading default config from {DEFAULT_CONFIG_PATH}")
    base_cfg = _load_yaml(DEFAULT_CONFIG_PATH)

    if user_config_path:
        logger.debug(f"{CONFIG} Loading user config from {user_config_path}")
        user_cfg = _load_yaml(Path(user_config_path))
        base_cfg.update(user_cfg)

    base_cfg.update(overrides)

    try:
        return SyncConfig.model_validate(base_cfg)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid chatvault config: {e}") from e
