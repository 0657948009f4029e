"""
Configuration loader for YAML/JSON files.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml

from .arena_config_schema import ArenaConfig

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "ARENA_CONFIG"


def _expand_env_vars(config_dict):
    """Recursively expand environment variables in config dictionary"""
    if isinstance(config_dict, dict):
        return {k: _expand_env_vars(v) for k, v in config_dict.items()}
    elif isinstance(config_dict, list):
        return [_expand_env_vars(item) for item in config_dict]
    elif isinstance(config_dict, str):
        # Expand environment variables like ${VAR_NAME}
        return os.path.expandvars(config_dict)
    else:
        return config_dict


def load_arena_config(config_path: Union[str, Path]) -> ArenaConfig:
    """
    Load arena configuration from YAML or JSON file.

    Args:
        config_path: Path to configuration file

    Returns:
        ArenaConfig: Validated configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is unsupported or validation fails
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        if config_path.suffix in ['.yaml', '.yml']:
            config_dict = yaml.safe_load(f)
        elif config_path.suffix == '.json':
            config_dict = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")

    # An empty YAML file loads as None
    config_dict = _expand_env_vars(config_dict or {})

    try:
        config = ArenaConfig(**config_dict)
    except Exception as e:
        raise ValueError(f"Arena config validation failed: {e}")

    logger.info(f"Loaded arena config from {config_path}")
    return config


def load_arena_config_from_env(default_path: Optional[Union[str, Path]] = None) -> ArenaConfig:
    """
    Load configuration from $ARENA_CONFIG, then default_path, else defaults.
    """
    path = os.environ.get(CONFIG_PATH_ENV) or default_path
    if path:
        return load_arena_config(path)

    logger.info("No arena config file given, using defaults")
    return ArenaConfig()


def save_arena_config(config: ArenaConfig, config_path: Union[str, Path]):
    """Save configuration to YAML or JSON file"""
    config_path = Path(config_path)

    with open(config_path, 'w') as f:
        if config_path.suffix in ['.yaml', '.yml']:
            yaml.dump(config.model_dump(mode='json'), f, default_flow_style=False)
        elif config_path.suffix == '.json':
            json.dump(config.model_dump(mode='json'), f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")
