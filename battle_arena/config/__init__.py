"""
Configuration module for the battle arena.

Provides:
- Arena configuration schema (ArenaConfig and its sections)
- Loaders with environment variable expansion and validation
"""

from .arena_config_schema import (
    ArenaConfig,
    BattleSettings,
    LoggingSettings,
    PriceSourceSettings,
    ServerSettings,
)
from .loader import load_arena_config, load_arena_config_from_env, save_arena_config

__all__ = [
    'ArenaConfig',
    'BattleSettings',
    'LoggingSettings',
    'PriceSourceSettings',
    'ServerSettings',
    'load_arena_config',
    'load_arena_config_from_env',
    'save_arena_config',
]
