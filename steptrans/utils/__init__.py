"""Utility functions and helpers."""

from .logger import setup_logger, get_logger
from .cache import Cache, MemoryCache, FileCache, DiskCache, create_cache, prune_cache
from .config_loader import EngineConfig, load_config, save_config

__all__ = [
    'setup_logger',
    'get_logger',
    'Cache',
    'MemoryCache',
    'FileCache',
    'DiskCache',
    'create_cache',
    'prune_cache',
    'EngineConfig',
    'load_config',
    'save_config'
]
