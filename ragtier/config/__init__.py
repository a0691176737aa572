"""Configuration management for ragtier."""

from .manager import (
    DEFAULT_CONFIG,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_INCLUDE_PATTERNS,
    cold_index_dir,
    expand_pattern,
    expand_patterns,
    home_dir,
    hot_index_dir,
    load_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_INCLUDE_PATTERNS",
    "DEFAULT_EXCLUDE_PATTERNS",
    "cold_index_dir",
    "expand_pattern",
    "expand_patterns",
    "home_dir",
    "hot_index_dir",
    "load_config",
]
