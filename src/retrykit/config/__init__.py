"""
Configuration management: retry.yaml loading and environment resolution.
"""

from retrykit.config.loader import Config, build_manager_options, build_registry, load_config
from retrykit.config.resolver import resolve_config

__all__ = [
    "load_config",
    "Config",
    "build_registry",
    "build_manager_options",
    "resolve_config",
]
