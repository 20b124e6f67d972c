"""Layered configuration."""

from wasmbuild.config.loader import (
    get_home_config_path,
    get_local_config_path,
    load_config,
    load_yaml_config,
    save_config,
)
from wasmbuild.config.schema import DEFAULT_CONFIG, WasmbuildConfig

__all__ = [
    "DEFAULT_CONFIG",
    "WasmbuildConfig",
    "get_home_config_path",
    "get_local_config_path",
    "load_config",
    "load_yaml_config",
    "save_config",
]
