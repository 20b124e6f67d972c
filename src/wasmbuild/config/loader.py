"""Configuration file loading and merging."""

import logging
from pathlib import Path

import yaml

from wasmbuild.config.schema import DEFAULT_CONFIG, WasmbuildConfig

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".wasmbuild"
CONFIG_FILENAME = "config.yaml"


def get_home_config_path() -> Path:
    """Get path to global config: ~/.wasmbuild/config.yaml."""
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def get_local_config_path() -> Path:
    """Get path to local config: ./.wasmbuild/config.yaml."""
    return Path.cwd() / CONFIG_DIRNAME / CONFIG_FILENAME


def load_yaml_config(path: Path) -> dict[str, object] | None:
    """Load a YAML config file, return None if not found or empty.

    A file that is not valid YAML, or whose top level is not a mapping, is
    reported with a warning and treated as absent.
    """
    if not path.exists():
        return None
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return None
    if data is None:
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not a mapping", path)
        return None
    result: dict[str, object] = data
    return result


def load_config() -> WasmbuildConfig:
    """Load merged configuration.

    Precedence (lowest to highest):
    1. Built-in defaults
    2. Global config (~/.wasmbuild/config.yaml)
    3. Local config (./.wasmbuild/config.yaml)

    Environment variables and CLI flags are layered on top by the CLI.
    """
    config = DEFAULT_CONFIG

    for path in (get_home_config_path(), get_local_config_path()):
        data = load_yaml_config(path)
        if data:
            logger.debug("Loaded config from %s", path)
            config = config.merge(WasmbuildConfig.from_dict(data))

    return config


def save_config(config: WasmbuildConfig, path: Path) -> None:
    """Save config to a YAML file.

    Creates parent directories if needed.
    Only saves non-None values.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.to_dict()
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
