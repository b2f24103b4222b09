"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "lottery.conf"

# Environment prefix -> config section
ENV_SECTIONS = {
    "LOTTERY_": "lottery",
    "BLOCKCHAIN_": "blockchain",
    "KEEPER_": "keeper",
    "SERVER_": "server",
    "STORE_": "store",
}


def load_config(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    if config_file is None:
        config_file = os.getenv("LOTTERY_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    config_file = Path(config_file)

    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config.update(json.load(f))
            logger.info(f"Loaded configuration from {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {config_file}: {e}")
    else:
        logger.warning(f"Config file {config_file} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)

    # Never log the operator key
    logger.debug(f"Configuration after applying environment overrides: {json.dumps(_redacted(config), indent=2)}")

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        if key == "LOTTERY_CONFIG_FILE":
            continue
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                config.setdefault(section, {})[name] = value
                break

    return config


def _redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {}
    for section, values in config.items():
        if isinstance(values, dict):
            redacted[section] = {
                k: ("***" if "private_key" in k else v) for k, v in values.items()
            }
        else:
            redacted[section] = values
    return redacted


def save_config(config: Dict[str, Any], config_file: Optional[Union[str, Path]] = None) -> None:
    """Save configuration to file"""
    config_file = Path(config_file or DEFAULT_CONFIG_FILE)
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)

    logger.info(f"Configuration saved to {config_file}")


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
