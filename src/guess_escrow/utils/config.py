"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent.parent / "config" / "ledger.conf"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "ledger": {
        "max_participants_per_value": 500,
        "transfer_gas_limit": 2300,
        "transfer_backend": "memory",
        "feed_capacity": 100,
    },
    "blockchain": {
        "rpc_url": "http://localhost:8545",
        "chain_id": 31337,
        "tx_timeout": 120,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 6080,
    },
}

ENV_SECTIONS = {
    "LEDGER_": "ledger",
    "BLOCKCHAIN_": "blockchain",
    "SERVER_": "server",
    "APP_": "app",
}


def _config_path() -> Path:
    override = os.getenv("GUESS_ESCROW_CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_FILE


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from defaults, the config file and environment variables"""
    config: Dict[str, Any] = {section: dict(values) for section, values in DEFAULTS.items()}

    path = Path(config_file) if config_file else _config_path()
    if path.exists():
        try:
            with open(path, 'r') as f:
                file_config = json.load(f)
            for section, values in file_config.items():
                if isinstance(values, dict):
                    config.setdefault(section, {}).update(values)
                else:
                    config[section] = values
            logger.info(f"Loaded configuration from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
    else:
        logger.warning(f"Config file {path} not found. Using defaults and environment variables.")

    config = _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides, LEDGER_MAX_PARTICIPANTS_PER_VALUE -> ledger.max_participants_per_value"""
    for key, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def save_config(config: Dict[str, Any], config_file: Optional[str] = None) -> Path:
    """Save configuration to file"""
    path = Path(config_file) if config_file else _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        json.dump(config, f, indent=2)

    logger.info(f"Configuration saved to {path}")
    return path


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


def get_int(config: Dict[str, Any], key_path: str, default: int) -> int:
    """Dotted lookup coerced to int; environment overrides arrive as strings."""
    value = get_config_value(config, key_path, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer for {key_path}: {value!r}; using {default}")
        return default
