import json
import os
from pathlib import Path

CONFIG_FILE_PATH = Path(__file__).resolve().parent / "configs" / "race_balance.json"
CONFIG_PATH_ENV = "OVAL_DERBY_CONFIG"


class ConfigError(ValueError):
    """Raised when the balance config is missing, malformed or out of range."""


def _config_path(path=None):
    if path is not None:
        return Path(path)
    env_value = os.getenv(CONFIG_PATH_ENV)
    if env_value:
        return Path(env_value)
    return CONFIG_FILE_PATH


def load_config(path=None):
    """
    Loads the race balance config file.

    Unlike a missing optional setting, a config file that cannot be read is
    fatal: the caller gets a ConfigError instead of a half-configured race.
    """
    config_path = _config_path(path)
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"Could not find config file at {config_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Could not parse config file {config_path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")
    return config


# Load the config ONCE when the module is first imported
BALANCE_CONFIG = load_config()


def get_config(key_path, default=None, config=None):
    """
    Safely gets a value from the loaded config using a 'dot.path'.
    Example: get_config('field.total_laps')
    """
    value = BALANCE_CONFIG if config is None else config
    if not value:
        return default

    try:
        for key in key_path.split("."):
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
