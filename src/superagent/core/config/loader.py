"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < data-dir settings < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import SuperagentConfig

logger = logging.getLogger(__name__)

# Avoid re-reading config files on every lookup
_config_cache: SuperagentConfig | None = None


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/superagent/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "superagent" / "config.json"


def get_data_dir() -> Path:
    """
    Get the data directory holding workspaces, logs and settings.

    Returns:
        SUPERAGENT_DATA_DIR if set, otherwise ~/.superagent
    """
    if data_dir := os.environ.get("SUPERAGENT_DATA_DIR"):
        return Path(data_dir).expanduser()
    return Path.home() / ".superagent"


def get_settings_path(data_dir: Path | None = None) -> Path:
    """
    Get path to the settings file stored in the data directory.

    Args:
        data_dir: Data directory (defaults to get_data_dir())

    Returns:
        Path to <data_dir>/settings.json
    """
    return (data_dir or get_data_dir()) / "settings.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Args:
        base: Base dictionary (lower priority)
        override: Override dictionary (higher priority)

    Returns:
        Merged dictionary with override values taking precedence

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to parse config at {path}: {e}")
        return None


def _set_nested(config_dict: dict[str, Any], section: str, key: str, value: Any) -> None:
    if section not in config_dict or not isinstance(config_dict[section], dict):
        config_dict[section] = {}
    config_dict[section][key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        SUPERAGENT_CONTAINER_RUNNER - overrides container.container_runner
        SUPERAGENT_AGENT_IMAGE - overrides container.agent_image
        SUPERAGENT_BASE_PORT - overrides container.base_port
        SUPERAGENT_AUTO_SLEEP_TIMEOUT - overrides app.auto_sleep_timeout_minutes
        SUPERAGENT_DATA_DIR - overrides data_dir

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if runner := os.environ.get("SUPERAGENT_CONTAINER_RUNNER"):
        _set_nested(result, "container", "container_runner", runner.lower())

    if image := os.environ.get("SUPERAGENT_AGENT_IMAGE"):
        _set_nested(result, "container", "agent_image", image)

    if port_str := os.environ.get("SUPERAGENT_BASE_PORT"):
        try:
            _set_nested(result, "container", "base_port", int(port_str))
        except ValueError:
            logger.warning(f"Invalid SUPERAGENT_BASE_PORT value '{port_str}', ignoring")

    if sleep_str := os.environ.get("SUPERAGENT_AUTO_SLEEP_TIMEOUT"):
        try:
            _set_nested(result, "app", "auto_sleep_timeout_minutes", int(sleep_str))
        except ValueError:
            logger.warning(
                f"Invalid SUPERAGENT_AUTO_SLEEP_TIMEOUT value '{sleep_str}', ignoring"
            )

    if os.environ.get("SUPERAGENT_DATA_DIR"):
        result["data_dir"] = str(get_data_dir())

    return result


def load_config(data_dir: Path | None = None, use_cache: bool = True) -> SuperagentConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (SUPERAGENT_*)
        2. Data-dir settings (<data_dir>/settings.json)
        3. User config (~/.config/superagent/config.json)
        4. Model defaults

    Args:
        data_dir: Data directory to read settings.json from (defaults to get_data_dir())
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SuperagentConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    resolved_data_dir = data_dir or get_data_dir()
    merged: dict[str, Any] = {"data_dir": str(resolved_data_dir)}

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if settings := load_json_file(get_settings_path(resolved_data_dir)):
        merged = deep_merge(merged, settings)

    merged = apply_env_overrides(merged)

    config = SuperagentConfig(**merged)
    _config_cache = config

    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None


def get_effective_api_key(config: SuperagentConfig) -> str | None:
    """
    Resolve the baseline credential injected into every sandbox.

    The saved key wins over the ANTHROPIC_API_KEY environment variable.

    Args:
        config: Loaded configuration

    Returns:
        API key, or None when neither source provides one
    """
    if config.api_keys.anthropic_api_key:
        return config.api_keys.anthropic_api_key
    return os.environ.get("ANTHROPIC_API_KEY")
