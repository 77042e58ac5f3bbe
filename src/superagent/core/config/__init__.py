"""
Configuration models and loading.

This module provides Pydantic models for superagent configuration with
multi-layer merging: defaults < user < data-dir settings < env vars.
"""

from .env import load_layered_env
from .loader import (
    clear_cache,
    get_data_dir,
    get_effective_api_key,
    get_settings_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import (
    ApiKeysConfig,
    AppConfig,
    ContainerConfig,
    ResourceLimitsConfig,
    SuperagentConfig,
)

__all__ = [
    # Models
    "ApiKeysConfig",
    "AppConfig",
    "ContainerConfig",
    "ResourceLimitsConfig",
    "SuperagentConfig",
    # Loader functions
    "clear_cache",
    "get_data_dir",
    "get_effective_api_key",
    "get_settings_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
