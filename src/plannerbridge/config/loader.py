"""Configuration loading with environment variable merging."""

import os
import tomllib
from pathlib import Path
from typing import Any

import typer

from plannerbridge.config.models import Configuration
from plannerbridge.exceptions import ConfigError

# Environment variable -> (section, key, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "PLANNERBRIDGE_ACCESS_TOKEN": ("graph", "access_token", str),
    "PLANNERBRIDGE_GRAPH_URL": ("graph", "base_url", str),
    "PLANNERBRIDGE_TIMEOUT": ("graph", "timeout", int),
    "PLANNERBRIDGE_MAX_RETRIES": ("retry", "max_retries", int),
    "PLANNERBRIDGE_THROTTLE_MS": ("retry", "throttle_delay_ms", int),
    "PLANNERBRIDGE_GROUP_ID": ("restore", "group_id", str),
}


def get_config_path(config_arg: Path | None = None) -> Path:
    """
    Get configuration file path with priority order.

    Priority:
    1. Command-line argument
    2. PLANNERBRIDGE_CONFIG environment variable
    3. ~/.plannerbridge/config.toml (user app directory)
    4. ./plannerbridge.toml (current working directory)

    Args:
        config_arg: Optional path from command-line argument

    Returns:
        Path to configuration file (may not exist)
    """
    if config_arg:
        return config_arg

    env_config = os.getenv("PLANNERBRIDGE_CONFIG")
    if env_config:
        return Path(env_config)

    app_dir = Path(typer.get_app_dir("plannerbridge"))
    user_config = app_dir / "config.toml"
    if user_config.exists():
        return user_config

    cwd_config = Path("plannerbridge.toml")
    if cwd_config.exists():
        return cwd_config

    # Default (may not exist)
    return user_config


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Merge PLANNERBRIDGE_* environment variables into raw config data in place."""
    for env_name, (section, key, converter) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if not raw:
            continue
        try:
            value = converter(raw)
        except ValueError:
            raise ConfigError(f"Invalid {env_name} value: {raw}") from None
        data.setdefault(section, {})[key] = value


def load_config(config_path: Path | None = None) -> Configuration:
    """
    Load and validate configuration from TOML file and environment variables.

    Environment variables override config file values (or provide all values if no file exists):
    - PLANNERBRIDGE_ACCESS_TOKEN
    - PLANNERBRIDGE_GRAPH_URL (optional, default: Graph v1.0 endpoint)
    - PLANNERBRIDGE_TIMEOUT (optional, default: 30 seconds)
    - PLANNERBRIDGE_MAX_RETRIES (optional, default: 3)
    - PLANNERBRIDGE_THROTTLE_MS (optional, default: 500)
    - PLANNERBRIDGE_GROUP_ID (optional, target Microsoft 365 group)

    Args:
        config_path: Optional path to config file

    Returns:
        Validated Configuration object

    Raises:
        ConfigError: If config file invalid or values out of range
    """
    path = get_config_path(config_path)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML syntax in {path}: {e}") from e
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    _apply_env_overrides(data)

    try:
        return Configuration(**data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
