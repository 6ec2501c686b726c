"""Configuration file manager for loading, saving, and managing skillbox settings."""

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from .constants import DEFAULT_CONFIG_PATH
from .schema import SkillboxSettings


class ConfigurationError(Exception):
    """Raised when configuration operations fail."""

    pass


# Environment variable -> (section, key, type). Section None means top level.
ENV_OVERRIDES: dict[str, tuple[str | None, str, type]] = {
    "SKILLBOX_LOG_LEVEL": (None, "log_level", str),
    "SKILLBOX_MAX_CONCURRENT_INVOCATIONS": ("sandbox", "max_concurrent_invocations", int),
    "SKILLBOX_EPOCH_TICK_MS": ("sandbox", "epoch_tick_ms", int),
    "SKILLBOX_MAX_OUTPUT_BYTES": ("sandbox", "max_output_bytes", int),
    "SKILLBOX_REQUIRE_VERIFIED": ("sandbox", "require_verified", bool),
    "SKILLBOX_SKILLS_DIR": ("registry", "skills_dir", str),
    "SKILLBOX_REGISTRY_PATH": ("registry", "registry_path", str),
    "SKILLBOX_HTTP_TIMEOUT": ("host", "http_timeout", float),
    "SKILLBOX_ALLOW_PRIVATE_NETWORKS": ("host", "allow_private_networks", bool),
    "SKILLBOX_SHELL_ENABLED": ("tools", "shell_enabled", bool),
    "SKILLBOX_WORKSPACE_ROOT": ("tools", "workspace_root", str),
    "SKILLBOX_FILESYSTEM_WRITES_ENABLED": ("tools", "filesystem_writes_enabled", bool),
    "SKILLBOX_AUDIT_ENABLED": ("audit", "enabled", bool),
    "SKILLBOX_AUDIT_FILE": ("audit", "audit_file", str),
}


def get_config_path() -> Path:
    """Get the path to the configuration file.

    Returns:
        Path to ~/.skillbox/settings.json (or $SKILLBOX_CONFIG when set)
    """
    override = os.getenv("SKILLBOX_CONFIG")
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(config_path: Path | None = None) -> SkillboxSettings:
    """Load configuration from JSON file.

    Args:
        config_path: Optional path to config file. Defaults to ~/.skillbox/settings.json

    Returns:
        SkillboxSettings loaded from file, or default settings if file doesn't exist

    Raises:
        ConfigurationError: If file exists but is invalid JSON or fails validation

    Example:
        >>> settings = load_config()
        >>> settings.sandbox.max_concurrent_invocations
        4
    """
    if config_path is None:
        config_path = get_config_path()

    # Return defaults if file doesn't exist
    if not config_path.exists():
        return SkillboxSettings()

    try:
        with open(config_path) as f:
            data = json.load(f)

        return SkillboxSettings(**data)

    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration file {config_path}: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed for {config_path}:\n{e}") from e
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}") from e


def save_config(settings: SkillboxSettings, config_path: Path | None = None) -> None:
    """Save configuration to JSON file with minimal formatting.

    Only values that differ from the defaults are written. Sets restrictive
    permissions (0o600) on POSIX systems.

    Args:
        settings: SkillboxSettings instance to save
        config_path: Optional path to config file. Defaults to ~/.skillbox/settings.json

    Raises:
        ConfigurationError: If save operation fails
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Set restrictive permissions before writing (POSIX only)
        old_umask = os.umask(0o077) if os.name != "nt" else None
        try:
            json_str = settings.model_dump_json_minimal()
            with open(config_path, "w") as f:
                f.write(json_str)

            if os.name != "nt":
                os.chmod(config_path, 0o600)
        finally:
            if old_umask is not None:
                os.umask(old_umask)

    except Exception as e:
        raise ConfigurationError(f"Failed to save configuration to {config_path}: {e}") from e


def merge_with_env(settings: SkillboxSettings) -> dict[str, Any]:
    """Collect SKILLBOX_* environment variable overrides.

    Environment variables take precedence over file settings. Values that
    cannot be converted to the setting's type are ignored.

    Args:
        settings: SkillboxSettings instance from file

    Returns:
        Nested dictionary of overrides, suitable for deep_merge()

    Example:
        >>> os.environ["SKILLBOX_REQUIRE_VERIFIED"] = "true"
        >>> merge_with_env(load_config())
        {'sandbox': {'require_verified': True}}
    """
    env_overrides: dict[str, Any] = {}

    for env_name, (section, key, value_type) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if not raw:
            continue

        if value_type is bool:
            value: Any = raw.lower() in ("1", "true", "yes", "on")
        else:
            try:
                value = value_type(raw)
            except ValueError:
                continue

        if section is None:
            env_overrides[key] = value
        else:
            env_overrides.setdefault(section, {})[key] = value

    return env_overrides


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Args:
        base: Base dictionary
        override: Override dictionary (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(config_path: Path | None = None) -> SkillboxSettings:
    """Load settings from file, .env and the environment, in that order of precedence.

    Raises:
        ConfigurationError: If the file or the merged result is invalid
    """
    load_dotenv()
    settings = load_config(config_path)
    overrides = merge_with_env(settings)
    if not overrides:
        return settings

    try:
        return SkillboxSettings(**deep_merge(settings.model_dump(), overrides))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid SKILLBOX_* environment override:\n{e}") from e
