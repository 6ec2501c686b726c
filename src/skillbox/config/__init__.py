"""Configuration package for skillbox."""

from .manager import (
    ConfigurationError,
    deep_merge,
    get_config_path,
    load_config,
    load_settings,
    merge_with_env,
    save_config,
)
from .schema import (
    AuditSettings,
    HostSettings,
    RegistrySettings,
    SandboxSettings,
    SkillboxSettings,
    ToolSettings,
)

__all__ = [
    # Schema
    "SkillboxSettings",
    "SandboxSettings",
    "RegistrySettings",
    "HostSettings",
    "ToolSettings",
    "AuditSettings",
    # Manager
    "ConfigurationError",
    "get_config_path",
    "load_config",
    "load_settings",
    "save_config",
    "merge_with_env",
    "deep_merge",
]
