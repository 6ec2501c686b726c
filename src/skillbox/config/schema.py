"""Pydantic models for skillbox configuration schema."""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from skillbox.config.constants import (
    DEFAULT_AUDIT_FILE,
    DEFAULT_EPOCH_TICK_MS,
    DEFAULT_FILESYSTEM_MAX_READ_BYTES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_MAX_CONCURRENT_INVOCATIONS,
    DEFAULT_MAX_LOG_LINES,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_MAX_RESPONSE_BYTES,
    DEFAULT_MAX_TABLE_ELEMENTS,
    DEFAULT_MAX_TOOLS_IN_PROMPT,
    DEFAULT_REGISTRY_PATH,
    DEFAULT_SHELL_TIMEOUT,
    DEFAULT_SKILLS_DIR,
)

VALID_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


class SandboxSettings(BaseModel):
    """WASM sandbox configuration."""

    max_concurrent_invocations: int = Field(
        default=DEFAULT_MAX_CONCURRENT_INVOCATIONS,
        gt=0,
        description="Maximum number of skills executing at the same time",
    )
    epoch_tick_ms: int = Field(
        default=DEFAULT_EPOCH_TICK_MS,
        gt=0,
        description="Interval of the engine epoch ticker used for wall-clock timeouts",
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES,
        gt=0,
        description="Largest output a skill may produce; larger output traps the skill",
    )
    max_log_lines: int = Field(
        default=DEFAULT_MAX_LOG_LINES,
        ge=0,
        description="Guest log lines kept per invocation (extra lines are dropped)",
    )
    max_table_elements: int = Field(
        default=DEFAULT_MAX_TABLE_ELEMENTS,
        gt=0,
        description="Largest table a skill may allocate, further capped by its memory limit",
    )
    require_verified: bool = Field(
        default=False,
        description="Only expose skills whose module passed verification",
    )
    max_tools_in_prompt: int = Field(
        default=DEFAULT_MAX_TOOLS_IN_PROMPT,
        gt=0,
        description="Tools listed in the prompt summary before '... and N more'",
    )


class RegistrySettings(BaseModel):
    """Skill catalog configuration."""

    skills_dir: str = Field(
        default=str(DEFAULT_SKILLS_DIR),
        description="Directory where installed skills are copied",
    )
    registry_path: str = Field(
        default=str(DEFAULT_REGISTRY_PATH),
        description="JSON file holding the skill registry",
    )

    @field_validator("skills_dir", "registry_path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand user home directory in paths."""
        return str(Path(v).expanduser())


class HostSettings(BaseModel):
    """Host capability configuration (what skills can reach when permitted)."""

    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, gt=0)
    max_response_bytes: int = Field(default=DEFAULT_MAX_RESPONSE_BYTES, gt=0)
    allow_private_networks: bool = Field(
        default=False,
        description="Allow skills and the http tool to reach private addresses (local development only)",
    )


class ToolSettings(BaseModel):
    """Built-in tool configuration."""

    shell_enabled: bool = False
    shell_timeout: int = Field(default=DEFAULT_SHELL_TIMEOUT, gt=0)

    # Filesystem tools configuration
    workspace_root: Path | None = Field(
        default=None,
        description="Root directory for filesystem tools. Defaults to current working directory if not set.",
    )
    filesystem_writes_enabled: bool = Field(
        default=False,
        description="Enable the write_file tool",
    )
    filesystem_max_read_bytes: int = Field(
        default=DEFAULT_FILESYSTEM_MAX_READ_BYTES,
        description="Maximum file size in bytes for read operations",
    )

    @field_validator("workspace_root")
    @classmethod
    def expand_workspace_root(cls, v: Path | None) -> Path | None:
        """Expand user home directory in workspace_root and resolve to absolute path."""
        if v is None:
            return None
        return Path(v).expanduser().resolve()


class AuditSettings(BaseModel):
    """Invocation audit log configuration."""

    enabled: bool = False
    audit_file: str = str(DEFAULT_AUDIT_FILE)

    @field_validator("audit_file")
    @classmethod
    def expand_audit_file(cls, v: str) -> str:
        return str(Path(v).expanduser())


class SkillboxSettings(BaseModel):
    """Root configuration model for skillbox settings."""

    version: str = "1.0"
    log_level: str = "warning"
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    host: HostSettings = Field(default_factory=HostSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.lower()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {sorted(VALID_LOG_LEVELS)}")
        return level

    def model_dump_json_pretty(self, **kwargs: Any) -> str:
        """Dump model to pretty-printed JSON string."""
        return self.model_dump_json(indent=2, exclude_none=False, **kwargs)

    def model_dump_json_minimal(self) -> str:
        """Dump model to JSON, leaving out sections that match the defaults.

        Returns:
            JSON string with only what the user has changed
        """
        data = self.model_dump(mode="json", exclude_none=True)
        defaults = SkillboxSettings().model_dump(mode="json", exclude_none=True)

        minimal: dict[str, Any] = {"version": data["version"]}
        for key, value in data.items():
            if key == "version":
                continue
            if isinstance(value, dict):
                changed = {k: v for k, v in value.items() if defaults[key].get(k) != v}
                if changed:
                    minimal[key] = changed
            elif defaults.get(key) != value:
                minimal[key] = value

        return json.dumps(minimal, indent=2)

    @property
    def skills_dir(self) -> Path:
        return Path(self.registry.skills_dir)

    @property
    def registry_path(self) -> Path:
        return Path(self.registry.registry_path)
