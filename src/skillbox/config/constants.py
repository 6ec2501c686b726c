"""Configuration constants for skillbox.

This module provides a single source of truth for all default configuration values.
Separated from schema.py to avoid circular imports.
"""

from pathlib import Path

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".skillbox"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "settings.json"
DEFAULT_SKILLS_DIR = DEFAULT_DATA_DIR / "skills"
DEFAULT_REGISTRY_PATH = DEFAULT_DATA_DIR / "registry.json"
DEFAULT_AUDIT_FILE = DEFAULT_DATA_DIR / "audit.jsonl"

# Default sandbox settings
DEFAULT_MAX_CONCURRENT_INVOCATIONS = 4
DEFAULT_EPOCH_TICK_MS = 10
DEFAULT_MAX_OUTPUT_BYTES = 1_048_576  # 1MB
DEFAULT_MAX_LOG_LINES = 256
DEFAULT_MAX_TABLE_ELEMENTS = 10_000
DEFAULT_MAX_TOOLS_IN_PROMPT = 20

# Default host capability settings
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_MAX_RESPONSE_BYTES = 1_048_576  # 1MB

# Default built-in tool settings
DEFAULT_SHELL_TIMEOUT = 30
DEFAULT_FILESYSTEM_MAX_READ_BYTES = 10_485_760  # 10MB
