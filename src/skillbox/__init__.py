"""Skillbox - capability-gated skill sandbox and tool registry for agents."""

from importlib.metadata import PackageNotFoundError, version

# Read version from package metadata (pyproject.toml)
try:
    __version__ = version("skillbox")
except PackageNotFoundError:
    # Fallback for development environments where package isn't installed
    __version__ = "0.0.0.dev"

from skillbox.config import SkillboxSettings

__all__ = ["SkillboxSettings", "__version__"]
