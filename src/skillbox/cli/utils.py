"""Utility functions for CLI module."""

import logging
import os
import platform
import sys

from rich.console import Console

from skillbox.bootstrap import Skillbox, build_skillbox
from skillbox.config import load_settings
from skillbox.config.schema import SkillboxSettings

logger = logging.getLogger(__name__)


def get_console() -> Console:
    """Create Rich console with proper encoding for Windows.

    On Windows in non-interactive mode (subprocess, pipe, etc.), the default
    encoding is often CP1252 which cannot handle Unicode characters. This
    function forces UTF-8 in that case.

    Returns:
        Console: Configured Rich console instance
    """
    if platform.system() == "Windows" and not sys.stdout.isatty():
        import locale

        encoding = locale.getpreferredencoding() or ""
        if "utf" not in encoding.lower():
            os.environ["PYTHONIOENCODING"] = "utf-8"
            return Console(force_terminal=True, legacy_windows=False)
    return Console()


def configure_logging(settings: SkillboxSettings) -> None:
    """Configure root logging from settings.log_level."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def open_skillbox() -> Skillbox:
    """Load settings and build every component.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    settings = load_settings()
    configure_logging(settings)
    return build_skillbox(settings)
