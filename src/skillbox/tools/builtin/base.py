"""Base class for built-in toolsets.

Toolsets group related built-in tools with shared settings, avoiding global
state and making it easy to inject test settings.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from skillbox.config.schema import SkillboxSettings
from skillbox.tools.base import BuiltinTool
from skillbox.utils.responses import create_error_response, create_success_response


class BuiltinToolset(ABC):
    """Base class for built-in toolsets.

    Example:
        >>> class ClockTools(BuiltinToolset):
        ...     def get_tools(self):
        ...         return [self.now]
        ...
        ...     async def now(self) -> dict:
        ...         '''Current UTC time.'''
        ...         return self._create_success_response(datetime.now(timezone.utc).isoformat())
    """

    def __init__(self, settings: SkillboxSettings):
        """Initialize toolset with settings.

        Args:
            settings: Skillbox settings (tool and host sections are used)
        """
        self.settings = settings

    @abstractmethod
    def get_tools(self) -> list[Callable]:
        """Get list of tool functions.

        Tools are async callables whose parameters are annotated with
        Annotated[type, Field(description=...)] and whose docstring's first
        paragraph is the one-line description.

        Returns:
            List of callable tool functions
        """
        pass

    def as_tools(self) -> list[BuiltinTool]:
        """Wrap every tool function as a BuiltinTool."""
        return [BuiltinTool.from_function(func) for func in self.get_tools()]

    def _create_success_response(self, result: Any, message: str = "") -> dict:
        return create_success_response(result, message)

    def _create_error_response(self, error: str, message: str) -> dict:
        return create_error_response(error, message)
