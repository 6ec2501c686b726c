"""Tool contract shared by built-in tools and sandboxed skills.

Example:
    >>> from skillbox.tools import ToolRegistry
    >>> tools = ToolRegistry(skill_registry, runtime, settings)
    >>> output = await tools.invoke("weather", {"city": "Oslo"})
"""

from skillbox.tools.base import BuiltinTool, SkillTool, Tool, ToolDescriptor, ToolOutput
from skillbox.tools.discovery import render_tool_documentation, render_tool_summary
from skillbox.tools.errors import (
    InvalidToolInputError,
    SkillDisabledError,
    ToolCapabilityDeniedError,
    ToolError,
    ToolExecutionError,
    ToolFuelExhaustedError,
    ToolHostError,
    ToolLoadError,
    ToolNotFoundError,
    ToolRegistrationError,
    ToolTimeoutError,
    ToolTrappedError,
)
from skillbox.tools.registry import ToolRegistry

__all__ = [
    "Tool",
    "BuiltinTool",
    "SkillTool",
    "ToolDescriptor",
    "ToolOutput",
    "ToolRegistry",
    "render_tool_summary",
    "render_tool_documentation",
    # Errors
    "ToolError",
    "ToolNotFoundError",
    "SkillDisabledError",
    "InvalidToolInputError",
    "ToolCapabilityDeniedError",
    "ToolFuelExhaustedError",
    "ToolTimeoutError",
    "ToolTrappedError",
    "ToolHostError",
    "ToolLoadError",
    "ToolExecutionError",
    "ToolRegistrationError",
]
