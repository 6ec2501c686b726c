"""Progressive discovery of tools.

The model always sees a short list of tool names with one-line
descriptions. Full documentation is fetched only for a tool the model has
decided to call.
"""

import logging
from collections.abc import Sequence

from skillbox.tools.base import ToolDescriptor

logger = logging.getLogger(__name__)

# Keeps each entry to a handful of tokens
MAX_DESCRIPTION_CHARS = 80


def render_tool_summary(descriptors: Sequence[ToolDescriptor], max_tools: int = 20) -> str:
    """Render the "Available Tools" block for the system prompt.

    Args:
        descriptors: Tool descriptors in display order
        max_tools: Most tools listed before collapsing the rest

    Returns:
        Markdown block, or an empty string when there are no tools

    Example:
        >>> print(render_tool_summary(registry.descriptors(), max_tools=2))
        ## Available Tools
        - read_file: Read a UTF-8 text file from the workspace.
        - weather: Look up current weather
        ... and 3 more
    """
    if not descriptors:
        return ""

    shown = descriptors[: max(0, max_tools)]
    lines = ["## Available Tools"]
    for descriptor in shown:
        brief = descriptor.short_description[:MAX_DESCRIPTION_CHARS]
        lines.append(f"- {descriptor.name}: {brief}")

    hidden = len(descriptors) - len(shown)
    if hidden > 0:
        lines.append(f"... and {hidden} more")

    logger.debug(f"Rendered tool summary with {len(shown)} of {len(descriptors)} tools")
    return "\n".join(lines)


def render_tool_documentation(descriptor: ToolDescriptor) -> str:
    """Full documentation block for one tool, loaded on demand."""
    kind = "sandboxed skill" if descriptor.is_sandboxed else "built-in tool"
    title = f"### {descriptor.name}"
    if descriptor.version:
        title += f" ({descriptor.version})"
    return f"{title}\n*{kind}*\n\n{descriptor.full_documentation}"
