"""Unit tests for progressive tool discovery."""

import pytest

from skillbox.tools.base import ToolDescriptor
from skillbox.tools.discovery import render_tool_documentation, render_tool_summary

pytestmark = [pytest.mark.unit, pytest.mark.tools]


def descriptor(name: str, description: str = "Does things", **kwargs) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        short_description=description,
        is_sandboxed=kwargs.pop("is_sandboxed", False),
        parameters_schema={"type": "object"},
        **kwargs,
    )


class TestRenderToolSummary:
    """Test the prompt summary block."""

    def test_empty(self):
        assert render_tool_summary([]) == ""

    def test_lists_tools(self):
        summary = render_tool_summary([descriptor("read_file", "Read a file"), descriptor("weather", "Weather")])
        assert summary == "## Available Tools\n- read_file: Read a file\n- weather: Weather"

    def test_long_description_truncated(self):
        summary = render_tool_summary([descriptor("x", "a" * 200)])
        assert summary.splitlines()[1] == "- x: " + "a" * 80

    def test_overflow_collapsed(self):
        tools = [descriptor(f"tool{i}") for i in range(5)]

        lines = render_tool_summary(tools, max_tools=2).splitlines()

        assert lines[1:3] == ["- tool0: Does things", "- tool1: Does things"]
        assert lines[-1] == "... and 3 more"

    def test_documentation_not_loaded(self):
        def loader():
            raise AssertionError("summary must not load documentation")

        render_tool_summary([descriptor("x", documentation_loader=loader)])


class TestRenderToolDocumentation:
    """Test the on-demand documentation block."""

    def test_skill(self):
        doc = render_tool_documentation(
            descriptor(
                "weather",
                is_sandboxed=True,
                version="1.0.0",
                documentation_loader=lambda: "# Weather\n\nUsage.",
            )
        )
        assert doc == "### weather (1.0.0)\n*sandboxed skill*\n\n# Weather\n\nUsage."

    def test_builtin(self):
        doc = render_tool_documentation(descriptor("read_file", "Read a file"))
        assert doc == "### read_file\n*built-in tool*\n\nRead a file"
