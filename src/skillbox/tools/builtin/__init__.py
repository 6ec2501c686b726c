"""Built-in tools that run in-process, outside the sandbox."""

from skillbox.tools.builtin.base import BuiltinToolset
from skillbox.tools.builtin.filesystem import FileSystemTools
from skillbox.tools.builtin.http import HttpTools
from skillbox.tools.builtin.shell import ShellTools

__all__ = [
    "BuiltinToolset",
    "FileSystemTools",
    "HttpTools",
    "ShellTools",
]
