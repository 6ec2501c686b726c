"""Shell command tool.

Runs a command through the system shell with a timeout. Disabled unless
tools.shell_enabled is set; it is not sandboxed.
"""

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from typing import Annotated

from pydantic import Field

from skillbox.tools.builtin.base import BuiltinToolset

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 50_000


class ShellTools(BuiltinToolset):
    """Run shell commands in the workspace."""

    def get_tools(self) -> list[Callable]:
        return [self.run_command]

    async def run_command(
        self,
        command: Annotated[str, Field(description="Shell command to execute")],
    ) -> dict:
        """Execute a shell command and return its exit code and output.

        Output longer than 50,000 characters is truncated. The command runs
        in the workspace root with the configured timeout.
        """
        tools = self.settings.tools
        if not tools.shell_enabled:
            return self._create_error_response(
                error="shell_disabled",
                message="Shell commands are disabled. Set tools.shell_enabled=true in configuration.",
            )
        if not command.strip():
            return self._create_error_response(error="invalid_input", message="Command is empty")

        cwd = str(tools.workspace_root) if tools.workspace_root else None
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            start_new_session=os.name != "nt",
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=tools.shell_timeout
            )
        except asyncio.TimeoutError:
            _kill_process_group(process)
            await process.wait()
            logger.warning(f"Command timed out after {tools.shell_timeout}s: {command}")
            return self._create_error_response(
                error="command_timeout",
                message=f"Command timed out after {tools.shell_timeout}s",
            )

        result = {
            "exit_code": process.returncode,
            "stdout": stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
            "stderr": stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
        }
        return self._create_success_response(
            result=result, message=f"Command exited with code {process.returncode}"
        )


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started (it leads its own session)."""
    if os.name == "nt":
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"Process group {process.pid} already exited")
