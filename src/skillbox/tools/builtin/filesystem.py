"""Filesystem tools scoped to a workspace.

All paths are resolved against tools.workspace_root (the current directory
when unset). Paths with '..' components or that resolve outside the
workspace are refused. Writes are disabled unless
tools.filesystem_writes_enabled is set.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Annotated

from pydantic import Field

from skillbox.tools.builtin.base import BuiltinToolset

logger = logging.getLogger(__name__)

WRITE_MODES = ("create", "overwrite", "append")


class FileSystemTools(BuiltinToolset):
    """Read and write files inside the workspace.

    Example:
        >>> tools = FileSystemTools(settings)
        >>> result = await tools.read_file("notes.txt")
        >>> result["result"]["content"]
        'hello\\n'
    """

    def get_tools(self) -> list[Callable]:
        return [self.read_file, self.write_file]

    def _workspace_root(self) -> Path:
        root = self.settings.tools.workspace_root
        return root if root is not None else Path.cwd().resolve()

    def _resolve_path(self, relative_path: str) -> dict | Path:
        """Resolve a path inside the workspace.

        Returns:
            Resolved Path, or an error response dict
        """
        workspace_root = self._workspace_root()
        if not workspace_root.is_dir():
            return self._create_error_response(
                error="workspace_not_found",
                message=f"Workspace root is not a directory: {workspace_root}",
            )

        if ".." in Path(relative_path).parts:
            logger.warning(f"Path traversal attempt detected: {relative_path}")
            return self._create_error_response(
                error="path_traversal_attempt",
                message=f"Path contains '..' component: {relative_path}. Path traversal is not allowed.",
            )

        try:
            requested = Path(relative_path)
            if requested.is_absolute():
                resolved = requested.resolve()
            else:
                resolved = (workspace_root / requested).resolve()
        except (OSError, RuntimeError) as e:
            logger.error(f"Error resolving path {relative_path}: {e}")
            return self._create_error_response(
                error="path_resolution_failed",
                message=f"Failed to resolve path: {relative_path}. Error: {e}",
            )

        # resolve() follows symlinks, so this also catches links pointing out
        if not resolved.is_relative_to(workspace_root):
            logger.warning(
                f"Path outside workspace: {relative_path} -> {resolved} (workspace: {workspace_root})"
            )
            return self._create_error_response(
                error="path_outside_workspace",
                message=f"Path resolves outside workspace: {relative_path}",
            )

        return resolved

    async def read_file(
        self,
        path: Annotated[str, Field(description="File path relative to workspace")],
    ) -> dict:
        """Read a UTF-8 text file from the workspace.

        Files larger than tools.filesystem_max_read_bytes and binary files are
        refused.
        """
        resolved = self._resolve_path(path)
        if isinstance(resolved, dict):
            return resolved

        if not resolved.exists():
            return self._create_error_response(error="not_found", message=f"File not found: {path}")
        if not resolved.is_file():
            return self._create_error_response(
                error="not_a_file", message=f"Path is not a file: {path}"
            )

        max_bytes = self.settings.tools.filesystem_max_read_bytes
        try:
            size = resolved.stat().st_size
            if size > max_bytes:
                return self._create_error_response(
                    error="file_too_large",
                    message=f"File size ({size} bytes) exceeds max read limit ({max_bytes} bytes): {path}",
                )
            data = resolved.read_bytes()
        except PermissionError:
            return self._create_error_response(
                error="permission_denied", message=f"Permission denied reading file: {path}"
            )
        except OSError as e:
            return self._create_error_response(
                error="os_error", message=f"Error reading file {path}: {e}"
            )

        if b"\x00" in data[:8192]:
            return self._create_error_response(
                error="is_binary",
                message=f"File appears to be binary (contains null bytes): {path}",
            )

        content = data.decode("utf-8", errors="replace")
        result = {
            "path": path,
            "size": size,
            "content": content,
            "encoding_errors": "\ufffd" in content,
        }
        return self._create_success_response(result=result, message=f"Read {size} bytes from {path}")

    async def write_file(
        self,
        path: Annotated[str, Field(description="File path relative to workspace")],
        content: Annotated[str, Field(description="Content to write")],
        mode: Annotated[str, Field(description="Write mode: create, overwrite, append")] = "create",
    ) -> dict:
        """Write a text file in the workspace.

        Mode "create" refuses to replace an existing file, "overwrite"
        replaces it and "append" adds to the end.
        """
        if not self.settings.tools.filesystem_writes_enabled:
            return self._create_error_response(
                error="writes_disabled",
                message="Filesystem writes are disabled. Set tools.filesystem_writes_enabled=true in configuration.",
            )

        if mode not in WRITE_MODES:
            return self._create_error_response(
                error="invalid_mode",
                message=f"Invalid mode '{mode}'. Valid modes: {', '.join(WRITE_MODES)}",
            )

        resolved = self._resolve_path(path)
        if isinstance(resolved, dict):
            return resolved

        existed_before = resolved.exists()
        if mode == "create" and existed_before:
            return self._create_error_response(
                error="file_exists",
                message=f"File already exists (mode=create): {path}. Use mode='overwrite' to replace.",
            )

        try:
            with open(resolved, "a" if mode == "append" else "w", encoding="utf-8") as f:
                f.write(content)
        except PermissionError:
            return self._create_error_response(
                error="permission_denied", message=f"Permission denied writing to: {path}"
            )
        except OSError as e:
            return self._create_error_response(
                error="os_error", message=f"Error writing to {path}: {e}"
            )

        written = len(content.encode("utf-8"))
        result = {
            "path": path,
            "bytes_written": written,
            "mode": mode,
            "existed_before": existed_before,
        }
        return self._create_success_response(
            result=result, message=f"Wrote {written} bytes to {path} (mode={mode})"
        )
