"""Response helpers for built-in tools.

Built-in tools report expected failures as structured error responses
instead of raising. The ToolRegistry turns either shape into a ToolOutput.
"""

from typing import Any


def create_success_response(result: Any, message: str = "") -> dict:
    """Create standardized success response.

    Args:
        result: Tool result (any JSON-serializable value)
        message: Optional success message for logging/display

    Returns:
        Structured response dict with success=True

    Example:
        >>> create_success_response(result="42 bytes written", message="Wrote notes.txt")
        {'success': True, 'result': '42 bytes written', 'message': 'Wrote notes.txt'}
    """
    return {
        "success": True,
        "result": result,
        "message": message,
    }


def create_error_response(error: str, message: str) -> dict:
    """Create standardized error response.

    Args:
        error: Machine-readable error code (e.g., "path_outside_workspace")
        message: Human-friendly error message

    Returns:
        Structured response dict with success=False

    Example:
        >>> create_error_response(error="command_timeout", message="Timed out after 30s")
        {'success': False, 'error': 'command_timeout', 'message': 'Timed out after 30s'}
    """
    return {
        "success": False,
        "error": error,
        "message": message,
    }


def is_response(value: Any) -> bool:
    """Whether a value has the shape of a success or error response."""
    return isinstance(value, dict) and isinstance(value.get("success"), bool)
