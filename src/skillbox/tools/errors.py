"""Custom exceptions for tool invocation.

Every failure the agent loop can see from ToolRegistry.invoke is a ToolError
subclass. Each carries the skill (when one was involved), a short detail and
whether retrying the same call could succeed. Nothing is retried internally.

Exception Hierarchy:
    ToolError (base)
    ├── ToolNotFoundError
    ├── SkillDisabledError
    ├── InvalidToolInputError
    ├── ToolCapabilityDeniedError
    ├── ToolFuelExhaustedError
    ├── ToolTimeoutError (retryable)
    ├── ToolTrappedError
    ├── ToolHostError (retryable)
    ├── ToolLoadError
    ├── ToolExecutionError
    └── ToolRegistrationError
"""

from typing import Any


class ToolError(Exception):
    """Base exception for all tool invocation errors.

    Attributes:
        skill_name: Skill involved, if the tool is a skill
        version: Skill version involved
        detail: Human-readable explanation
        retryable: Whether the same call may succeed later
    """

    error_code = "tool_error"
    retryable = False

    def __init__(
        self,
        message: str,
        skill_name: str | None = None,
        version: str | None = None,
        detail: str | None = None,
    ):
        """Initialize ToolError.

        Args:
            message: Error message
            skill_name: Skill involved, if any
            version: Skill version involved, if any
            detail: Extra explanation (defaults to the message)
        """
        self.skill_name = skill_name
        self.version = version
        self.detail = detail or message
        super().__init__(message)

    def summary(self) -> str:
        """One-line description suitable for returning to the model."""
        if self.skill_name:
            label = f"{self.skill_name}@{self.version}" if self.version else self.skill_name
            return f"[{self.error_code}] {label}: {self.detail}"
        return f"[{self.error_code}] {self.detail}"

    def to_response(self) -> dict[str, Any]:
        """Structured error response in the same shape tools return."""
        return {
            "success": False,
            "error": self.error_code,
            "message": str(self),
            "skill": self.skill_name,
            "version": self.version,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class ToolNotFoundError(ToolError):
    """No built-in tool or enabled skill has this name."""

    error_code = "tool_not_found"


class SkillDisabledError(ToolError):
    """The skill is installed but disabled, rejected or unverified."""

    error_code = "skill_disabled"


class InvalidToolInputError(ToolError):
    """Arguments are not a JSON-serializable mapping or fail the tool's schema."""

    error_code = "invalid_input"


class ToolCapabilityDeniedError(ToolError):
    """The skill attempted a host call its capabilities do not cover."""

    error_code = "capability_denied"


class ToolFuelExhaustedError(ToolError):
    """The skill ran out of fuel."""

    error_code = "fuel_exhausted"


class ToolTimeoutError(ToolError):
    """The skill exceeded its wall-clock timeout."""

    error_code = "timeout"
    retryable = True


class ToolTrappedError(ToolError):
    """The guest trapped (unreachable, bad memory access, oversized output, ...)."""

    error_code = "trapped"


class ToolHostError(ToolError):
    """A permitted host capability failed (network error, missing file, ...)."""

    error_code = "host_error"
    retryable = True


class ToolLoadError(ToolError):
    """The skill's module could not be read or compiled."""

    error_code = "load_failed"


class ToolExecutionError(ToolError):
    """A built-in tool raised an unexpected exception."""

    error_code = "execution_failed"


class ToolRegistrationError(ToolError):
    """A tool could not be registered (name collision or invalid definition)."""

    error_code = "registration_failed"
