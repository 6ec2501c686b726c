"""Custom exceptions for skill subsystem.

This module defines a hierarchy of domain-specific exceptions for skill
manifests and the skill registry.

Exception Hierarchy:
    SkillError (base)
    ├── ManifestError
    ├── SkillSecurityError
    └── RegistryError
        ├── DuplicateSkillError
        ├── UnknownSkillError
        ├── SkillNameConflictError
        └── SkillStorageError
"""


class SkillError(Exception):
    """Base exception for all skill-related errors.

    All custom exceptions in the skill subsystem inherit from this base class,
    allowing for catch-all error handling when needed.
    """

    pass


class ManifestError(SkillError):
    """Skill manifest (SKILL.md) validation or parsing error.

    Raised when SKILL.md is malformed or one of its fields is invalid. A skill
    whose manifest fails validation never reaches the registry or the sandbox.
    Never retried.

    Attributes:
        field: Dotted name of the offending field (e.g. "resource_limits.fuel_budget")
        reason: Human-readable description of the problem

    Example:
        >>> raise ManifestError("version", "'1.x' is not a semantic version")
    """

    def __init__(self, field: str, reason: str):
        """Initialize ManifestError.

        Args:
            field: Dotted name of the offending field
            reason: Human-readable description of the problem
        """
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid manifest field '{field}': {reason}")


class SkillSecurityError(SkillError):
    """Skill security validation errors.

    Raised when skill name sanitization fails or a path escapes its skill
    directory.

    Example:
        >>> raise SkillSecurityError("Invalid skill name: '../etc/passwd'")
    """

    pass


class RegistryError(SkillError):
    """Base class for skill registry failures surfaced to the installer.

    Attributes:
        skill_name: Name of the skill involved
        version: Version involved, if known
    """

    def __init__(self, message: str, skill_name: str | None = None, version: str | None = None):
        """Initialize RegistryError.

        Args:
            message: Error message
            skill_name: Name of the skill involved
            version: Version involved, if known
        """
        self.skill_name = skill_name
        self.version = version
        super().__init__(message)


class DuplicateSkillError(RegistryError):
    """A skill with the same (name, version) is already installed."""

    pass


class UnknownSkillError(RegistryError):
    """No installed skill matches the requested name (and version)."""

    pass


class SkillNameConflictError(RegistryError):
    """Skill name collides with a built-in tool name."""

    pass


class SkillStorageError(RegistryError):
    """The storage collaborator failed to read or commit registry rows."""

    pass
