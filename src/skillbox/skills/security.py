"""Security validation for skill subsystem.

This module provides security functions for skill name sanitization,
entry point path validation, version checks and path canonicalization.
"""

import hashlib
import os
import re
from pathlib import Path, PurePosixPath

from skillbox.skills.errors import SkillSecurityError

# Semantic Versioning 2.0.0 grammar (https://semver.org)
SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

SKILL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


def sanitize_skill_name(name: str) -> str:
    """Validate skill name for security.

    Ensures skill names are safe to use in filesystem paths and prevent
    directory traversal attacks.

    Args:
        name: Skill name to validate

    Returns:
        The validated name (unchanged if valid)

    Raises:
        SkillSecurityError: If name contains invalid characters or patterns

    Examples:
        >>> sanitize_skill_name("weather-lookup")
        'weather-lookup'
        >>> sanitize_skill_name("../etc/passwd")
        Traceback (most recent call last):
        ...
        SkillSecurityError: Invalid skill name: '../etc/passwd' (path traversal detected)
    """
    # Reserved names
    reserved = {".", "..", "~", "__pycache__", ""}
    if name in reserved:
        raise SkillSecurityError(f"Reserved skill name: '{name}'")

    # Reject path traversal patterns (check before regex)
    if ".." in name or name.startswith("/") or name.startswith("\\"):
        raise SkillSecurityError(f"Invalid skill name: '{name}' (path traversal detected)")

    if " " in name:
        raise SkillSecurityError(f"Invalid skill name: '{name}' (spaces not allowed)")

    if not SKILL_NAME_PATTERN.match(name):
        raise SkillSecurityError(
            f"Invalid skill name: '{name}' "
            "(must be alphanumeric with hyphens/underscores, 1-64 chars)"
        )

    return name


def normalize_skill_name(name: str) -> str:
    """Normalize skill name to canonical form.

    Converts to lowercase and replaces underscores with hyphens for
    case-insensitive, format-agnostic matching.

    Args:
        name: Skill name to normalize

    Returns:
        Canonical skill name (lowercase, hyphens)

    Examples:
        >>> normalize_skill_name("Weather_Lookup")
        'weather-lookup'
    """
    sanitize_skill_name(name)
    return name.lower().replace("_", "-")


def is_semver(version: str) -> bool:
    """Check whether a string is a valid semantic version."""
    return bool(SEMVER_PATTERN.match(version))


def semver_key(version: str) -> tuple:
    """Sort key implementing semver precedence.

    Build metadata is ignored. A pre-release sorts before its release;
    numeric identifiers sort before alphanumeric ones.

    Examples:
        >>> sorted(["1.0.0", "1.0.0-rc.1", "0.9.12"], key=semver_key)
        ['0.9.12', '1.0.0-rc.1', '1.0.0']
    """
    match = SEMVER_PATTERN.match(version)
    if not match:
        raise ValueError(f"'{version}' is not a semantic version")

    major, minor, patch, prerelease = (match.group(i) for i in range(1, 5))
    if prerelease is None:
        return (int(major), int(minor), int(patch), 1, ())

    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part) for part in prerelease.split(".")
    )
    return (int(major), int(minor), int(patch), 0, identifiers)


def validate_entry_point(entry_point: str) -> str:
    """Validate that an entry point stays inside its skill directory.

    Entry points are relative POSIX-style paths. Absolute paths, drive
    letters and '..' components are rejected.

    Args:
        entry_point: Entry point as written in the manifest

    Returns:
        The entry point, unchanged

    Raises:
        SkillSecurityError: If the path is absolute or escapes the skill directory
    """
    if not entry_point or not entry_point.strip():
        raise SkillSecurityError("Entry point must not be empty")

    if "\\" in entry_point or re.match(r"^[a-zA-Z]:", entry_point):
        raise SkillSecurityError(f"Entry point must be a relative POSIX path: '{entry_point}'")

    path = PurePosixPath(entry_point)
    if path.is_absolute():
        raise SkillSecurityError(f"Entry point must be relative: '{entry_point}'")
    if ".." in path.parts:
        raise SkillSecurityError(f"Entry point escapes skill directory: '{entry_point}'")

    return entry_point


def resolve_entry_point(skill_dir: Path, entry_point: str) -> Path:
    """Resolve an entry point inside a skill directory.

    Symlinks are followed; the resolved target must still be inside the
    skill directory.

    Raises:
        SkillSecurityError: If the resolved path leaves the skill directory
    """
    validate_entry_point(entry_point)
    root = skill_dir.resolve()
    resolved = (root / entry_point).resolve()
    if not resolved.is_relative_to(root):
        raise SkillSecurityError(f"Entry point resolves outside skill directory: '{entry_point}'")
    return resolved


def canonicalize_path(path: str | os.PathLike[str]) -> Path:
    """Return the absolute, symlink-resolved form of a path.

    Non-existent trailing components are kept as written, so a file that is
    about to be created canonicalizes through its existing parent.
    """
    return Path(os.path.realpath(os.fspath(path)))


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest used to key compiled modules."""
    return hashlib.sha256(data).hexdigest()
