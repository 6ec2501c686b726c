"""Skill subsystem for skillbox.

Skills are third-party WebAssembly modules described by a SKILL.md manifest.
This package parses and validates manifests, models the capabilities a
skill declares, and keeps the durable catalog of installed skills.

Example:
    >>> from skillbox.skills import SkillRegistry, parse_manifest
    >>> registry = SkillRegistry()
    >>> record = registry.install(Path("weather/SKILL.md").read_bytes())
"""

from skillbox.skills.capabilities import (
    AccessMode,
    CapabilitySet,
    EnvCapability,
    FilesystemCapability,
    NetworkCapability,
    parse_capability,
)
from skillbox.skills.errors import (
    DuplicateSkillError,
    ManifestError,
    RegistryError,
    SkillError,
    SkillNameConflictError,
    SkillSecurityError,
    SkillStorageError,
    UnknownSkillError,
)
from skillbox.skills.manifest import (
    ResourceLimits,
    SkillManifest,
    parse_manifest,
    parse_skill_manifest,
    serialize_manifest,
)
from skillbox.skills.registry import (
    RegistryEvent,
    SkillRecord,
    SkillRegistry,
    VerificationStatus,
)
from skillbox.skills.store import InMemorySkillStore, JsonSkillStore, SkillRow, SkillStore

__all__ = [
    # Errors
    "SkillError",
    "ManifestError",
    "SkillSecurityError",
    "RegistryError",
    "DuplicateSkillError",
    "UnknownSkillError",
    "SkillNameConflictError",
    "SkillStorageError",
    # Capabilities
    "AccessMode",
    "CapabilitySet",
    "NetworkCapability",
    "FilesystemCapability",
    "EnvCapability",
    "parse_capability",
    # Manifest
    "ResourceLimits",
    "SkillManifest",
    "parse_manifest",
    "parse_skill_manifest",
    "serialize_manifest",
    # Registry
    "RegistryEvent",
    "SkillRecord",
    "SkillRegistry",
    "VerificationStatus",
    "SkillStore",
    "SkillRow",
    "InMemorySkillStore",
    "JsonSkillStore",
]
