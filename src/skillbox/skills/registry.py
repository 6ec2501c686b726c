"""Skill registry for tracking installed skills.

The registry is the durable catalog of installed skills. Each (name, version)
is one record; names match in canonical form (lowercase, hyphens). Writes go
through a SkillStore transaction so a failed install leaves no trace.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict

from skillbox.skills.errors import DuplicateSkillError, SkillSecurityError, UnknownSkillError
from skillbox.skills.manifest import SkillManifest, parse_manifest
from skillbox.skills.security import normalize_skill_name, semver_key
from skillbox.skills.store import InMemorySkillStore, SkillRow, SkillStore

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    """Result of checking a skill's module against the host ABI."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    REJECTED = "rejected"


class RegistryEvent(str, Enum):
    """Change notifications delivered to registry listeners after commit."""

    INSTALLED = "installed"
    REMOVED = "removed"
    ENABLED = "enabled"
    DISABLED = "disabled"
    VERIFICATION_CHANGED = "verification_changed"


class SkillRecord(BaseModel):
    """Installed skill: manifest plus registry metadata.

    Example:
        >>> record = registry.get("weather")
        >>> record.version, record.enabled
        ('1.0.0', True)
    """

    model_config = ConfigDict(frozen=True)

    manifest: SkillManifest
    installed_at: datetime
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def canonical_name(self) -> str:
        return normalize_skill_name(self.manifest.name)

    def to_row(self) -> SkillRow:
        return SkillRow(
            name=self.manifest.name,
            version=self.manifest.version,
            manifest_json=self.manifest.model_dump_json(),
            installed_at=self.installed_at.isoformat(),
            verification_status=self.verification_status.value,
            enabled=self.enabled,
        )

    @classmethod
    def from_row(cls, row: SkillRow) -> "SkillRecord":
        return cls(
            manifest=SkillManifest.model_validate_json(row.manifest_json),
            installed_at=datetime.fromisoformat(row.installed_at),
            verification_status=VerificationStatus(row.verification_status),
            enabled=row.enabled,
        )


RegistryListener = Callable[[RegistryEvent, SkillRecord], None]
InstallGuard = Callable[[SkillManifest], None]


class SkillRegistry:
    """Durable catalog of installed skills.

    Attributes:
        store: Storage collaborator holding the rows

    Example:
        >>> registry = SkillRegistry(JsonSkillStore(Path("registry.json")))
        >>> record = registry.install(Path("weather/SKILL.md").read_bytes())
        >>> registry.disable("weather")
    """

    def __init__(self, store: SkillStore | None = None):
        """Initialize skill registry.

        Args:
            store: Row storage (defaults to an in-memory store)
        """
        self.store = store if store is not None else InMemorySkillStore()
        self._listeners: list[RegistryListener] = []
        self._install_guards: list[InstallGuard] = []

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a listener called with (event, record) after each commit.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_install_guard(self, guard: InstallGuard) -> None:
        """Register a check run against every manifest before it is installed.

        Guards reject a manifest by raising a RegistryError subclass.
        """
        self._install_guards.append(guard)

    def install(self, source: SkillManifest | bytes | str, *, enabled: bool = True) -> SkillRecord:
        """Validate and install a skill.

        Args:
            source: Parsed manifest or raw SKILL.md content
            enabled: Initial enabled state

        Returns:
            The new SkillRecord

        Raises:
            ManifestError: If raw content fails validation
            DuplicateSkillError: If (name, version) is already installed
            SkillNameConflictError: If an install guard rejects the name
            SkillStorageError: If the store cannot commit
        """
        manifest = source if isinstance(source, SkillManifest) else parse_manifest(source)

        for guard in self._install_guards:
            guard(manifest)

        record = SkillRecord(
            manifest=manifest,
            installed_at=datetime.now(timezone.utc),
            enabled=enabled,
        )
        canonical = record.canonical_name

        with self.store.transaction() as rows:
            for row in rows:
                if _canonical(row.name) == canonical and row.version == manifest.version:
                    raise DuplicateSkillError(
                        f"Skill '{manifest.name}' version {manifest.version} is already installed",
                        skill_name=manifest.name,
                        version=manifest.version,
                    )
            rows.append(record.to_row())

        logger.info(f"Installed skill {manifest.qualified_name}")
        self._notify(RegistryEvent.INSTALLED, record)
        return record

    def enable(self, name: str, version: str | None = None) -> list[SkillRecord]:
        """Enable a skill. Without a version, every installed version is enabled.

        Raises:
            UnknownSkillError: If nothing matches
        """
        return self._update(name, version, RegistryEvent.ENABLED, enabled=True)

    def disable(self, name: str, version: str | None = None) -> list[SkillRecord]:
        """Disable a skill. Without a version, every installed version is disabled.

        Raises:
            UnknownSkillError: If nothing matches
        """
        return self._update(name, version, RegistryEvent.DISABLED, enabled=False)

    def set_verification(
        self, name: str, status: VerificationStatus, version: str | None = None
    ) -> list[SkillRecord]:
        """Record the verification result for a skill.

        Raises:
            UnknownSkillError: If nothing matches
        """
        return self._update(
            name,
            version,
            RegistryEvent.VERIFICATION_CHANGED,
            verification_status=VerificationStatus(status).value,
        )

    def get(self, name: str, version: str | None = None) -> SkillRecord | None:
        """Get a skill by name (case-insensitive).

        Args:
            name: Skill name (any case/format)
            version: Exact version; the latest installed version when omitted

        Returns:
            Matching SkillRecord, or None if not installed
        """
        try:
            canonical = normalize_skill_name(name)
        except SkillSecurityError:
            return None

        matches = [row for row in self.store.rows() if _row_matches(row, canonical, version)]
        if not matches:
            return None

        latest = max(matches, key=lambda row: semver_key(row.version))
        return SkillRecord.from_row(latest)

    def versions(self, name: str) -> list[str]:
        """Installed versions of a skill, oldest first."""
        try:
            canonical = normalize_skill_name(name)
        except SkillSecurityError:
            return []
        found = [row.version for row in self.store.rows() if _canonical(row.name) == canonical]
        return sorted(found, key=semver_key)

    def exists(self, name: str, version: str | None = None) -> bool:
        return self.get(name, version) is not None

    def remove(self, name: str, version: str | None = None) -> list[SkillRecord]:
        """Remove a skill. Without a version, every installed version is removed.

        Returns:
            Records that were removed

        Raises:
            UnknownSkillError: If nothing matches
        """
        canonical = self._require_canonical(name, version)

        with self.store.transaction() as rows:
            removed = [row for row in rows if _row_matches(row, canonical, version)]
            if not removed:
                raise _unknown(name, version)
            rows[:] = [row for row in rows if not _row_matches(row, canonical, version)]

        records = [SkillRecord.from_row(row) for row in removed]
        for record in records:
            logger.info(f"Removed skill {record.manifest.qualified_name}")
            self._notify(RegistryEvent.REMOVED, record)
        return records

    def _update(
        self, name: str, version: str | None, event: RegistryEvent, **changes
    ) -> list[SkillRecord]:
        canonical = self._require_canonical(name, version)

        with self.store.transaction() as rows:
            updated = []
            for row in rows:
                if _row_matches(row, canonical, version):
                    for key, value in changes.items():
                        setattr(row, key, value)
                    updated.append(row)
            if not updated:
                raise _unknown(name, version)

        records = [SkillRecord.from_row(row) for row in updated]
        for record in records:
            logger.info(f"Skill {record.manifest.qualified_name}: {event.value}")
            self._notify(event, record)
        return records

    def _require_canonical(self, name: str, version: str | None) -> str:
        try:
            return normalize_skill_name(name)
        except SkillSecurityError:
            raise _unknown(name, version) from None

    def _notify(self, event: RegistryEvent, record: SkillRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, record)
            except Exception as e:
                logger.error(
                    f"Registry listener failed on {event.value} for "
                    f"{record.manifest.qualified_name}: {e}",
                    exc_info=True,
                )

    # Defined last so the builtin stays visible to annotations above
    def list(self) -> list[SkillRecord]:
        """List all installed skills in installation order."""
        return [SkillRecord.from_row(row) for row in self.store.rows()]


def _canonical(name: str) -> str:
    return name.lower().replace("_", "-")


def _row_matches(row: SkillRow, canonical: str, version: str | None) -> bool:
    return _canonical(row.name) == canonical and (version is None or row.version == version)


def _unknown(name: str, version: str | None) -> UnknownSkillError:
    label = f"{name}@{version}" if version else name
    return UnknownSkillError(f"Skill '{label}' is not installed", skill_name=name, version=version)
