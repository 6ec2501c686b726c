"""Skill manager for lifecycle operations.

This module installs skills from a directory into the skills store
(skills_dir/<name>/<version>/), removes them, and verifies their modules
against the guest ABI.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import wasmtime

from skillbox.sandbox.abi import check_module
from skillbox.skills.errors import DuplicateSkillError, SkillError, UnknownSkillError
from skillbox.skills.manifest import SkillManifest, parse_skill_manifest
from skillbox.skills.registry import SkillRecord, SkillRegistry, VerificationStatus
from skillbox.skills.security import normalize_skill_name, resolve_entry_point

logger = logging.getLogger(__name__)


def skill_install_dir(skills_dir: Path, name: str, version: str) -> Path:
    """Directory holding one installed (name, version)."""
    return skills_dir / normalize_skill_name(name) / version


class DirectoryModuleLoader:
    """Load module bytes from installed skill directories.

    Example:
        >>> loader = DirectoryModuleLoader(Path("~/.skillbox/skills").expanduser())
        >>> data = loader.load_bytes(manifest)
    """

    def __init__(self, skills_dir: Path):
        self.skills_dir = Path(skills_dir)

    def module_path(self, manifest: SkillManifest) -> Path:
        """Resolved entry point path.

        Raises:
            SkillSecurityError: If the entry point escapes the skill directory
        """
        skill_dir = skill_install_dir(self.skills_dir, manifest.name, manifest.version)
        return resolve_entry_point(skill_dir, manifest.entry_point)

    def load_bytes(self, manifest: SkillManifest) -> bytes:
        return self.module_path(manifest).read_bytes()


@dataclass
class VerificationReport:
    """Outcome of verifying one skill version."""

    name: str
    version: str
    status: VerificationStatus
    problems: list[str] = field(default_factory=list)


class SkillManager:
    """Manage skill lifecycle: install, remove, verify.

    Files and registry rows change together: an install whose registration
    fails leaves no files behind.

    Example:
        >>> manager = SkillManager(registry, Path("~/.skillbox/skills").expanduser())
        >>> record = manager.install_from_path(Path("./weather"))
        >>> manager.verify("weather").status
        <VerificationStatus.VERIFIED: 'verified'>
    """

    def __init__(self, registry: SkillRegistry, skills_dir: Path):
        """Initialize skill manager.

        Args:
            registry: Skill registry
            skills_dir: Directory for installed skills
        """
        self.registry = registry
        self.skills_dir = Path(skills_dir)
        self.loader = DirectoryModuleLoader(self.skills_dir)

        # Ensure skills directory exists
        self.skills_dir.mkdir(parents=True, exist_ok=True)

    def install_from_path(self, source_dir: Path, *, enabled: bool = True) -> SkillRecord:
        """Install a skill from a local directory containing SKILL.md.

        Args:
            source_dir: Directory with SKILL.md and the compiled module
            enabled: Initial enabled state

        Returns:
            SkillRecord for the installed skill

        Raises:
            ManifestError: If SKILL.md is invalid or the entry point is missing
            DuplicateSkillError: If (name, version) is already installed
            RegistryError: If registration fails (copied files are removed)
        """
        source_dir = Path(source_dir)
        manifest = parse_skill_manifest(source_dir)

        if self.registry.exists(manifest.name, manifest.version):
            raise DuplicateSkillError(
                f"Skill '{manifest.name}' version {manifest.version} is already installed",
                skill_name=manifest.name,
                version=manifest.version,
            )

        target = skill_install_dir(self.skills_dir, manifest.name, manifest.version)
        if target.exists():
            # Leftover from an interrupted install; the registry does not know it
            logger.warning(f"Removing stale skill directory {target}")
            shutil.rmtree(target)

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source_dir, target, ignore=shutil.ignore_patterns(".git", "__pycache__"))

        try:
            record = self.registry.install(manifest, enabled=enabled)
        except Exception:
            self._delete_files(manifest.name, manifest.version)
            raise

        logger.info(f"Installed {manifest.qualified_name} into {target}")
        return record

    def remove(self, name: str, version: str | None = None) -> list[SkillRecord]:
        """Unregister a skill and delete its files.

        Args:
            name: Skill name (any case/format)
            version: Version to remove; every version when omitted

        Returns:
            Removed records

        Raises:
            UnknownSkillError: If nothing matches
        """
        records = self.registry.remove(name, version)
        for record in records:
            self._delete_files(record.name, record.version)
        return records

    def verify(self, name: str, version: str | None = None) -> VerificationReport:
        """Check an installed skill's module against the guest ABI.

        The module must compile, export `run` and `memory`, and import only
        known host functions. The result is recorded in the registry.

        Raises:
            UnknownSkillError: If the skill is not installed
        """
        record = self.registry.get(name, version)
        if record is None:
            label = f"{name}@{version}" if version else name
            raise UnknownSkillError(
                f"Skill '{label}' is not installed", skill_name=name, version=version
            )

        problems = self._inspect(record.manifest)
        status = VerificationStatus.REJECTED if problems else VerificationStatus.VERIFIED
        self.registry.set_verification(record.name, status, version=record.version)

        if problems:
            logger.warning(f"Skill {record.manifest.qualified_name} rejected: {'; '.join(problems)}")
        return VerificationReport(
            name=record.name, version=record.version, status=status, problems=problems
        )

    def _inspect(self, manifest: SkillManifest) -> list[str]:
        try:
            data = self.loader.load_bytes(manifest)
        except (OSError, SkillError) as e:
            return [f"module cannot be read: {e}"]

        try:
            module = wasmtime.Module(wasmtime.Engine(), data)
        except wasmtime.WasmtimeError as e:
            return [f"invalid module: {str(e).strip().splitlines()[0]}"]

        return check_module(module, data)

    def _delete_files(self, name: str, version: str) -> None:
        target = skill_install_dir(self.skills_dir, name, version)
        shutil.rmtree(target, ignore_errors=True)
        parent = target.parent
        if parent.exists() and not any(parent.iterdir()):
            parent.rmdir()
