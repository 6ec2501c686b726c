"""Tool registry: the single lookup and dispatch surface for the agent loop.

Built-in tools are registered in-process; skills come from the SkillRegistry
and run in the sandbox. Callers use invoke() and descriptors() and never
branch on the kind of tool.

Name resolution is case-insensitive and treats '_' and '-' alike, so a
built-in `read_file` and a skill `read-file` collide. Collisions are refused
when the second name is registered or installed, never at call time.
"""

import json
import logging
import threading
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from skillbox.config.schema import SkillboxSettings
from skillbox.sandbox.runtime import SandboxRuntime
from skillbox.skills.errors import SkillNameConflictError, SkillSecurityError
from skillbox.skills.manifest import SkillManifest
from skillbox.skills.registry import (
    RegistryEvent,
    SkillRecord,
    SkillRegistry,
    VerificationStatus,
)
from skillbox.skills.security import normalize_skill_name, semver_key
from skillbox.tools.base import SkillTool, Tool, ToolDescriptor, ToolOutput
from skillbox.tools.builtin.base import BuiltinToolset
from skillbox.tools.errors import (
    InvalidToolInputError,
    SkillDisabledError,
    ToolNotFoundError,
    ToolRegistrationError,
)

logger = logging.getLogger(__name__)


def tool_key(name: str) -> str:
    """Canonical lookup key shared by built-in tools and skills."""
    return name.strip().lower().replace("_", "-")


class ToolRegistry:
    """Unified registry of built-in tools and sandboxed skills.

    The skill view is an immutable mapping rebuilt from the SkillRegistry on
    every registry event and swapped by reference, so readers never see it
    change under them.

    Example:
        >>> tools = ToolRegistry(skill_registry, runtime, settings)
        >>> tools.register_toolset(FileSystemTools(settings))
        >>> [d.name for d in tools.descriptors()]
        ['read_file', 'write_file', 'weather']
        >>> output = await tools.invoke("weather", {"city": "Oslo"})
    """

    def __init__(
        self,
        skill_registry: SkillRegistry,
        runtime: SandboxRuntime,
        settings: SkillboxSettings | None = None,
    ):
        """Initialize tool registry.

        Args:
            skill_registry: Catalog of installed skills
            runtime: Sandbox used to run skill tools
            settings: Skillbox settings (defaults apply when omitted)
        """
        self.skill_registry = skill_registry
        self.runtime = runtime
        self.settings = settings or SkillboxSettings()

        self._builtins: dict[str, Tool] = {}
        self._lock = threading.Lock()
        self._skills: Mapping[str, SkillTool] = MappingProxyType({})

        skill_registry.add_install_guard(self._check_skill_name)
        self._unsubscribe = skill_registry.subscribe(self._on_registry_event)
        self.refresh()

    # Registration

    def register_builtin(self, tool: Tool) -> None:
        """Register an in-process tool.

        Raises:
            ToolRegistrationError: If a built-in or installed skill already
                uses the name
        """
        key = tool_key(tool.name)
        with self._lock:
            if key in self._builtins:
                raise ToolRegistrationError(
                    f"Tool '{tool.name}' conflicts with built-in tool '{self._builtins[key].name}'"
                )
            if self.skill_registry.exists(key):
                raise ToolRegistrationError(
                    f"Tool '{tool.name}' conflicts with installed skill '{key}'",
                    skill_name=key,
                )
            self._builtins[key] = tool
        logger.debug(f"Registered built-in tool '{tool.name}'")

    def register_toolset(self, toolset: BuiltinToolset) -> None:
        """Register every tool of a built-in toolset."""
        for tool in toolset.as_tools():
            self.register_builtin(tool)

    def _check_skill_name(self, manifest: SkillManifest) -> None:
        key = tool_key(manifest.name)
        if key in self._builtins:
            raise SkillNameConflictError(
                f"Skill name '{manifest.name}' conflicts with built-in tool "
                f"'{self._builtins[key].name}'",
                skill_name=manifest.name,
                version=manifest.version,
            )

    # Skill view

    def refresh(self) -> None:
        """Rebuild the skill view from the SkillRegistry."""
        require_verified = self.settings.sandbox.require_verified
        chosen: dict[str, SkillRecord] = {}

        for record in self.skill_registry.list():
            if not self._is_available(record, require_verified):
                continue
            key = tool_key(record.name)
            current = chosen.get(key)
            if current is None or semver_key(record.version) > semver_key(current.version):
                chosen[key] = record

        view = {key: SkillTool(record, self.runtime) for key, record in chosen.items()}
        with self._lock:
            self._skills = MappingProxyType(view)
        logger.debug(f"Skill view rebuilt: {len(view)} skill tool(s)")

    @staticmethod
    def _is_available(record: SkillRecord, require_verified: bool) -> bool:
        if not record.enabled:
            return False
        if record.verification_status is VerificationStatus.REJECTED:
            return False
        if require_verified and record.verification_status is not VerificationStatus.VERIFIED:
            return False
        return True

    def _on_registry_event(self, event: RegistryEvent, record: SkillRecord) -> None:
        if event is RegistryEvent.REMOVED:
            self.runtime.evict(record.manifest)
        self.refresh()

    # Lookup

    def get_tool(self, name: str) -> Tool:
        """Resolve a tool by name: built-ins first, then available skills.

        Raises:
            SkillDisabledError: If the skill is installed but not available
            ToolNotFoundError: If nothing has this name
        """
        key = tool_key(name)
        builtin = self._builtins.get(key)
        if builtin is not None:
            return builtin

        skill = self._skills.get(key)
        if skill is not None:
            return skill

        try:
            installed = self.skill_registry.get(normalize_skill_name(key))
        except SkillSecurityError:
            installed = None
        if installed is not None:
            raise SkillDisabledError(
                f"Skill '{installed.name}' is installed but not available",
                skill_name=installed.name,
                version=installed.version,
                detail=_unavailable_reason(installed, self.settings.sandbox.require_verified),
            )
        raise ToolNotFoundError(f"No tool named '{name}'", detail=f"no tool named '{name}'")

    def has_tool(self, name: str) -> bool:
        key = tool_key(name)
        return key in self._builtins or key in self._skills

    async def invoke(self, name: str, args: Mapping[str, Any] | None = None) -> ToolOutput:
        """Invoke a tool by name.

        Args:
            name: Tool name (any case, '_' or '-')
            args: JSON-serializable mapping of arguments

        Returns:
            ToolOutput from the tool

        Raises:
            ToolError: Subclass describing the failure
        """
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise InvalidToolInputError(
                f"Arguments for '{name}' must be an object",
                detail=f"expected an object, got {type(args).__name__}",
            )
        try:
            json.dumps(args)
        except (TypeError, ValueError) as e:
            raise InvalidToolInputError(
                f"Arguments for '{name}' are not JSON-serializable", detail=str(e)
            ) from None

        tool = self.get_tool(name)
        logger.debug(f"Invoking {'skill' if tool.is_sandboxed else 'built-in'} tool '{tool.name}'")
        return await tool.invoke(dict(args))

    def descriptors(self) -> list[ToolDescriptor]:
        """Descriptors of every callable tool, built-ins first."""
        builtins = list(self._builtins.values())
        skills = list(self._skills.values())
        return [tool.descriptor() for tool in [*builtins, *skills]]

    def documentation(self, name: str) -> str:
        """Full documentation of a tool, loaded on demand."""
        return self.get_tool(name).documentation()

    def close(self) -> None:
        """Stop listening to the SkillRegistry."""
        self._unsubscribe()


def _unavailable_reason(record: SkillRecord, require_verified: bool) -> str:
    if not record.enabled:
        return "skill is disabled"
    if record.verification_status is VerificationStatus.REJECTED:
        return "skill failed verification"
    if require_verified:
        return "skill has not been verified"
    return "skill is not available"
