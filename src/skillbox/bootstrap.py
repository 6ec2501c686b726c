"""Wire skillbox components together from settings.

The CLI and embedding applications build everything through build_skillbox()
so the registry, sandbox and tool registry share one configuration.
"""

import logging
from dataclasses import dataclass

from skillbox.audit import InvocationAuditLogger
from skillbox.config.schema import SkillboxSettings
from skillbox.sandbox.bridge import HostFunctionBridge
from skillbox.sandbox.delegates import (
    HttpxNetworkDelegate,
    LocalFilesystemDelegate,
    ProcessEnvironmentDelegate,
)
from skillbox.sandbox.runtime import SandboxRuntime
from skillbox.skills.manager import SkillManager
from skillbox.skills.registry import SkillRegistry
from skillbox.skills.store import JsonSkillStore, SkillStore
from skillbox.tools.builtin import FileSystemTools, HttpTools, ShellTools
from skillbox.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Skillbox:
    """Assembled components sharing one configuration."""

    settings: SkillboxSettings
    registry: SkillRegistry
    manager: SkillManager
    runtime: SandboxRuntime
    tools: ToolRegistry

    def close(self) -> None:
        self.tools.close()
        self.runtime.close()

    def __enter__(self) -> "Skillbox":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_bridge(settings: SkillboxSettings) -> HostFunctionBridge:
    """Bridge backed by the real httpx, filesystem and environment delegates."""
    return HostFunctionBridge(
        network=HttpxNetworkDelegate(
            timeout=settings.host.http_timeout,
            max_response_bytes=settings.host.max_response_bytes,
            allow_private_networks=settings.host.allow_private_networks,
        ),
        filesystem=LocalFilesystemDelegate(max_read_bytes=settings.host.max_response_bytes),
        environment=ProcessEnvironmentDelegate(),
    )


def build_skillbox(
    settings: SkillboxSettings,
    store: SkillStore | None = None,
    bridge: HostFunctionBridge | None = None,
    include_builtins: bool = True,
) -> Skillbox:
    """Build registry, manager, sandbox and tool registry from settings.

    Args:
        settings: Skillbox settings
        store: Registry storage (JSON file at registry.registry_path by default)
        bridge: Host function bridge (real delegates by default)
        include_builtins: Register the shell, HTTP and filesystem tools

    Returns:
        Assembled Skillbox; close it to stop the sandbox threads
    """
    if store is None:
        store = JsonSkillStore(settings.registry_path)
    registry = SkillRegistry(store)
    manager = SkillManager(registry, settings.skills_dir)

    audit = None
    if settings.audit.enabled:
        audit = InvocationAuditLogger(settings.audit.audit_file)

    runtime = SandboxRuntime(
        bridge or create_bridge(settings),
        manager.loader,
        settings=settings.sandbox,
        audit=audit,
    )
    tools = ToolRegistry(registry, runtime, settings)

    if include_builtins:
        for toolset in (ShellTools(settings), HttpTools(settings), FileSystemTools(settings)):
            tools.register_toolset(toolset)

    logger.debug(
        f"Skillbox ready: {len(registry.list())} skill(s) installed, "
        f"{len(tools.descriptors())} tool(s) available"
    )
    return Skillbox(settings=settings, registry=registry, manager=manager, runtime=runtime, tools=tools)
