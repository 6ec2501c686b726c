"""CLI commands for managing installed skills.

Every command works through SkillManager and SkillRegistry; nothing here
touches the registry file or the skills directory directly.
"""

import logging
from pathlib import Path

import typer
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from skillbox.cli.constants import ExitCodes
from skillbox.cli.utils import get_console, open_skillbox
from skillbox.config import ConfigurationError
from skillbox.skills.errors import SkillError
from skillbox.skills.registry import SkillRecord, VerificationStatus

console = get_console()
logger = logging.getLogger(__name__)

CLI_ERRORS = (SkillError, ConfigurationError, OSError)

_STATUS_STYLE = {
    VerificationStatus.VERIFIED: "[green]verified[/green]",
    VerificationStatus.UNVERIFIED: "[yellow]unverified[/yellow]",
    VerificationStatus.REJECTED: "[red]rejected[/red]",
}


def _fail(action: str, error: Exception) -> typer.Exit:
    console.print(f"[red]Error {action}: {escape(str(error))}[/red]")
    return typer.Exit(ExitCodes.GENERAL_ERROR)


def _label(record: SkillRecord) -> str:
    return f"{record.name}@{record.version}"


def install_skill(path: Path, enabled: bool = True, verify: bool = True) -> None:
    """Install a skill from a local directory containing SKILL.md.

    Args:
        path: Skill directory
        enabled: Initial enabled state
        verify: Check the module against the guest ABI after installing
    """
    try:
        with open_skillbox() as box:
            record = box.manager.install_from_path(path, enabled=enabled)
            console.print(f"[green]✓[/green] Installed {_label(record)}")

            if verify:
                report = box.manager.verify(record.name, record.version)
                if report.problems:
                    console.print(f"[red]✗[/red] Verification failed for {_label(record)}:")
                    for problem in report.problems:
                        console.print(f"  • {problem}")
                else:
                    console.print(f"[green]✓[/green] Verified {_label(record)}")
    except CLI_ERRORS as e:
        raise _fail("installing skill", e) from e


def list_skills() -> None:
    """Show every installed skill version with its state."""
    try:
        with open_skillbox() as box:
            records = box.registry.list()
    except CLI_ERRORS as e:
        raise _fail("listing skills", e) from e

    if not records:
        console.print("[yellow]No skills installed[/yellow]")
        console.print("[dim]Run 'skillbox skill install <path>' to install a skill[/dim]")
        return

    table = Table(title="Installed Skills")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Enabled")
    table.add_column("Verification")
    table.add_column("Description")

    for record in records:
        table.add_row(
            record.name,
            record.version,
            "[green]◉[/green]" if record.enabled else "[dim]○[/dim]",
            _STATUS_STYLE[record.verification_status],
            record.manifest.description,
        )
    console.print(table)


def show_skill_info(name: str, version: str | None = None) -> None:
    """Show manifest details of an installed skill."""
    try:
        with open_skillbox() as box:
            record = box.registry.get(name, version)
            versions = box.registry.versions(name)
    except CLI_ERRORS as e:
        raise _fail("reading skill", e) from e

    if record is None:
        console.print(f"[red]Error: Skill '{name}' is not installed[/red]")
        raise typer.Exit(ExitCodes.GENERAL_ERROR)

    manifest = record.manifest
    limits = manifest.resource_limits
    console.print(f"\n[bold]{manifest.name}[/bold] {manifest.version}")
    console.print(f"{manifest.description}\n")
    console.print(f" • Entry point: {manifest.entry_point}")
    console.print(f" • Installed: {record.installed_at.isoformat()}")
    console.print(f" • Enabled: {'yes' if record.enabled else 'no'}")
    console.print(f" • Verification: {_STATUS_STYLE[record.verification_status]}")
    if manifest.author:
        console.print(f" • Author: {manifest.author}")
    if len(versions) > 1:
        console.print(f" • Installed versions: {', '.join(versions)}")

    console.print("\n[bold]Capabilities:[/bold]")
    tags = sorted(capability.tag for capability in manifest.capabilities)
    if tags:
        for tag in tags:
            console.print(f" • {tag}")
    else:
        console.print(" • [dim]none[/dim]")

    console.print("\n[bold]Resource limits:[/bold]")
    console.print(f" • Fuel budget: {limits.fuel_budget}")
    console.print(f" • Memory limit: {limits.memory_limit_bytes} bytes")
    console.print(f" • Wall-clock timeout: {limits.wall_clock_timeout_ms} ms\n")


def enable_skill(name: str, version: str | None = None) -> None:
    """Enable an installed skill (every version unless one is given)."""
    try:
        with open_skillbox() as box:
            records = box.registry.enable(name, version)
    except CLI_ERRORS as e:
        raise _fail("enabling skill", e) from e

    for record in records:
        console.print(f"[green]✓[/green] Enabled {_label(record)}")


def disable_skill(name: str, version: str | None = None) -> None:
    """Disable an installed skill (every version unless one is given)."""
    try:
        with open_skillbox() as box:
            records = box.registry.disable(name, version)
    except CLI_ERRORS as e:
        raise _fail("disabling skill", e) from e

    for record in records:
        console.print(f"[green]✓[/green] Disabled {_label(record)}")


def remove_skill(name: str, version: str | None = None, yes: bool = False) -> None:
    """Unregister a skill and delete its files.

    Args:
        name: Skill name
        version: Version to remove; every version when omitted
        yes: Skip the confirmation prompt
    """
    label = f"{name}@{version}" if version else name
    if not yes and not Confirm.ask(f"Remove skill '{label}'?"):
        console.print("Cancelled")
        return

    try:
        with open_skillbox() as box:
            records = box.manager.remove(name, version)
    except CLI_ERRORS as e:
        raise _fail("removing skill", e) from e

    for record in records:
        console.print(f"[green]✓[/green] Removed {_label(record)}")


def verify_skill(name: str, version: str | None = None) -> None:
    """Check an installed skill's module and record the result."""
    try:
        with open_skillbox() as box:
            report = box.manager.verify(name, version)
    except CLI_ERRORS as e:
        raise _fail("verifying skill", e) from e

    label = f"{report.name}@{report.version}"
    if report.status is VerificationStatus.VERIFIED:
        console.print(f"[green]✓[/green] {label} verified")
        return

    console.print(f"[red]✗[/red] {label} rejected:")
    for problem in report.problems:
        console.print(f"  • {problem}")
    raise typer.Exit(ExitCodes.GENERAL_ERROR)
