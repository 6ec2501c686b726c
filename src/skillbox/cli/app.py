"""CLI entry point for skillbox."""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from skillbox import __version__
from skillbox.cli.constants import ExitCodes
from skillbox.cli.utils import get_console, open_skillbox
from skillbox.config import ConfigurationError
from skillbox.tools.discovery import render_tool_summary
from skillbox.tools.errors import ToolError

app = typer.Typer(help="Skillbox - sandboxed skills and built-in tools for agents")

console = get_console()

logger = logging.getLogger(__name__)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version_flag: bool = typer.Option(False, "--version", help="Show version"),
) -> None:
    """Skillbox - run untrusted skills in a capability-gated WebAssembly sandbox.

    \b
    Examples:
        skillbox skill install ./weather           # Install a skill directory
        skillbox skill list                        # Show installed skills
        skillbox tools                             # Show callable tools
        skillbox run weather --args '{"city": "Oslo"}'
    """
    if version_flag:
        console.print(f"Skillbox version {__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command("tools")
def tools_command(
    prompt: bool = typer.Option(
        False, "--prompt", help="Print the summary block given to the model"
    ),
) -> None:
    """List built-in tools and enabled skills."""
    try:
        with open_skillbox() as box:
            descriptors = box.tools.descriptors()
            max_tools = box.settings.sandbox.max_tools_in_prompt
    except ConfigurationError as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(ExitCodes.GENERAL_ERROR)

    if prompt:
        console.print(render_tool_summary(descriptors, max_tools), markup=False)
        return

    table = Table(title="Available Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Description")
    for descriptor in descriptors:
        kind = f"skill {descriptor.version}" if descriptor.is_sandboxed else "built-in"
        table.add_row(descriptor.name, kind, descriptor.short_description)
    console.print(table)


@app.command("run")
def run_command(
    name: str = typer.Argument(..., help="Tool or skill name"),
    args: str = typer.Option("{}", "--args", "-a", help="JSON object of arguments"),
) -> None:
    """Invoke a tool once and print its output."""
    try:
        payload = json.loads(args)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --args JSON:[/red] {e}")
        raise typer.Exit(ExitCodes.GENERAL_ERROR)

    try:
        with open_skillbox() as box:
            output = asyncio.run(box.tools.invoke(name, payload))
    except ToolError as e:
        console.print(f"[red]{escape(e.summary())}[/red]")
        raise typer.Exit(ExitCodes.TOOL_ERROR)
    except ConfigurationError as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(ExitCodes.GENERAL_ERROR)
    except KeyboardInterrupt:
        raise typer.Exit(ExitCodes.INTERRUPTED)

    console.print(output.content, markup=False)
    if output.is_error:
        raise typer.Exit(ExitCodes.TOOL_ERROR)


# Skill command group
skill_app = typer.Typer(help="Manage installed skills")
app.add_typer(skill_app, name="skill")


@skill_app.callback(invoke_without_command=True)
def skill_callback(ctx: typer.Context) -> None:
    """Skill command callback - shows help if no subcommand given."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@skill_app.command("install")
def skill_install_command(
    path: Path = typer.Argument(..., help="Skill directory containing SKILL.md"),
    disabled: bool = typer.Option(False, "--disabled", help="Install without enabling"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip module verification"),
) -> None:
    """Install a skill from a local directory.

    Examples:
        skillbox skill install ./weather
        skillbox skill install ./weather --disabled
    """
    from skillbox.cli.skill_commands import install_skill

    install_skill(path, enabled=not disabled, verify=not no_verify)


@skill_app.command("list")
def skill_list_command() -> None:
    """Show installed skills with their state."""
    from skillbox.cli.skill_commands import list_skills

    list_skills()


@skill_app.command("info")
def skill_info_command(
    name: str = typer.Argument(..., help="Skill name"),
    version: str = typer.Option(None, "--version", "-v", help="Skill version (latest by default)"),
) -> None:
    """Show manifest details of an installed skill."""
    from skillbox.cli.skill_commands import show_skill_info

    show_skill_info(name, version)


@skill_app.command("enable")
def skill_enable_command(
    name: str = typer.Argument(..., help="Skill name"),
    version: str = typer.Option(None, "--version", "-v", help="Only this version"),
) -> None:
    """Enable a skill."""
    from skillbox.cli.skill_commands import enable_skill

    enable_skill(name, version)


@skill_app.command("disable")
def skill_disable_command(
    name: str = typer.Argument(..., help="Skill name"),
    version: str = typer.Option(None, "--version", "-v", help="Only this version"),
) -> None:
    """Disable a skill."""
    from skillbox.cli.skill_commands import disable_skill

    disable_skill(name, version)


@skill_app.command("remove")
def skill_remove_command(
    name: str = typer.Argument(..., help="Skill name"),
    version: str = typer.Option(None, "--version", "-v", help="Only this version"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove a skill and delete its files."""
    from skillbox.cli.skill_commands import remove_skill

    remove_skill(name, version, yes=yes)


@skill_app.command("verify")
def skill_verify_command(
    name: str = typer.Argument(..., help="Skill name"),
    version: str = typer.Option(None, "--version", "-v", help="Only this version"),
) -> None:
    """Check a skill's module against the host ABI."""
    from skillbox.cli.skill_commands import verify_skill

    verify_skill(name, version)


if __name__ == "__main__":
    app()
