"""
Config commands: init, show, path.
"""

from typing import Annotated

import typer
from rich import print as rprint

from ._shared import config_app


CONFIG_TEMPLATE = """\
# asmgr configuration
# Location: ~/.config/agent-session-manager/config.yaml

# Agent used by 'asmgr new' and the new-session dialog
# default_agent: claude

# Seconds between status refreshes
# tick_interval: 0.1

# Diff tab default: full (vs HEAD) or session (vs the snapshot taken at start)
# diff_mode: full

# Log level for ~/.config/agent-session-manager/logs/asmgr.log
# log_level: INFO

# Extra phrases that mean an agent is waiting for you (any agent)
# waiting_markers:
#   - "approve this plan?"

# Per-agent screen chrome filters, merged key by key over the defaults.
# Run 'asmgr filters' to see the effective values.
# filters:
#   claude:
#     skip_contains: ["esc to interrupt"]
#     min_separators: 20
"""


@config_app.callback(invoke_without_command=True)
def config_default(ctx: typer.Context):
    """Show current configuration (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _config_show()


@config_app.command("init")
def config_init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite existing config file")
    ] = False,
):
    """Create a config file with documented defaults.

    All options are commented out. Use --force to overwrite an existing file.
    """
    from ..config import config_path as resolve_config_path

    path = resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists() and not force:
        rprint(f"[yellow]Config file already exists:[/yellow] {path}")
        rprint("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(1)

    path.write_text(CONFIG_TEMPLATE)
    rprint(f"[green]✓[/green] Created config file: [bold]{path}[/bold]")
    rprint("[dim]Edit to customize your settings[/dim]")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    _config_show()


def _config_show():
    from ..config import (
        config_path as resolve_config_path,
        get_default_agent,
        get_diff_mode,
        get_extra_waiting_markers,
        get_filter_overrides,
        get_log_level,
        get_tick_interval,
        load_config,
    )

    path = resolve_config_path()
    if not path.exists():
        rprint(f"[dim]No config file found at {path}[/dim]")
        rprint("[dim]Run 'asmgr config init' to create one[/dim]")
        return

    if not load_config():
        rprint(f"[dim]Config file is empty: {path}[/dim]")
        return

    rprint(f"[bold]Configuration[/bold] ({path}):\n")
    rprint(f"  default_agent: {get_default_agent()}")
    rprint(f"  tick_interval: {get_tick_interval()}s")
    rprint(f"  diff_mode: {get_diff_mode()}")
    rprint(f"  log_level: {get_log_level() or '(default)'}")
    markers = get_extra_waiting_markers()
    if markers:
        rprint(f"  waiting_markers: {len(markers)} extra")
    overrides = get_filter_overrides()
    if overrides:
        rprint(f"  filters: overrides for {', '.join(sorted(overrides))}")


@config_app.command("path")
def config_path():
    """Show the config file path."""
    from ..config import config_path as resolve_config_path
    print(resolve_config_path())
