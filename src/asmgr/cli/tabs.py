"""
Tab commands: list, add, close, rename, restart, follow, unfollow.
"""

from typing import Annotated

import typer
from rich import print as rprint
from rich.table import Table

from ._shared import ProjectOption, console, run_on_session, tab_app

SessionArg = Annotated[str, typer.Argument(help="Session name or id")]
IndexArg = Annotated[int, typer.Argument(help="Tab index")]


@tab_app.command("list")
def tab_list(name: SessionArg, project: ProjectOption = None):
    """List a session's tmux windows, followed or not."""
    _, windows = run_on_session(name, project, lambda c, r: c.list_live_windows(r.id), lock=False)
    table = Table(box=None, pad_edge=False)
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Agent")
    table.add_column("State")
    for window in windows:
        state = "[red]dead[/red]" if window.dead else "[green]alive[/green]"
        if not window.followed:
            state += " [dim](not followed)[/dim]"
        marker = "*" if window.active else ""
        table.add_row(f"{window.index}{marker}", window.name, window.agent or "-", state)
    console.print(table)


@tab_app.command("add")
def tab_add(
    name: SessionArg,
    kind: Annotated[str, typer.Option("--agent", "-a", help="Agent kind for the tab")] = "terminal",
    tab_name: Annotated[str, typer.Option("--name", "-n", help="Tab name")] = "",
    command: Annotated[str, typer.Option("--command", "-c", help="Command for a custom tab")] = "",
    project: ProjectOption = None,
):
    """Open a new tab in a running session."""
    _, window = run_on_session(
        name, project, lambda c, r: c.add_window(r.id, kind, tab_name, custom_command=command),
    )
    rprint(f"[green]✓[/green] Tab {window.index} '[bold]{window.name}[/bold]' added to '{name}'")


@tab_app.command("close")
def tab_close(name: SessionArg, index: IndexArg, project: ProjectOption = None):
    """Close a tab (never the primary window)."""
    run_on_session(name, project, lambda c, r: c.close_window(r.id, index))
    rprint(f"[green]✓[/green] Tab {index} of '{name}' closed")


@tab_app.command("rename")
def tab_rename(
    name: SessionArg,
    index: IndexArg,
    new_name: Annotated[str, typer.Argument(help="New tab name")],
    project: ProjectOption = None,
):
    """Rename a tab."""
    run_on_session(name, project, lambda c, r: c.rename_window(r.id, index, new_name))
    rprint(f"[green]✓[/green] Tab {index} of '{name}' renamed to '{new_name}'")


@tab_app.command("restart")
def tab_restart(name: SessionArg, index: IndexArg, project: ProjectOption = None):
    """Respawn a tab's process in place."""
    run_on_session(name, project, lambda c, r: c.restart_window(r.id, index))
    rprint(f"[green]✓[/green] Tab {index} of '{name}' restarted")


@tab_app.command("follow")
def tab_follow(
    name: SessionArg,
    index: IndexArg,
    kind: Annotated[str, typer.Option("--agent", "-a", help="What runs in the window")] = "terminal",
    tab_name: Annotated[str, typer.Option("--name", "-n", help="Tab name")] = "",
    project: ProjectOption = None,
):
    """Track a window that was opened from inside tmux."""
    _, window = run_on_session(
        name, project, lambda c, r: c.follow_window(r.id, index, kind, tab_name),
    )
    rprint(f"[green]✓[/green] Following tab {window.index} '[bold]{window.name}[/bold]'")


@tab_app.command("unfollow")
def tab_unfollow(name: SessionArg, index: IndexArg, project: ProjectOption = None):
    """Stop tracking a tab without closing it."""
    run_on_session(name, project, lambda c, r: c.unfollow_window(r.id, index))
    rprint(f"[green]✓[/green] No longer following tab {index} of '{name}'")
