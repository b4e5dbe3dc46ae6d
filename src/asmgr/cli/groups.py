"""
Group commands: list, new, rename, delete, add, remove, color.
"""

from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.table import Table

from ..exceptions import AsmgrError
from ._shared import ProjectOption, console, fail, group_app, make_controller, resolve

GroupArg = Annotated[str, typer.Argument(help="Group name or id")]


def _find_group(controller, key: str):
    for group in controller.get_snapshot().groups:
        if key in (group.id, group.name) or group.name.lower() == key.lower():
            return group
    fail(f"No group named '{key}'")


def _run(project: Optional[str], action, lock: bool = True):
    controller = make_controller(project, lock=lock)
    try:
        return action(controller)
    except AsmgrError as e:
        fail(str(e))
    finally:
        controller.shutdown()


@group_app.callback(invoke_without_command=True)
def group_default(ctx: typer.Context, project: ProjectOption = None):
    """List groups (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _group_list(project)


@group_app.command("list")
def group_list(project: ProjectOption = None):
    """List groups and their members."""
    _group_list(project)


def _group_list(project: Optional[str]):
    snapshot = _run(project, lambda c: c.get_snapshot(), lock=False)
    if not snapshot.groups:
        rprint("[dim]No groups[/dim]")
        return
    names = {r.id: r.name for r in snapshot.instances}
    table = Table(box=None, pad_edge=False)
    table.add_column("Group", style="bold")
    table.add_column("Sessions")
    for group in snapshot.groups:
        label = f"[{group.color}]{group.name}[/{group.color}]" if group.color else group.name
        if group.collapsed:
            label += " [dim](collapsed)[/dim]"
        table.add_row(label, ", ".join(names.get(i, i) for i in group.member_ids) or "-")
    console.print(table)


@group_app.command("new")
def group_new(
    name: Annotated[str, typer.Argument(help="Group name")],
    project: ProjectOption = None,
):
    """Create a group."""
    group = _run(project, lambda c: c.create_group(name))
    rprint(f"[green]✓[/green] Group '[bold]{group.name}[/bold]' created")


@group_app.command("rename")
def group_rename(
    group: GroupArg,
    new_name: Annotated[str, typer.Argument(help="New group name")],
    project: ProjectOption = None,
):
    """Rename a group."""
    _run(project, lambda c: c.rename_group(_find_group(c, group).id, new_name))
    rprint(f"[green]✓[/green] Group '{group}' renamed to '[bold]{new_name}[/bold]'")


@group_app.command("delete")
def group_delete(group: GroupArg, project: ProjectOption = None):
    """Delete a group; its sessions become ungrouped."""
    _run(project, lambda c: c.delete_group(_find_group(c, group).id))
    rprint(f"[green]✓[/green] Group '{group}' deleted")


@group_app.command("add")
def group_add(
    group: GroupArg,
    session: Annotated[str, typer.Argument(help="Session name or id")],
    project: ProjectOption = None,
):
    """Move a session into a group."""
    _run(project, lambda c: c.assign_to_group(resolve(c, session).id, _find_group(c, group).id))
    rprint(f"[green]✓[/green] '{session}' moved to group '{group}'")


@group_app.command("remove")
def group_remove(
    session: Annotated[str, typer.Argument(help="Session name or id")],
    project: ProjectOption = None,
):
    """Take a session out of its group."""
    _run(project, lambda c: c.assign_to_group(resolve(c, session).id, None))
    rprint(f"[green]✓[/green] '{session}' is no longer grouped")


@group_app.command("color")
def group_color(
    group: GroupArg,
    fg: Annotated[str, typer.Argument(help="Header color; empty to reset")] = "",
    bg: Annotated[str, typer.Option("--bg", help="Background color")] = "",
    project: ProjectOption = None,
):
    """Set a group's header colors."""
    _run(project, lambda c: c.set_group_colors(_find_group(c, group).id, fg, bg))
    rprint(f"[green]✓[/green] Colors updated for group '{group}'")
