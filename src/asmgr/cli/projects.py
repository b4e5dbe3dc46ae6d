"""
Project commands: list, new, use, rename, delete, import.
"""

from typing import Annotated

import typer
from rich import print as rprint
from rich.table import Table

from ..exceptions import AsmgrError
from ._shared import console, fail, project_app


def _store():
    from ..store import Store

    return Store()


def _find_project(store, key: str):
    """Match a project by id or (case-insensitive) name."""
    for project in store.list_projects():
        if key in (project.id, project.name) or project.name.lower() == key.lower():
            return project
    fail(f"No project named '{key}'")


@project_app.callback(invoke_without_command=True)
def project_default(ctx: typer.Context):
    """List projects (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _project_list()


@project_app.command("list")
def project_list():
    """List projects with their session counts."""
    _project_list()


def _project_list():
    store = _store()
    try:
        active = store.get_active_project()
        table = Table(box=None, pad_edge=False)
        table.add_column("")
        table.add_column("Name", style="bold")
        table.add_column("Sessions", justify="right")
        table.add_column("Id", style="dim")
        for project in store.list_projects():
            marker = "[green]●[/green]" if project.id == active else " "
            table.add_row(marker, project.name, str(store.get_project_session_count(project.id)),
                          project.id or "(default)")
    except AsmgrError as e:
        fail(str(e))
    console.print(table)


@project_app.command("new")
def project_new(
    name: Annotated[str, typer.Argument(help="Project name")],
    color: Annotated[str, typer.Option("--color", help="Display color")] = "",
    use: Annotated[bool, typer.Option("--use", help="Make it the active project")] = False,
):
    """Create a project."""
    store = _store()
    try:
        project = store.create_project(name, color)
        if use:
            store.set_active_project(project.id)
    except AsmgrError as e:
        fail(str(e))
    rprint(f"[green]✓[/green] Created project '[bold]{project.name}[/bold]' ({project.id})")


@project_app.command("use")
def project_use(
    name: Annotated[str, typer.Argument(help="Project name or id")],
):
    """Set the active project (the one the TUI opens)."""
    store = _store()
    project = _find_project(store, name)
    try:
        store.set_active_project(project.id)
    except AsmgrError as e:
        fail(str(e))
    rprint(f"[green]✓[/green] Active project: [bold]{project.name}[/bold]")


@project_app.command("rename")
def project_rename(
    name: Annotated[str, typer.Argument(help="Project name or id")],
    new_name: Annotated[str, typer.Argument(help="New name")],
):
    """Rename a project."""
    store = _store()
    project = _find_project(store, name)
    try:
        store.rename_project(project.id, new_name)
    except AsmgrError as e:
        fail(str(e))
    rprint(f"[green]✓[/green] Renamed '{project.name}' to '[bold]{new_name}[/bold]'")


@project_app.command("delete")
def project_delete(
    name: Annotated[str, typer.Argument(help="Project name or id")],
    cascade: Annotated[
        bool, typer.Option("--cascade", help="Also delete its sessions and groups")
    ] = False,
):
    """Delete a project (must be empty unless --cascade)."""
    store = _store()
    project = _find_project(store, name)
    try:
        removed = store.delete_project(project.id, cascade=cascade)
    except AsmgrError as e:
        fail(str(e))
    rprint(f"[green]✓[/green] Deleted project '[bold]{project.name}[/bold]'")
    if removed:
        _kill_sessions(removed)
        rprint(f"[dim]  Removed {len(removed)} sessions[/dim]")


def _kill_sessions(instance_ids):
    from ..models import session_name_for
    from ..tmux_adapter import TmuxAdapter

    tmux = TmuxAdapter()
    for instance_id in instance_ids:
        try:
            tmux.kill_session(session_name_for(instance_id))
        except AsmgrError as e:
            rprint(f"[yellow]Could not stop {instance_id}: {e}[/yellow]")


@project_app.command("import")
def project_import(
    source: Annotated[str, typer.Argument(help="Project to move sessions from")],
    target: Annotated[str, typer.Argument(help="Project to move sessions into")],
):
    """Move every session and group of one project into another."""
    store = _store()
    src = _find_project(store, source)
    dst = _find_project(store, target)
    try:
        moved = store.import_project(src.id, dst.id)
    except AsmgrError as e:
        fail(str(e))
    rprint(f"[green]✓[/green] Moved {moved} sessions into '[bold]{dst.name}[/bold]'")
