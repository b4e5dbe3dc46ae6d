"""
Session commands: list, new, start, stop, attach, send, diff, search,
delete, rename, color, conversations, filters, doctor.
"""

import os
from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.table import Table

from ..exceptions import AsmgrError
from ._shared import ProjectOption, app, console, fail, make_controller, run_on_session


@app.command("list")
def list_sessions(project: ProjectOption = None):
    """List sessions of a project."""
    from ..status_constants import get_activity_display
    from ..tui_render import agent_icon

    controller = make_controller(project)
    try:
        controller.tick()
        snapshot = controller.get_snapshot()
    finally:
        controller.shutdown()
    if not snapshot.instances:
        rprint("[dim]No sessions[/dim]")
        return

    groups = {g.id: g.name for g in snapshot.groups}
    table = Table(box=None, pad_edge=False)
    table.add_column("")
    table.add_column("Name", style="bold")
    table.add_column("Agent")
    table.add_column("Tabs", justify="right")
    table.add_column("Group", style="dim")
    table.add_column("Path", style="dim")
    for record in snapshot.instances:
        icon, color = get_activity_display(record.status, snapshot.activities.get(record.id, ""))
        table.add_row(
            f"[{color}]{icon}[/{color}]",
            record.name,
            f"{agent_icon(record.agent)} {record.agent}",
            str(len(record.windows)),
            groups.get(record.group_id, ""),
            record.path,
        )
    console.print(table)


@app.command()
def new(
    name: Annotated[str, typer.Argument(help="Session name")],
    directory: Annotated[
        Optional[str], typer.Option("--directory", "-d", help="Working directory")
    ] = None,
    agent: Annotated[
        Optional[str], typer.Option("--agent", "-a", help="claude, gemini, aider, codex, amazonq, opencode, terminal, custom")
    ] = None,
    command: Annotated[
        str, typer.Option("--command", "-c", help="Command for the custom agent")
    ] = "",
    auto_approve: Annotated[
        bool, typer.Option("--auto-approve", "-y", help="Launch with the agent's auto-approve flag")
    ] = False,
    resume: Annotated[
        str, typer.Option("--resume", "-r", help="Conversation id to resume")
    ] = "",
    no_start: Annotated[
        bool, typer.Option("--no-start", help="Create the session without starting it")
    ] = False,
    project: ProjectOption = None,
):
    """Create a session (and start it unless --no-start)."""
    from ..config import get_default_agent

    controller = make_controller(project, lock=True)
    try:
        record = controller.create_instance(
            name,
            directory or os.getcwd(),
            agent or get_default_agent(),
            start=not no_start,
            custom_command=command,
            auto_approve=auto_approve,
            resume_id=resume,
        )
    except AsmgrError as e:
        fail(str(e))
    finally:
        controller.shutdown()
    state = "created" if no_start else "started"
    rprint(f"[green]✓[/green] Session '[bold]{record.name}[/bold]' {state}")
    rprint(f"[dim]  tmux session: {record.session_name}[/dim]")


@app.command()
def start(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    resume: Annotated[
        Optional[str], typer.Option("--resume", "-r", help="Conversation id to resume")
    ] = None,
    project: ProjectOption = None,
):
    """Start a stopped session."""
    run_on_session(name, project, lambda c, r: c.start_instance(r.id, resume))
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' running")


@app.command()
def stop(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    project: ProjectOption = None,
):
    """Stop a session (kills its tmux session)."""
    run_on_session(name, project, lambda c, r: c.stop_instance(r.id))
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' stopped")


@app.command()
def attach(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    window: Annotated[
        Optional[int], typer.Option("--window", "-w", help="Tab index to focus")
    ] = None,
    project: ProjectOption = None,
):
    """Attach this terminal to a session (Ctrl-q detaches)."""
    _, instruction = run_on_session(
        name, project, lambda c, r: c.attach(r.id, window), lock=False,
    )
    rprint(f"[dim]Attaching to '{name}' (Ctrl-q to detach)...[/dim]")
    os.execvp(instruction.argv[0], instruction.argv)


@app.command()
def send(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    text: Annotated[str, typer.Argument(help="Prompt text (sent with Enter)")],
    window: Annotated[int, typer.Option("--window", "-w", help="Tab index")] = 0,
    project: ProjectOption = None,
):
    """Send a prompt to a session."""
    run_on_session(name, project, lambda c, r: c.send_prompt(r.id, text, window), lock=False)
    rprint(f"[green]✓[/green] Sent to '[bold]{name}[/bold]'")


@app.command()
def diff(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    session_mode: Annotated[
        bool, typer.Option("--session", "-s", help="Diff against the session-start snapshot")
    ] = False,
    stat: Annotated[bool, typer.Option("--stat", help="Only print line counts")] = False,
    project: ProjectOption = None,
):
    """Show a session's working-tree diff."""
    from ..dependency_check import require_git
    from ..status_constants import DIFF_MODE_FULL, DIFF_MODE_SESSION
    from ..tui_render import render_diff_result

    try:
        require_git()
    except AsmgrError as e:
        fail(str(e))
    mode = DIFF_MODE_SESSION if session_mode else DIFF_MODE_FULL
    _, result = run_on_session(name, project, lambda c, r: c.get_diff(r.id, mode), lock=False)
    if result.error:
        fail(result.error)
    if stat:
        if result.note:
            rprint(f"[yellow]{result.note}[/yellow]")
        rprint(f"[green]+{result.added}[/green] [red]-{result.removed}[/red]")
        return
    console.print(render_diff_result(result))


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text to find in agent conversations")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results")] = 20,
    show: Annotated[
        int, typer.Option("--show", "-s", help="Print the whole conversation of result N")
    ] = 0,
    project: ProjectOption = None,
):
    """Search every agent's conversation history."""
    from ..tui_render import render_conversation, render_search_match

    controller = make_controller(project)
    try:
        with console.status("Indexing conversation history..."):
            controller.tick()
            controller.build_history_index()
        matches = controller.search(query, limit)
    finally:
        controller.shutdown()
    if not matches:
        rprint(f"[dim]No matches for '{query}'[/dim]")
        return
    names = {r.id: r.name for r in controller.get_snapshot().instances}
    if show:
        if not 1 <= show <= len(matches):
            fail(f"--show must be between 1 and {len(matches)}")
        match = matches[show - 1]
        console.print(render_search_match(match, names))
        console.rule(style="dim")
        console.print(render_conversation(controller.load_conversation(match.entry), query))
        return
    for number, match in enumerate(matches, 1):
        console.print(f"[dim]{number:>3}[/dim] ", render_search_match(match, names))


@app.command()
def delete(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    keep_running: Annotated[
        bool, typer.Option("--keep-running", help="Forget the session but leave tmux running")
    ] = False,
    project: ProjectOption = None,
):
    """Delete a session (stops it first)."""
    run_on_session(name, project, lambda c, r: c.delete_instance(r.id, kill=not keep_running))
    rprint(f"[green]✓[/green] Session '[bold]{name}[/bold]' deleted")


@app.command()
def filters(
    agent: Annotated[Optional[str], typer.Argument(help="Only this agent kind")] = None,
):
    """Print the effective chrome filters per agent (defaults + config.yaml)."""
    import yaml

    from ..agent_profiles import all_profiles
    from ._shared import apply_config

    apply_config()
    data = {
        p.kind: {"filters": p.filters.to_dict(), "waiting_markers": p.waiting_markers}
        for p in all_profiles()
        if agent is None or p.kind == agent
    }
    if not data:
        fail(f"Unknown agent kind '{agent}'")
    console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), markup=False)


@app.command()
def rename(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    new_name: Annotated[str, typer.Argument(help="New session name")],
    project: ProjectOption = None,
):
    """Rename a session."""
    run_on_session(name, project, lambda c, r: c.rename_instance(r.id, new_name))
    rprint(f"[green]✓[/green] Renamed '{name}' to '[bold]{new_name}[/bold]'")


@app.command()
def color(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    fg: Annotated[str, typer.Argument(help="Name color (e.g. cyan, #ff8800); empty to reset")] = "",
    bg: Annotated[str, typer.Option("--bg", help="Background color")] = "",
    full_row: Annotated[
        bool, typer.Option("--full-row", help="Paint the whole row, not just the name")
    ] = False,
    project: ProjectOption = None,
):
    """Set the colors a session is listed with."""
    run_on_session(name, project, lambda c, r: c.set_colors(r.id, fg, bg, full_row))
    rprint(f"[green]✓[/green] Colors updated for '[bold]{name}[/bold]'")


@app.command()
def conversations(
    name: Annotated[str, typer.Argument(help="Session name or id")],
    project: ProjectOption = None,
):
    """List earlier conversations the session's agent can resume."""
    _, candidates = run_on_session(
        name, project, lambda c, r: c.list_resume_candidates(r.id), lock=False,
    )
    if not candidates:
        rprint("[dim]No resumable conversations[/dim]")
        return
    table = Table(box=None, pad_edge=False)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Msgs", justify="right")
    table.add_column("Updated", style="dim")
    table.add_column("First prompt")
    for candidate in candidates:
        table.add_row(
            candidate.session_id,
            str(candidate.message_count),
            candidate.updated_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            candidate.first_prompt,
        )
    console.print(table)
    rprint(f"[dim]Resume with: asmgr start {name} --resume <id>[/dim]")


@app.command()
def doctor():
    """Check the external tools asmgr drives."""
    from ..dependency_check import check_git, check_tmux

    rows = [("tmux", check_tmux(), True), ("git", check_git(), False)]
    missing_required = False
    for tool, (available, path, version), required in rows:
        if available:
            rprint(f"[green]✓[/green] {tool}: {version or 'unknown version'} [dim]({path})[/dim]")
        elif required:
            missing_required = True
            rprint(f"[red]✗[/red] {tool}: not found (required)")
        else:
            rprint(f"[yellow]![/yellow] {tool}: not found (diffs unavailable)")
    if missing_required:
        raise typer.Exit(code=2)
