"""
Shared CLI state: Typer apps, console, and controller wiring.
"""

from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.console import Console

from ..exceptions import AsmgrError, MultiplexerUnavailable, SoftError

# Main app
app = typer.Typer(
    name="asmgr",
    help="Manage long-running AI coding-agent sessions in tmux",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode="rich",
)

# Project subcommand group
project_app = typer.Typer(
    name="project",
    help="Manage projects (separate session lists)",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(project_app, name="project")

# Config subcommand group
config_app = typer.Typer(
    name="config",
    help="Manage configuration",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(config_app, name="config")

# Tab subcommand group
tab_app = typer.Typer(
    name="tab",
    help="Manage the tabs (tmux windows) of a session",
    no_args_is_help=True,
)
app.add_typer(tab_app, name="tab")

# Group subcommand group
group_app = typer.Typer(
    name="group",
    help="Organize sessions into groups",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(group_app, name="group")

# Console for rich output
console = Console()

ProjectOption = Annotated[
    Optional[str],
    typer.Option("--project", "-P", help="Project id (default: the active project)"),
]


def fail(message: str, code: int = 1) -> None:
    rprint(f"[red]Error: {message}[/red]")
    raise typer.Exit(code=code)


def apply_config() -> None:
    """Fold config.yaml into the agent registry and logging level."""
    from ..agent_profiles import apply_user_config
    from ..config import get_extra_waiting_markers, get_filter_overrides

    apply_user_config(get_filter_overrides(), get_extra_waiting_markers())


def make_controller(project: Optional[str] = None, lock: bool = False):
    """Build a Controller for a one-shot command (no tick thread).

    Exit 2 when tmux is missing, 1 for any other startup failure.
    """
    from ..controller import Controller
    from ..dependency_check import require_tmux
    from ..store import Store
    from ..tmux_adapter import TmuxAdapter

    try:
        require_tmux()
        apply_config()
        controller = Controller(Store(), TmuxAdapter())
        controller.open_project(project, lock=lock)
    except MultiplexerUnavailable as e:
        fail(str(e), code=2)
    except AsmgrError as e:
        fail(str(e))
    return controller


def resolve(controller, name: str):
    """Find an instance by name or id, or exit 1."""
    record = controller.find_by_name(name)
    if record is None:
        fail(f"No session named '{name}'")
    return record


def run_on_session(name: str, project: Optional[str], action, lock: bool = True):
    """Resolve a session, run action(controller, record), and release.

    Soft errors (not running, already running) print in yellow; every
    other AsmgrError exits 1.
    """
    controller = make_controller(project, lock=lock)
    try:
        record = resolve(controller, name)
        return record, action(controller, record)
    except SoftError as e:
        rprint(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)
    except AsmgrError as e:
        fail(str(e))
    finally:
        controller.shutdown()


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context):
    """Launch the TUI when no command is given."""
    if ctx.invoked_subcommand is not None:
        from ..logging_config import setup_cli_logging

        setup_cli_logging()
        return

    from ..tui import run_tui

    try:
        run_tui()
    except MultiplexerUnavailable as e:
        fail(str(e), code=2)
    except AsmgrError as e:
        fail(str(e))
