"""
Textual TUI for asmgr.

The app never touches tmux, git or the store directly: every read comes from
the Controller's published snapshot and every command is queued on the
Controller's worker and awaited from a Textual thread worker.
"""

import logging
import os
import subprocess
import sys
import threading
from concurrent.futures import Future
from typing import Callable, Optional

from textual import work
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Header, Static

from . import __version__
from .controller import Controller, ControllerSnapshot
from .exceptions import AsmgrError, SoftError
from .instance import AttachInstruction
from .logging_config import get_logger
from .tui_actions import (
    NavigationActionsMixin,
    SessionActionsMixin,
    ViewActionsMixin,
)
from .tui_widgets import PreviewPane, SessionList

logger = get_logger("tui")


class AsmgrApp(
    NavigationActionsMixin,
    SessionActionsMixin,
    ViewActionsMixin,
    App,
):
    """asmgr session manager"""

    AUTO_FOCUS = None

    CSS = """
    #main {
        height: 1fr;
    }
    #session-list {
        width: 45%;
        min-width: 40;
        border-right: solid $primary-darken-2;
        padding: 0 1;
        overflow-y: auto;
    }
    #preview-pane {
        width: 1fr;
        padding: 0 1;
    }
    #status-bar {
        height: 1;
        padding: 0 1;
        background: $boost;
    }
    #status-bar.error {
        background: $error 30%;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        # Navigation
        ("j", "next_session", "Next"),
        ("k", "prev_session", "Prev"),
        ("down", "next_session", "Next"),
        ("up", "prev_session", "Prev"),
        ("g", "toggle_group", "Group"),
        ("P", "next_project", "Project"),
        # Lifecycle
        ("enter", "attach", "Attach"),
        ("n", "new_session", "New"),
        ("s", "start_session", "Start"),
        ("x", "stop_session", "Stop"),
        ("X", "delete_session", "Delete"),
        # Input
        ("i", "send_prompt", "Send"),
        ("a", "accept_suggestion", "Accept"),
        ("y", "send_key('Enter')", "Enter"),
        ("escape", "send_key('Escape')", "Esc"),
        ("1", "send_key('1')", "1"),
        ("2", "send_key('2')", "2"),
        ("3", "send_key('3')", "3"),
        ("4", "send_key('4')", "4"),
        ("5", "send_key('5')", "5"),
        # Tabs
        ("t", "add_terminal_tab", "Terminal"),
        ("T", "add_agent_tab", "Agent tab"),
        ("W", "close_tab", "Close tab"),
        ("R", "restart_dead_tabs", "Restart tabs"),
        ("f", "fork", "Fork"),
        ("F", "fork_tab", "Fork tab"),
        # Metadata
        ("r", "rename_session", "Rename"),
        ("e", "edit_notes", "Notes"),
        ("asterisk", "toggle_favorite", "Favorite"),
        # View
        ("v", "cycle_preview_tab", "Tab"),
        ("m", "toggle_diff_mode", "Diff mode"),
        ("slash", "open_search", "Search"),
        ("c", "toggle_compact", "Compact"),
    ]

    def __init__(self, controller: Controller, start_controller: bool = True):
        super().__init__()
        self.controller = controller
        self.start_controller = start_controller
        self.snapshot = controller.get_snapshot()
        self.compact = False
        # action -> (session id, first press time)
        self._pending_confirmations: dict = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._ui_thread: Optional[int] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Horizontal(id="main"):
            yield SessionList(id="session-list")
            yield PreviewPane(id="preview-pane")
        yield Static("", id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"asmgr v{__version__}"
        self._ui_thread = threading.get_ident()
        self.compact = self.controller.get_settings().compact_list
        self._unsubscribe = self.controller.subscribe(self._on_snapshot)
        self._apply_snapshot(self.controller.get_snapshot())
        if self.start_controller:
            self.controller.start()

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.start_controller:
            self.controller.shutdown()

    # ── Snapshot plumbing ─────────────────────────────────────────────

    def _on_snapshot(self, snapshot: ControllerSnapshot) -> None:
        """Subscriber callback; runs on the Controller worker."""
        if threading.get_ident() == self._ui_thread:
            self._apply_snapshot(snapshot)
        else:
            self.call_from_thread(self._apply_snapshot, snapshot)

    def _apply_snapshot(self, snapshot: ControllerSnapshot) -> None:
        self.snapshot = snapshot
        self.refresh_list()
        record = snapshot.find(snapshot.selected_id) if snapshot.selected_id else None
        self.query_one("#preview-pane", PreviewPane).show(
            record, snapshot.preview_tab, snapshot.preview, snapshot.diff)
        self._update_status_bar()
        if snapshot.selected_id is None and snapshot.instances:
            self.select_session(snapshot.instances[0].id)

    def refresh_list(self) -> None:
        self.query_one("#session-list", SessionList).update_snapshot(self.snapshot, self.compact)

    def _update_status_bar(self) -> None:
        bar = self.query_one("#status-bar", Static)
        snapshot = self.snapshot
        if snapshot.last_error:
            bar.add_class("error")
            bar.update(f"Error: {snapshot.last_error}")
            return
        bar.remove_class("error")
        try:
            name = self.controller.store.get_project(snapshot.project_id).name
        except AsmgrError:
            name = snapshot.project_id
        running = sum(1 for i in snapshot.instances if i.is_running)
        bar.update(f"{name} | {running}/{len(snapshot.instances)} running | "
                   f"diff: {snapshot.diff_mode}")

    def on_resize(self) -> None:
        record = self.snapshot.find(self.snapshot.selected_id) if self.snapshot.selected_id else None
        if record and record.is_running:
            pane = self.query_one("#preview-pane", PreviewPane)
            width, height = pane.size
            if width > 0 and height > 0:
                self.run_command(self.controller.resize_pane, record.id, width, height)

    # ── Commands ──────────────────────────────────────────────────────

    def select_session(self, instance_id: str) -> None:
        self.run_command(self.controller.select, instance_id)

    def run_command(self, fn: Callable, *args, success: str = "",
                    on_result: Optional[Callable] = None, **kwargs) -> None:
        """Queue fn on the Controller; report the outcome as a notification.

        Submission happens here, on the UI thread, so commands run in key
        press order.
        """
        future = self.controller.submit(fn, *args, **kwargs)
        self._await_command(future, success, on_result)

    @work(thread=True, group="commands")
    def _await_command(self, future: Future, success: str,
                       on_result: Optional[Callable]) -> None:
        try:
            result = future.result()
        except SoftError as e:
            self.call_from_thread(self.notify, str(e), severity="warning")
            return
        except AsmgrError as e:
            self.call_from_thread(self.notify, str(e), severity="error")
            return
        except ValueError as e:
            self.call_from_thread(self.notify, str(e), severity="error")
            return
        if success:
            self.call_from_thread(self.notify, success)
        if on_result is not None:
            self.call_from_thread(on_result, result)

    def attach_foreground(self, instruction: AttachInstruction) -> None:
        """Suspend the TUI and run tmux attach until the user detaches."""
        logger.info("Attaching to %s:%d", instruction.session_name, instruction.window_index)
        try:
            with self.suspend():
                subprocess.call(instruction.argv)
        except OSError as e:
            self.notify(f"Attach failed: {e}", severity="error")


def run_tui(project: Optional[str] = None) -> None:
    """Run the TUI"""
    from .cli._shared import apply_config
    from .config import get_diff_mode, get_log_level, get_tick_interval
    from .dependency_check import require_tmux
    from .logging_config import setup_tui_logging
    from .store import Store
    from .tmux_adapter import TmuxAdapter

    if not sys.stdout.isatty():
        print("Error: Must run in a TTY terminal", file=sys.stderr)
        sys.exit(1)

    os.environ.setdefault("TERM", "xterm-256color")

    level_name = get_log_level()
    level = logging.getLevelName(level_name) if level_name else None
    setup_tui_logging(level=level if isinstance(level, int) else None)
    apply_config()
    require_tmux()

    controller = Controller(Store(), TmuxAdapter(), tick_interval=get_tick_interval())
    controller.open_project(project)
    controller.set_diff_mode(get_diff_mode())
    logger.info("TUI starting on project %s", controller.project_id)

    AsmgrApp(controller).run()
