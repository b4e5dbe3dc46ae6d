"""
Session action methods for TUI.

Handles session lifecycle, tabs, input and metadata edits. Every command
goes through AsmgrApp.run_command(), which queues it on the Controller and
reports errors as notifications.
"""

import time
from typing import Optional

from ..models import InstanceRecord
from ..status_constants import AGENT_TERMINAL


class SessionActionsMixin:
    """Mixin providing session actions for AsmgrApp."""

    def _selected(self, require_running: bool = False) -> Optional[InstanceRecord]:
        record = self.snapshot.find(self.snapshot.selected_id) if self.snapshot.selected_id else None
        if record is None:
            self.notify("No session selected", severity="warning")
            return None
        if require_running and not record.is_running:
            self.notify(f"Session '{record.name}' is not running", severity="warning")
            return None
        return record

    def _confirm_double_press(self, action_key: str, message: str, callback,
                              session_id: Optional[str] = None, timeout: float = 3.0) -> None:
        """First press warns; a second press within timeout runs callback."""
        now = time.time()
        pending = self._pending_confirmations.pop(action_key, None)
        if pending is not None:
            pending_id, pending_time = pending
            if pending_id == session_id and (now - pending_time) < timeout:
                callback()
                return
        self._pending_confirmations[action_key] = (session_id, now)
        self.notify(message, severity="warning", timeout=int(timeout))

    # ── Lifecycle ─────────────────────────────────────────────────────

    def action_new_session(self) -> None:
        """Open the new-session dialog."""
        from ..config import get_default_agent
        from ..tui_widgets import NewSessionModal

        record = self.snapshot.find(self.snapshot.selected_id) if self.snapshot.selected_id else None
        modal = NewSessionModal(get_default_agent(), record.path if record else "")
        self.push_screen(modal, self._on_new_session)

    def _on_new_session(self, data: Optional[dict]) -> None:
        if not data:
            return
        self.run_command(
            self.controller.create_instance,
            data.pop("name"), data.pop("path"), data.pop("agent"),
            start=True,
            on_result=lambda record: self.select_session(record.id),
            success="Session created",
            **data,
        )

    def action_start_session(self) -> None:
        record = self._selected()
        if record:
            self.run_command(self.controller.start_instance, record.id,
                             success=f"Started '{record.name}'")

    def action_stop_session(self) -> None:
        record = self._selected(require_running=True)
        if record:
            self._confirm_double_press(
                "stop", f"Press x again to stop '{record.name}'",
                lambda: self.run_command(self.controller.stop_instance, record.id,
                                         success=f"Stopped '{record.name}'"),
                record.id,
            )

    def action_delete_session(self) -> None:
        record = self._selected()
        if record:
            self._confirm_double_press(
                "delete", f"Press X again to delete '{record.name}'",
                lambda: self.run_command(self.controller.delete_instance, record.id,
                                         success=f"Deleted '{record.name}'"),
                record.id,
            )

    def action_attach(self) -> None:
        """Hand the terminal to the session until the user detaches (Ctrl-q)."""
        record = self._selected(require_running=True)
        if record:
            self.run_command(self.controller.attach, record.id, on_result=self.attach_foreground)

    # ── Tabs ──────────────────────────────────────────────────────────

    def action_add_terminal_tab(self) -> None:
        record = self._selected(require_running=True)
        if record:
            self.run_command(self.controller.add_window, record.id, AGENT_TERMINAL, "shell",
                             success="Terminal tab added")

    def action_add_agent_tab(self) -> None:
        record = self._selected(require_running=True)
        if record:
            self.run_command(self.controller.add_window, record.id, record.agent, "",
                             custom_command=record.custom_command,
                             auto_approve=record.auto_approve,
                             success=f"{record.agent} tab added")

    def action_close_tab(self) -> None:
        """Close the highest-numbered tab (the primary window never closes)."""
        record = self._selected()
        if not record:
            return
        tabs = [w for w in record.windows if w.index != 0]
        if not tabs:
            self.notify("No tabs to close", severity="information")
            return
        index = max(w.index for w in tabs)
        self._confirm_double_press(
            "close_tab", f"Press W again to close tab {index}",
            lambda: self.run_command(self.controller.close_window, record.id, index,
                                     success=f"Closed tab {index}"),
            record.id,
        )

    def action_restart_dead_tabs(self) -> None:
        record = self._selected(require_running=True)
        if not record:
            return
        dead = [w.index for w in record.windows if w.dead]
        if not dead:
            self.notify("No exited tabs", severity="information")
            return
        for index in dead:
            self.run_command(self.controller.restart_window, record.id, index,
                             success=f"Restarted tab {index}")

    # ── Input ─────────────────────────────────────────────────────────

    def action_send_prompt(self) -> None:
        from ..tui_widgets import PromptModal

        record = self._selected(require_running=True)
        if not record:
            return

        def send(text: Optional[str]) -> None:
            if text:
                self.run_command(self.controller.send_prompt, record.id, text)

        self.push_screen(PromptModal(f"Send to {record.name}", placeholder="prompt"), send)

    def action_send_key(self, key: str) -> None:
        """Send one key (Enter, Escape, menu digits) to the primary window."""
        record = self._selected(require_running=True)
        if record:
            self.run_command(self.controller.send_key, record.id, key)

    def action_accept_suggestion(self) -> None:
        record = self._selected(require_running=True)
        if not record:
            return

        def report(suggestion: str) -> None:
            if suggestion:
                self.notify(f"Sent: {suggestion}")
            else:
                self.notify("No suggestion on screen", severity="information")

        self.run_command(self.controller.accept_suggestion, record.id, on_result=report)

    # ── Fork & metadata ───────────────────────────────────────────────

    def _fork(self, as_tab: bool) -> None:
        from ..tui_widgets import PromptModal

        record = self._selected(require_running=as_tab)
        if not record:
            return

        def fork(name: Optional[str]) -> None:
            if name:
                self.run_command(self.controller.fork, record.id, name, as_tab,
                                 success=f"Forked '{record.name}'")

        label = "Fork as tab" if as_tab else "Fork as new session"
        self.push_screen(PromptModal(label, value=f"{record.name}-fork"), fork)

    def action_fork(self) -> None:
        self._fork(as_tab=False)

    def action_fork_tab(self) -> None:
        self._fork(as_tab=True)

    def action_rename_session(self) -> None:
        from ..tui_widgets import PromptModal

        record = self._selected()
        if not record:
            return

        def rename(name: Optional[str]) -> None:
            if name and name != record.name:
                self.run_command(self.controller.rename_instance, record.id, name)

        self.push_screen(PromptModal("Rename session", value=record.name), rename)

    def action_edit_notes(self) -> None:
        from ..tui_widgets import PromptModal

        record = self._selected()
        if not record:
            return

        def save(notes: Optional[str]) -> None:
            if notes is not None:
                self.run_command(self.controller.set_notes, record.id, notes)

        self.push_screen(PromptModal("Notes", value=record.notes, allow_empty=True), save)

    def action_toggle_favorite(self) -> None:
        record = self._selected()
        if record:
            self.run_command(self.controller.toggle_favorite, record.id)
