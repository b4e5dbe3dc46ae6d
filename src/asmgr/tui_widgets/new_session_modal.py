"""
New-session modal for TUI.

Collects name, directory, agent and launch options; dismisses with a dict
of Controller.create_instance() keyword arguments, or None when cancelled.
"""

import os
from typing import Optional

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Checkbox, Input, Label, Select

from ..agent_profiles import all_profiles


class NewSessionModal(ModalScreen[Optional[dict]]):
    """Create a session. Enter in any field submits, Esc cancels."""

    BINDINGS = [("escape", "cancel", "Cancel")]

    DEFAULT_CSS = """
    NewSessionModal {
        align: center middle;
    }
    NewSessionModal > Vertical {
        width: 80;
        height: auto;
        border: round $accent;
        padding: 1 2;
        background: $surface;
    }
    NewSessionModal #new-error {
        color: $error;
    }
    """

    def __init__(self, default_agent: str = "claude", path: str = "") -> None:
        super().__init__()
        self.default_agent = default_agent
        self.default_path = path or os.getcwd()

    def compose(self) -> ComposeResult:
        agents = [(f"{p.icon} {p.display_name}", p.kind) for p in all_profiles()]
        kinds = [kind for _, kind in agents]
        with Vertical():
            yield Label("New session", id="new-title")
            yield Input(placeholder="name", id="new-name")
            yield Input(value=self.default_path, placeholder="directory", id="new-path")
            yield Select(agents, value=self.default_agent if self.default_agent in kinds else kinds[0],
                         allow_blank=False, id="new-agent")
            yield Input(placeholder="command (custom agent only)", id="new-command")
            yield Input(placeholder="resume conversation id (optional)", id="new-resume")
            yield Checkbox("Auto-approve", id="new-auto")
            yield Label("", id="new-error")
            with Horizontal():
                yield Button("Create", variant="primary", id="new-create")
                yield Button("Cancel", id="new-cancel")

    def on_mount(self) -> None:
        self.query_one("#new-name", Input).focus()

    def collect(self) -> Optional[dict]:
        name = self.query_one("#new-name", Input).value.strip()
        if not name:
            self.query_one("#new-error", Label).update("Name is required")
            return None
        return {
            "name": name,
            "path": self.query_one("#new-path", Input).value.strip() or self.default_path,
            "agent": self.query_one("#new-agent", Select).value,
            "custom_command": self.query_one("#new-command", Input).value.strip(),
            "resume_id": self.query_one("#new-resume", Input).value.strip(),
            "auto_approve": self.query_one("#new-auto", Checkbox).value,
        }

    def _submit(self) -> None:
        result = self.collect()
        if result is not None:
            self.dismiss(result)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self._submit()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "new-create":
            self._submit()
        else:
            self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)
