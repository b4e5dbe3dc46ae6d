"""
Session list widget: grouped rows with activity icon and teaser.
"""

from rich.text import Text
from textual.widgets import Static

from ..activity import EMPTY_TEASER
from ..controller import ControllerSnapshot
from ..tui_logic import ROW_GROUP, build_rows, group_counts
from ..tui_render import render_group_header, render_session_row


class SessionList(Static):
    """Renders the snapshot's sessions; selection is owned by the Controller."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.snapshot = ControllerSnapshot()
        self.compact = False

    def render(self) -> Text:
        rows = build_rows(self.snapshot)
        if not rows:
            return Text("No sessions - press n to create one", style="dim italic")
        text = Text()
        for i, row in enumerate(rows):
            if i:
                text.append("\n")
            if row.kind == ROW_GROUP:
                running, total = group_counts(self.snapshot, row.group)
                text.append_text(render_group_header(row.group, running, total))
                continue
            record = row.record
            text.append_text(render_session_row(
                record,
                self.snapshot.activities.get(record.id, ""),
                self.snapshot.teasers.get(record.id, EMPTY_TEASER),
                selected=record.id == self.snapshot.selected_id,
                compact=self.compact,
                indent=row.indent,
            ))
        return text

    def update_snapshot(self, snapshot: ControllerSnapshot, compact: bool) -> None:
        self.snapshot = snapshot
        self.compact = compact
        self.refresh()
