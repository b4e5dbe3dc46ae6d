"""
Preview pane widget for TUI.

Shows the selected session's Preview, Diff or Notes tab.
Uses ScrollableContainer for native mouse wheel / trackpad scrolling.
"""

from typing import List, Optional

from rich.text import Text
from textual.containers import ScrollableContainer
from textual.widgets import Static

from ..diff_engine import DiffResult
from ..models import InstanceRecord
from ..tui_render import render_diff_result, render_windows

TAB_LABELS = (("preview", "Preview"), ("diff", "Diff"), ("notes", "Notes"))


class PreviewPane(ScrollableContainer):
    """Selected session's output, diff or notes.

    Wraps a child Static whose height grows to fit all content lines.
    Auto-scrolls to bottom on the Preview tab unless the user has scrolled
    up to review.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.record: Optional[InstanceRecord] = None
        self.tab: str = "preview"
        self.content_lines: List[str] = []
        self.diff: Optional[DiffResult] = None
        self._auto_scroll = True

    def compose(self):
        yield Static(id="preview-content")

    def _header(self) -> Text:
        header = Text()
        pane_width = self.size.width if self.size.width > 0 else 80
        title = f"─── {self.record.name} " if self.record else "─── Preview "
        header.append(title, style="bold cyan")
        for key, label in TAB_LABELS:
            style = "reverse bold" if key == self.tab else "dim"
            header.append(f" {label} ", style=style)
        used = len(title) + sum(len(label) + 2 for _, label in TAB_LABELS)
        header.append(" " + "─" * max(0, pane_width - used - 1), style="dim")
        header.append("\n")
        if self.record and len(self.record.windows) > 1:
            for i, tab in enumerate(render_windows(self.record)):
                if i:
                    header.append("  ")
                header.append_text(tab)
            header.append("\n")
        return header

    def _build_content(self) -> Text:
        content = self._header()
        if self.record is None:
            content.append("(no session selected)", style="dim italic")
        elif self.tab == "diff":
            content.append_text(render_diff_result(self.diff))
        elif self.tab == "notes":
            if self.record.notes:
                content.append(self.record.notes)
            else:
                content.append("(no notes - press e to edit)", style="dim italic")
        elif not self.record.is_running:
            content.append("(stopped - press s to start)", style="dim italic")
        elif not self.content_lines:
            content.append("(no output)", style="dim italic")
        else:
            for line in self.content_lines:
                content.append(Text.from_ansi(line))
                content.append("\n")
        return content

    def show(self, record: Optional[InstanceRecord], tab: str, preview: str,
             diff: Optional[DiffResult]) -> None:
        if record is None or self.record is None or record.id != self.record.id:
            self._auto_scroll = True
        self.record = record
        self.tab = tab
        self.content_lines = preview.splitlines() if preview else []
        self.diff = diff

        saved_scroll = self.scroll_offset.y
        self.query_one("#preview-content", Static).update(self._build_content())
        if self._auto_scroll and tab == "preview":
            self.call_after_refresh(lambda: self.scroll_end(animate=False))
        else:
            self.call_after_refresh(lambda: self.scroll_to(y=saved_scroll, animate=False))

    def on_mouse_scroll_up(self, event) -> None:
        """User scrolled up with the mouse wheel; stop auto-scrolling."""
        self._auto_scroll = False

    def on_mouse_scroll_down(self, event) -> None:
        self.call_after_refresh(self._check_at_bottom)

    def _check_at_bottom(self) -> None:
        """Re-enable auto-scroll if user has scrolled back to bottom."""
        if self.max_scroll_y <= 0 or self.scroll_offset.y >= self.max_scroll_y - 1:
            self._auto_scroll = True
