"""
Global conversation search modal.

Queries run on every keystroke against the in-memory HistoryIndex; the
index itself is built by the app in a background worker and the modal is
told when it is ready. The highlighted result's whole conversation is
loaded in a thread worker and shown beside the result list.
"""

from typing import Callable, Dict, List, Optional

from rich.text import Text
from textual import work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Input, Label, OptionList, Static

from ..history_index import SearchMatch
from ..history_parsers import ConversationEntry, ConversationMessage
from ..tui_render import render_conversation, render_search_match

MAX_RESULTS = 200

SearchFn = Callable[[str, Optional[int]], List[SearchMatch]]
LoadFn = Callable[[ConversationEntry], List[ConversationMessage]]


class SearchModal(ModalScreen[Optional[SearchMatch]]):
    """Type to search; Enter jumps to the session the match belongs to."""

    BINDINGS = [("escape", "cancel", "Cancel")]

    DEFAULT_CSS = """
    SearchModal {
        align: center middle;
    }
    SearchModal > Vertical {
        width: 95%;
        height: 85%;
        border: round $accent;
        padding: 0 1;
        background: $surface;
    }
    SearchModal Horizontal {
        height: 1fr;
    }
    SearchModal OptionList {
        width: 1fr;
        height: 1fr;
    }
    SearchModal #conversation-scroll {
        width: 1fr;
        height: 1fr;
        border-left: solid $primary-darken-2;
        padding: 0 1;
    }
    SearchModal #search-status {
        color: $text-muted;
    }
    """

    def __init__(self, search: SearchFn, names: Dict[str, str], ready: bool = False,
                 load: Optional[LoadFn] = None) -> None:
        super().__init__()
        self._search = search
        self._names = names
        self._ready = ready
        self._load = load
        self._query = ""
        self.matches: List[SearchMatch] = []
        self.conversation_text = Text()

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label("Search conversations", id="search-title")
            yield Input(placeholder="text to find…", id="search-input")
            with Horizontal():
                yield OptionList(id="search-results")
                with VerticalScroll(id="conversation-scroll"):
                    yield Static("", id="search-conversation")
            yield Static("Indexing…" if not self._ready else "", id="search-status")

    def on_mount(self) -> None:
        self.query_one("#search-input", Input).focus()
        if self._ready:
            self.run_query("")

    def index_ready(self, count: int) -> None:
        self._ready = True
        self.query_one("#search-status", Static).update(f"{count} entries indexed")
        self.run_query(self.query_one("#search-input", Input).value)

    def run_query(self, query: str) -> None:
        if not self._ready:
            return
        self._query = query
        self.matches = self._search(query, MAX_RESULTS)
        results = self.query_one("#search-results", OptionList)
        results.clear_options()
        results.add_options([render_search_match(m, self._names) for m in self.matches])
        if self.matches:
            results.highlighted = 0
        else:
            self.show_conversation([])

    def on_input_changed(self, event: Input.Changed) -> None:
        self.run_query(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        results = self.query_one("#search-results", OptionList)
        if self.matches:
            self.dismiss(self.matches[results.highlighted or 0])

    def on_option_list_option_highlighted(self, event: OptionList.OptionHighlighted) -> None:
        if self._load is None or not 0 <= event.option_index < len(self.matches):
            return
        self._load_conversation(self.matches[event.option_index].entry, self._query)

    @work(thread=True, exclusive=True, group="conversation")
    def _load_conversation(self, entry: ConversationEntry, query: str) -> None:
        messages = self._load(entry)
        self.app.call_from_thread(self.show_conversation, messages, query)

    def show_conversation(self, messages: List[ConversationMessage], query: str = "") -> None:
        self.conversation_text = render_conversation(messages, query)
        self.query_one("#search-conversation", Static).update(self.conversation_text)
        self.query_one("#conversation-scroll", VerticalScroll).scroll_home(animate=False)

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        self.dismiss(self.matches[event.option_index])

    def on_key(self, event) -> None:
        # Arrow keys move through results while typing
        if event.key in ("down", "up") and self.matches:
            results = self.query_one("#search-results", OptionList)
            current = results.highlighted or 0
            step = 1 if event.key == "down" else -1
            results.highlighted = (current + step) % len(self.matches)
            event.stop()

    def action_cancel(self) -> None:
        self.dismiss(None)
