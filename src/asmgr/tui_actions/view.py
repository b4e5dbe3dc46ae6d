"""
View action methods for TUI.

Handles preview tabs, diff mode, list density and conversation search.
"""

from typing import Optional

from textual import work

from ..controller import PREVIEW_TABS
from ..history_index import SearchMatch
from ..status_constants import DIFF_MODE_FULL, DIFF_MODE_SESSION


class ViewActionsMixin:
    """Mixin providing view/display actions for AsmgrApp."""

    def action_cycle_preview_tab(self) -> None:
        """Cycle preview → diff → notes."""
        current = self.snapshot.preview_tab
        index = PREVIEW_TABS.index(current) if current in PREVIEW_TABS else -1
        self.run_command(self.controller.set_preview_tab, PREVIEW_TABS[(index + 1) % len(PREVIEW_TABS)])

    def action_toggle_diff_mode(self) -> None:
        """Toggle between diff against HEAD and diff since session start."""
        mode = DIFF_MODE_SESSION if self.snapshot.diff_mode == DIFF_MODE_FULL else DIFF_MODE_FULL
        self.run_command(self.controller.set_diff_mode, mode)
        label = "since session start" if mode == DIFF_MODE_SESSION else "against HEAD"
        self.notify(f"Diff {label}", severity="information")

    def action_toggle_compact(self) -> None:
        """Toggle one-line rows (teasers hidden)."""
        self.compact = not self.compact
        self.refresh_list()
        settings = self.controller.get_settings()
        settings.compact_list = self.compact
        self.run_command(self.controller.save_settings, settings)

    def action_open_search(self) -> None:
        """Open conversation search; the index builds in the background."""
        from ..tui_widgets import SearchModal

        names = {inst.id: inst.name for inst in self.snapshot.instances}
        modal = SearchModal(self.controller.search, names,
                            ready=self.controller.history_index.is_loaded,
                            load=self.controller.load_conversation)
        self.push_screen(modal, self._on_search_result)
        self._build_search_index(modal)

    @work(thread=True, exclusive=True, group="search_index")
    def _build_search_index(self, modal) -> None:
        count = self.controller.build_history_index()
        if modal.is_attached:
            self.call_from_thread(modal.index_ready, count)

    def _on_search_result(self, match: Optional[SearchMatch]) -> None:
        if match is None:
            return
        if match.instance_id is None:
            self.notify("Conversation does not belong to a session", severity="information")
            return
        self.select_session(match.instance_id)
        if match.tab_index:
            self.notify(f"Found in tab {match.tab_index}", severity="information")
