"""
Navigation action methods for TUI.

Handles moving between sessions, groups and projects.
"""

from ..tui_logic import group_of, next_project_id, step_selection, visible_session_ids


class NavigationActionsMixin:
    """Mixin providing navigation actions for AsmgrApp."""

    def _move_selection(self, delta: int) -> None:
        ids = visible_session_ids(self.snapshot)
        target = step_selection(ids, self.snapshot.selected_id, delta)
        if target is None or target == self.snapshot.selected_id:
            return
        self.select_session(target)

    def action_next_session(self) -> None:
        """Select the next visible session."""
        self._move_selection(1)

    def action_prev_session(self) -> None:
        """Select the previous visible session."""
        self._move_selection(-1)

    def action_toggle_group(self) -> None:
        """Collapse or expand the selected session's group."""
        group = group_of(self.snapshot, self.snapshot.selected_id)
        if group is None:
            self.notify("Session is not in a group", severity="warning")
            return
        self.run_command(self.controller.toggle_group_collapsed, group.id)

    def action_next_project(self) -> None:
        """Switch to the next project."""
        projects = self.controller.store.list_projects()
        target = next_project_id([p.id for p in projects], self.snapshot.project_id)
        if target == self.snapshot.project_id:
            self.notify("Only one project", severity="information")
            return
        name = next(p.name for p in projects if p.id == target)
        self.run_command(self.controller.switch_project, target, success=f"Project: {name}")
