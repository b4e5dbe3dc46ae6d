"""
Pure list logic for the TUI: row layout, visibility, navigation.

No Textual imports, so everything here is unit-testable on plain
ControllerSnapshot data.
"""

from dataclasses import dataclass
from typing import List, Optional

from .controller import ControllerSnapshot
from .models import Group, InstanceRecord

ROW_GROUP = "group"
ROW_SESSION = "session"


@dataclass
class ListRow:
    kind: str
    group: Optional[Group] = None
    record: Optional[InstanceRecord] = None
    indent: int = 0


def build_rows(snapshot: ControllerSnapshot) -> List[ListRow]:
    """Ungrouped sessions first, then each group with its visible members."""
    grouped = {i for g in snapshot.groups for i in g.member_ids}
    by_id = {r.id: r for r in snapshot.instances}
    rows = [ListRow(ROW_SESSION, record=r) for r in snapshot.instances if r.id not in grouped]
    for group in snapshot.groups:
        rows.append(ListRow(ROW_GROUP, group=group))
        if group.collapsed:
            continue
        for member_id in group.member_ids:
            record = by_id.get(member_id)
            if record is not None:
                rows.append(ListRow(ROW_SESSION, record=record, indent=1))
    return rows


def visible_session_ids(snapshot: ControllerSnapshot) -> List[str]:
    return [row.record.id for row in build_rows(snapshot) if row.kind == ROW_SESSION]


def step_selection(ids: List[str], current: Optional[str], delta: int) -> Optional[str]:
    """Move the selection by delta, wrapping around."""
    if not ids:
        return None
    if current not in ids:
        return ids[0] if delta >= 0 else ids[-1]
    return ids[(ids.index(current) + delta) % len(ids)]


def group_of(snapshot: ControllerSnapshot, instance_id: Optional[str]) -> Optional[Group]:
    for group in snapshot.groups:
        if instance_id in group.member_ids:
            return group
    return None


def group_counts(snapshot: ControllerSnapshot, group: Group):
    """(running, total) members of a group."""
    by_id = {r.id: r for r in snapshot.instances}
    members = [by_id[i] for i in group.member_ids if i in by_id]
    return sum(1 for r in members if r.is_running), len(members)


def next_project_id(project_ids: List[str], current: str) -> str:
    if not project_ids:
        return current
    if current not in project_ids:
        return project_ids[0]
    return project_ids[(project_ids.index(current) + 1) % len(project_ids)]
