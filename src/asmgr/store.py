"""
Persistent, project-partitioned state store.

One JSON file per project (instances, groups, ui settings) plus a projects
manifest and an active-project pointer, all under the config root. Every
write goes to a temp file in the same directory, is fsynced, then renamed
over the target, so readers only ever see a complete file.

Mutations run against a copy of the project state; the copy replaces the
in-memory state only after the write succeeds. A failed write therefore
leaves the in-memory model at the last state that reached disk.
"""

import copy
import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import (
    DuplicateName,
    InvariantViolation,
    NotEmpty,
    NotFound,
    ParseError,
    ProjectLocked,
    StoreIOError,
)
from .logging_config import get_logger
from .models import (
    Group,
    InstanceRecord,
    Project,
    UISettings,
    new_group_id,
    new_project_id,
)
from .settings import DEFAULT_PROJECT_ID, PATHS, Paths

logger = get_logger("store")

DEFAULT_PROJECT_NAME = "Default"


@dataclass
class ProjectState:
    """In-memory contents of one sessions-<project>.json file."""
    instances: List[InstanceRecord] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    settings: UISettings = field(default_factory=UISettings)

    def to_dict(self) -> Dict:
        return {
            "instances": [i.to_dict() for i in self.instances],
            "groups": [g.to_dict() for g in self.groups],
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ProjectState":
        return cls(
            instances=[InstanceRecord.from_dict(i) for i in data.get("instances") or []],
            groups=[Group.from_dict(g) for g in data.get("groups") or []],
            settings=UISettings.from_dict(data.get("settings")),
        )

    def find_instance(self, instance_id: str) -> Optional[InstanceRecord]:
        for inst in self.instances:
            if inst.id == instance_id:
                return inst
        return None

    def find_group(self, group_id: str) -> Optional[Group]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None


def _discard_tmp(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as cleanup_error:
        logger.warning("Could not remove temp file %s: %s", tmp_path, cleanup_error)


def atomic_write_json(path: Path, data) -> None:
    """Write JSON via temp file + fsync + rename. Raises StoreIOError."""
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        _discard_tmp(tmp_path)
        raise StoreIOError(f"Failed to write {path}: {e}") from e


def atomic_write_text(path: Path, text: str) -> None:
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        _discard_tmp(tmp_path)
        raise StoreIOError(f"Failed to write {path}: {e}") from e


def _read_json(path: Path):
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ParseError(path, str(e)) from e
    except OSError as e:
        raise StoreIOError(f"Failed to read {path}: {e}") from e


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class Store:
    """Single writer for all persisted asmgr state.

    Thread-safe: one lock serializes every read-modify-write, so readers see
    either the state before or after any single mutation.
    """

    def __init__(self, root: Optional[Path] = None):
        self.paths = Paths(root) if root is not None else PATHS
        self._lock = threading.RLock()
        self._projects: Optional[List[Project]] = None
        self._states: Dict[str, ProjectState] = {}

    # ── Projects ──────────────────────────────────────────────────────

    def _load_projects(self) -> List[Project]:
        if self._projects is None:
            path = self.paths.projects_file
            if not path.exists():
                self._projects = []
            else:
                data = _read_json(path)
                if isinstance(data, dict):
                    # Manifest wrapped in {"projects": [...]}
                    data = data.get("projects") or []
                if not isinstance(data, list):
                    raise ParseError(path, "expected a list of projects")
                self._projects = [Project.from_dict(p) for p in data if isinstance(p, dict)]
        return self._projects

    def _write_projects(self, projects: List[Project]) -> None:
        atomic_write_json(self.paths.projects_file, [p.to_dict() for p in projects])
        self._projects = projects

    def default_project(self) -> Project:
        return Project(id=DEFAULT_PROJECT_ID, name=DEFAULT_PROJECT_NAME, created_at="")

    def list_projects(self) -> List[Project]:
        """All projects, default first."""
        with self._lock:
            return [self.default_project()] + [copy.deepcopy(p) for p in self._load_projects()]

    def get_project(self, project_id: str) -> Project:
        if project_id == DEFAULT_PROJECT_ID:
            return self.default_project()
        with self._lock:
            for project in self._load_projects():
                if project.id == project_id:
                    return copy.deepcopy(project)
        raise NotFound(f"No project with id '{project_id}'")

    def _check_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        wanted = name.strip().lower()
        if wanted == DEFAULT_PROJECT_NAME.lower():
            raise DuplicateName(f"Project name '{name}' is reserved")
        for project in self._load_projects():
            if project.id != exclude_id and project.name.strip().lower() == wanted:
                raise DuplicateName(f"Project '{name}' already exists")

    def create_project(self, name: str, color: str = "") -> Project:
        name = name.strip()
        if not name:
            raise InvariantViolation("Project name cannot be empty")
        with self._lock:
            self._check_unique_name(name)
            project = Project(id=new_project_id(name), name=name, color=color)
            self._write_projects(self._load_projects() + [project])
            logger.info("Created project %s (%s)", name, project.id)
            return copy.deepcopy(project)

    def rename_project(self, project_id: str, name: str) -> None:
        name = name.strip()
        if not name:
            raise InvariantViolation("Project name cannot be empty")
        if project_id == DEFAULT_PROJECT_ID:
            raise InvariantViolation("The default project cannot be renamed")
        with self._lock:
            self._check_unique_name(name, exclude_id=project_id)
            projects = copy.deepcopy(self._load_projects())
            for project in projects:
                if project.id == project_id:
                    project.name = name
                    break
            else:
                raise NotFound(f"No project with id '{project_id}'")
            self._write_projects(projects)

    def delete_project(self, project_id: str, cascade: bool = False) -> List[str]:
        """Delete a project. Returns ids of instances removed by cascade."""
        if project_id == DEFAULT_PROJECT_ID:
            raise InvariantViolation("The default project cannot be deleted")
        with self._lock:
            projects = self._load_projects()
            if not any(p.id == project_id for p in projects):
                raise NotFound(f"No project with id '{project_id}'")
            state = self._state(project_id)
            removed = [i.id for i in state.instances]
            if removed and not cascade:
                raise NotEmpty(
                    f"Project has {len(removed)} session(s); delete with cascade to remove them"
                )
            self._write_projects([p for p in projects if p.id != project_id])
            sessions_file = self.paths.sessions_file(project_id)
            try:
                sessions_file.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StoreIOError(f"Failed to delete {sessions_file}: {e}") from e
            for instance_id in removed:
                self.remove_snapshot(instance_id)
            self._states.pop(project_id, None)
            if self.get_active_project() == project_id:
                self.set_active_project(DEFAULT_PROJECT_ID)
            logger.info("Deleted project %s (%d sessions)", project_id, len(removed))
            return removed

    def set_active_project(self, project_id: str) -> None:
        if project_id != DEFAULT_PROJECT_ID:
            self.get_project(project_id)
        with self._lock:
            atomic_write_text(self.paths.active_project_file, project_id + "\n")

    def get_active_project(self) -> str:
        path = self.paths.active_project_file
        try:
            project_id = path.read_text().strip()
        except FileNotFoundError:
            return DEFAULT_PROJECT_ID
        except OSError as e:
            raise StoreIOError(f"Failed to read {path}: {e}") from e
        with self._lock:
            if project_id and not any(p.id == project_id for p in self._load_projects()):
                return DEFAULT_PROJECT_ID
        return project_id

    def get_project_session_count(self, project_id: str) -> int:
        with self._lock:
            return len(self._state(project_id).instances)

    # ── Project state files ───────────────────────────────────────────

    def _state(self, project_id: str) -> ProjectState:
        state = self._states.get(project_id)
        if state is None:
            path = self.paths.sessions_file(project_id)
            if path.exists():
                data = _read_json(path)
                if not isinstance(data, dict):
                    raise ParseError(path, "expected an object")
                state = ProjectState.from_dict(data)
                for inst in state.instances:
                    inst.project_id = project_id
                for group in state.groups:
                    group.project_id = project_id
            else:
                state = ProjectState()
            self._states[project_id] = state
        return state

    def _mutate(self, project_id: str, fn: Callable[[ProjectState], object]):
        """Apply fn to a copy of the project state and commit it to disk."""
        with self._lock:
            draft = copy.deepcopy(self._state(project_id))
            result = fn(draft)
            atomic_write_json(self.paths.sessions_file(project_id), draft.to_dict())
            self._states[project_id] = draft
            return result

    def load_all(self, project_id: str) -> Tuple[List[InstanceRecord], List[Group]]:
        """Return copies of a project's instances and groups.

        Raises ParseError for a corrupt file; the caller may then call
        start_empty() to continue with an empty project.
        """
        with self._lock:
            state = self._state(project_id)
            return copy.deepcopy(state.instances), copy.deepcopy(state.groups)

    def start_empty(self, project_id: str) -> Optional[Path]:
        """Set a corrupt project file aside and continue with empty state."""
        with self._lock:
            path = self.paths.sessions_file(project_id)
            backup = None
            if path.exists():
                stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
                backup = path.with_name(f"{path.name}.corrupt-{stamp}")
                try:
                    os.replace(path, backup)
                except OSError as e:
                    raise StoreIOError(f"Failed to move aside {path}: {e}") from e
                logger.warning("Moved corrupt project file to %s", backup)
            self._states[project_id] = ProjectState()
            return backup

    def reload(self) -> None:
        """Drop caches so the next read comes from disk."""
        with self._lock:
            self._projects = None
            self._states.clear()

    def get_settings(self, project_id: str) -> UISettings:
        with self._lock:
            return copy.deepcopy(self._state(project_id).settings)

    def save_settings(self, project_id: str, settings: UISettings) -> None:
        def apply(state: ProjectState):
            state.settings = copy.deepcopy(settings)
        self._mutate(project_id, apply)

    # ── Instances ─────────────────────────────────────────────────────

    def add_instance(self, record: InstanceRecord) -> None:
        record.validate()

        def apply(state: ProjectState):
            if state.find_instance(record.id) is not None:
                raise InvariantViolation(f"Instance {record.id} already exists")
            state.instances.append(copy.deepcopy(record))
            if record.group_id:
                group = state.find_group(record.group_id)
                if group is None:
                    raise NotFound(f"No group with id '{record.group_id}'")
                group.member_ids.append(record.id)
        self._mutate(record.project_id, apply)

    def get_instance(self, project_id: str, instance_id: str) -> InstanceRecord:
        with self._lock:
            inst = self._state(project_id).find_instance(instance_id)
            if inst is None:
                raise NotFound(f"No instance with id '{instance_id}'")
            return copy.deepcopy(inst)

    def update_instance(self, record: InstanceRecord) -> None:
        """Replace a stored instance. Group membership is changed only by
        assign_to_group(), so the stored group_id is kept."""
        record.validate()

        def apply(state: ProjectState):
            for pos, inst in enumerate(state.instances):
                if inst.id == record.id:
                    updated = copy.deepcopy(record)
                    updated.group_id = inst.group_id
                    state.instances[pos] = updated
                    return
            raise NotFound(f"No instance with id '{record.id}'")
        self._mutate(record.project_id, apply)

    def remove_instance(self, project_id: str, instance_id: str) -> None:
        def apply(state: ProjectState):
            inst = state.find_instance(instance_id)
            if inst is None:
                raise NotFound(f"No instance with id '{instance_id}'")
            state.instances.remove(inst)
            for group in state.groups:
                if instance_id in group.member_ids:
                    group.member_ids.remove(instance_id)
        self._mutate(project_id, apply)
        self.remove_snapshot(instance_id)

    def reorder_instances(self, project_id: str, ids: List[str]) -> None:
        """Reorder instances; ids must be a permutation of the stored ids."""
        def apply(state: ProjectState):
            by_id = {i.id: i for i in state.instances}
            if sorted(ids) != sorted(by_id):
                raise InvariantViolation("Reorder must list every instance exactly once")
            state.instances = [by_id[i] for i in ids]
            for group in state.groups:
                members = set(group.member_ids)
                group.member_ids = [i for i in ids if i in members]
        self._mutate(project_id, apply)

    # ── Groups ────────────────────────────────────────────────────────

    def create_group(self, project_id: str, name: str) -> Group:
        name = name.strip()
        if not name:
            raise InvariantViolation("Group name cannot be empty")

        def apply(state: ProjectState) -> Group:
            if any(g.name.lower() == name.lower() for g in state.groups):
                raise DuplicateName(f"Group '{name}' already exists")
            group = Group(id=new_group_id(), name=name, project_id=project_id)
            state.groups.append(group)
            return copy.deepcopy(group)
        return self._mutate(project_id, apply)

    def rename_group(self, project_id: str, group_id: str, name: str) -> None:
        name = name.strip()
        if not name:
            raise InvariantViolation("Group name cannot be empty")

        def apply(state: ProjectState):
            group = state.find_group(group_id)
            if group is None:
                raise NotFound(f"No group with id '{group_id}'")
            if any(g.id != group_id and g.name.lower() == name.lower() for g in state.groups):
                raise DuplicateName(f"Group '{name}' already exists")
            group.name = name
        self._mutate(project_id, apply)

    def set_group_colors(self, project_id: str, group_id: str, color: str = "", bg_color: str = "") -> None:
        def apply(state: ProjectState):
            group = state.find_group(group_id)
            if group is None:
                raise NotFound(f"No group with id '{group_id}'")
            group.color = color
            group.bg_color = bg_color
        self._mutate(project_id, apply)

    def toggle_group_collapsed(self, project_id: str, group_id: str) -> bool:
        def apply(state: ProjectState) -> bool:
            group = state.find_group(group_id)
            if group is None:
                raise NotFound(f"No group with id '{group_id}'")
            group.collapsed = not group.collapsed
            return group.collapsed
        return self._mutate(project_id, apply)

    def delete_group(self, project_id: str, group_id: str) -> None:
        """Delete a group; its members become ungrouped."""
        def apply(state: ProjectState):
            group = state.find_group(group_id)
            if group is None:
                raise NotFound(f"No group with id '{group_id}'")
            state.groups.remove(group)
            for inst in state.instances:
                if inst.group_id == group_id:
                    inst.group_id = ""
        self._mutate(project_id, apply)

    def assign_to_group(self, project_id: str, instance_id: str, group_id: Optional[str]) -> None:
        """Move an instance into a group, or out of any group with None."""
        def apply(state: ProjectState):
            inst = state.find_instance(instance_id)
            if inst is None:
                raise NotFound(f"No instance with id '{instance_id}'")
            target = None
            if group_id:
                target = state.find_group(group_id)
                if target is None:
                    raise NotFound(f"No group with id '{group_id}'")
            for group in state.groups:
                if instance_id in group.member_ids:
                    group.member_ids.remove(instance_id)
            inst.group_id = group_id or ""
            if target is not None:
                target.member_ids.append(instance_id)
        self._mutate(project_id, apply)

    def import_project(self, from_project_id: str, into_project_id: str) -> int:
        """Move every instance and group of one project into another.

        Groups merge by name. An instance whose id already exists in the
        target is left to the target's copy. Returns the number of instances
        moved. If the source cannot be emptied the target is restored, so an
        instance never ends up in both projects.
        """
        if from_project_id == into_project_id:
            raise InvariantViolation("Cannot import a project into itself")
        with self._lock:
            source = copy.deepcopy(self._state(from_project_id))
            if into_project_id != DEFAULT_PROJECT_ID:
                self.get_project(into_project_id)
            original_target = self._state(into_project_id)
            target = copy.deepcopy(original_target)

            group_map: Dict[str, str] = {}
            for group in source.groups:
                existing = next(
                    (g for g in target.groups if g.name.lower() == group.name.lower()), None
                )
                if existing is None:
                    existing = Group(
                        id=new_group_id(), name=group.name, project_id=into_project_id,
                        collapsed=group.collapsed, color=group.color, bg_color=group.bg_color,
                    )
                    target.groups.append(existing)
                group_map[group.id] = existing.id
            moved = 0
            for inst in source.instances:
                if target.find_instance(inst.id) is not None:
                    logger.warning("Session %s already in '%s'; not imported", inst.id, into_project_id)
                    continue
                inst.project_id = into_project_id
                inst.group_id = group_map.get(inst.group_id, "")
                target.instances.append(inst)
                if inst.group_id:
                    target.find_group(inst.group_id).member_ids.append(inst.id)
                moved += 1

            emptied = ProjectState(settings=source.settings)
            target_file = self.paths.sessions_file(into_project_id)
            atomic_write_json(target_file, target.to_dict())
            try:
                atomic_write_json(self.paths.sessions_file(from_project_id), emptied.to_dict())
            except StoreIOError:
                logger.error("Import from '%s' failed; restoring '%s'", from_project_id, into_project_id)
                atomic_write_json(target_file, original_target.to_dict())
                raise
            self._states[into_project_id] = target
            self._states[from_project_id] = emptied
            logger.info("Imported %d sessions from '%s' into '%s'", moved, from_project_id, into_project_id)
            return moved

    # ── Snapshots ─────────────────────────────────────────────────────

    def write_snapshot(self, instance_id: str, revision: str) -> None:
        atomic_write_text(self.paths.snapshot_file(instance_id), revision + "\n")

    def read_snapshot(self, instance_id: str) -> Optional[str]:
        path = self.paths.snapshot_file(instance_id)
        try:
            return path.read_text().strip() or None
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIOError(f"Failed to read {path}: {e}") from e

    def remove_snapshot(self, instance_id: str) -> None:
        try:
            self.paths.snapshot_file(instance_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreIOError(f"Failed to remove snapshot for {instance_id}: {e}") from e

    # ── Project locks ─────────────────────────────────────────────────

    def acquire_project_lock(self, project_id: str) -> None:
        """Claim a project for this process; stale locks are reclaimed."""
        path = self.paths.lock_file(project_id)
        own_pid = os.getpid()
        try:
            holder = int(path.read_text().strip() or "0")
        except FileNotFoundError:
            holder = 0
        except (OSError, ValueError):
            holder = 0
        if holder and holder != own_pid and _pid_alive(holder):
            raise ProjectLocked(project_id, holder)
        if holder and holder != own_pid:
            logger.info("Reclaiming stale lock for project '%s' from pid %d", project_id, holder)
        atomic_write_text(path, f"{own_pid}\n")

    def release_project_lock(self, project_id: str) -> None:
        path = self.paths.lock_file(project_id)
        try:
            if int(path.read_text().strip() or "0") == os.getpid():
                path.unlink()
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning("Could not release lock %s: %s", path, e)
