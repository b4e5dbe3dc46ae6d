"""
Persisted data model: projects, groups, instances and their windows.

Entities refer to each other by id only. Every record round-trips through
to_dict()/from_dict(); from_dict() ignores keys it does not know so files
written by newer versions still load.
"""

import re
import time
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .exceptions import ConfigError
from .settings import SESSION_PREFIX, DEFAULT_PROJECT_ID
from .status_constants import ALL_AGENTS, ALL_STATUSES, STATUS_STOPPED

_UNSAFE_ID_CHARS = re.compile(r"[^a-z0-9_-]+")


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def sanitize_name(name: str) -> str:
    """Lowercase a display name into something tmux and filenames accept."""
    cleaned = _UNSAFE_ID_CHARS.sub("_", name.strip().lower().replace(" ", "_"))
    return cleaned.strip("_") or "session"


def new_instance_id(agent: str, name: str) -> str:
    return f"{agent}_{sanitize_name(name)}_{time.time_ns()}"


def new_project_id(name: str) -> str:
    return f"proj_{sanitize_name(name)}_{time.time_ns()}"


def new_group_id() -> str:
    return f"grp_{time.time_ns()}"


def session_name_for(instance_id: str) -> str:
    """Derived tmux session name of an instance."""
    return f"{SESSION_PREFIX}{instance_id}"


def _known_kwargs(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Project:
    id: str
    name: str
    created_at: str = field(default_factory=now_iso)
    color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        data = dict(data)
        # Older manifests used camelCase
        if "createdAt" in data and "created_at" not in data:
            data["created_at"] = data.pop("createdAt")
        return cls(**_known_kwargs(cls, data))


@dataclass
class Group:
    id: str
    name: str
    project_id: str = DEFAULT_PROJECT_ID
    member_ids: List[str] = field(default_factory=list)
    collapsed: bool = False
    color: str = ""
    bg_color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Group":
        group = cls(**_known_kwargs(cls, data))
        group.member_ids = list(group.member_ids or [])
        return group


@dataclass
class Window:
    """A tmux window (tab) the manager tracks. Index 0 is the primary agent."""
    index: int
    name: str
    agent: str
    custom_command: str = ""
    auto_approve: bool = False
    resume_id: str = ""
    notes: str = ""
    dead: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Window":
        window = cls(**_known_kwargs(cls, data))
        if window.agent not in ALL_AGENTS:
            raise ConfigError(f"Unknown agent kind '{window.agent}' in window {window.index}")
        window.index = int(window.index)
        return window


@dataclass
class InstanceRecord:
    """Persisted state of one managed session."""
    id: str
    name: str
    path: str
    agent: str
    project_id: str = DEFAULT_PROJECT_ID
    group_id: str = ""
    custom_command: str = ""
    auto_approve: bool = False
    resume_id: str = ""
    status: str = STATUS_STOPPED
    base_revision: str = ""
    notes: str = ""
    color: str = ""
    bg_color: str = ""
    full_row_color: bool = False
    favorite: bool = False
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    windows: List[Window] = field(default_factory=list)

    def __post_init__(self):
        if not self.windows:
            self.windows = [self._primary_window()]

    def _primary_window(self) -> Window:
        return Window(
            index=0,
            name=self.agent,
            agent=self.agent,
            custom_command=self.custom_command,
            auto_approve=self.auto_approve,
            resume_id=self.resume_id,
        )

    @property
    def session_name(self) -> str:
        return session_name_for(self.id)

    @property
    def is_running(self) -> bool:
        return self.status != STATUS_STOPPED

    def touch(self) -> None:
        self.updated_at = now_iso()

    def get_window(self, index: int) -> Optional[Window]:
        for window in self.windows:
            if window.index == index:
                return window
        return None

    def primary_window(self) -> Window:
        window = self.get_window(0)
        if window is None:
            window = self._primary_window()
            self.windows.insert(0, window)
        return window

    def validate(self) -> None:
        """Raise ConfigError if the record breaks the window invariants."""
        if self.agent not in ALL_AGENTS:
            raise ConfigError(f"Unknown agent kind '{self.agent}' for instance {self.id}")
        if self.status not in ALL_STATUSES:
            raise ConfigError(f"Unknown status '{self.status}' for instance {self.id}")
        indices = [w.index for w in self.windows]
        if len(indices) != len(set(indices)):
            raise ConfigError(f"Duplicate window index in instance {self.id}")
        primary = self.get_window(0)
        if primary is None or primary.agent != self.agent:
            raise ConfigError(f"Instance {self.id} has no primary window for {self.agent}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["windows"] = [w.to_dict() for w in self.windows]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstanceRecord":
        kwargs = _known_kwargs(cls, data)
        kwargs["windows"] = [Window.from_dict(w) for w in data.get("windows") or []]
        record = cls(**kwargs)
        record.validate()
        return record


@dataclass
class UISettings:
    """Per-project presentation state saved with the project file."""
    compact_list: bool = False
    hide_status_lines: bool = False
    split_view: bool = False
    marked_session_id: str = ""
    cursor: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UISettings":
        return cls(**_known_kwargs(cls, data or {}))
