"""
Centralized settings for asmgr.

Filesystem layout and timing constants live here so every component agrees
on them. Paths are resolved on each access so tests can isolate state with
the ASMGR_CONFIG_DIR environment variable after import.

State layout under the config root:

    projects.json             project manifest
    active_project            id of the last opened project
    sessions-<project>.json   instances, groups, ui settings of one project
    snapshots/<instance id>   git revision recorded at session start
    locks/<project>.lock      pid of the process that owns the project
    config.yaml               user configuration
    logs/asmgr.log            TUI log file
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_CONFIG_ROOT = Path.home() / ".config" / "agent-session-manager"

# Prefix for derived tmux session names
SESSION_PREFIX = "asmgr-"

# Default project has the empty id and is stored in sessions-default.json
DEFAULT_PROJECT_ID = ""
DEFAULT_PROJECT_FILE_KEY = "default"


class Paths:
    """Resolved state paths. An explicit root wins over the environment."""

    def __init__(self, root: Optional[Path] = None):
        self._root = Path(root) if root is not None else None

    @property
    def root(self) -> Path:
        if self._root is not None:
            return self._root
        override = os.environ.get("ASMGR_CONFIG_DIR")
        return Path(override) if override else DEFAULT_CONFIG_ROOT

    @property
    def projects_file(self) -> Path:
        return self.root / "projects.json"

    @property
    def active_project_file(self) -> Path:
        return self.root / "active_project"

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    @property
    def config_file(self) -> Path:
        return self.root / "config.yaml"

    @property
    def log_dir(self) -> Path:
        return self.root / "logs"

    def sessions_file(self, project_id: str) -> Path:
        key = project_id or DEFAULT_PROJECT_FILE_KEY
        return self.root / f"sessions-{key}.json"

    def snapshot_file(self, instance_id: str) -> Path:
        return self.snapshots_dir / instance_id

    def lock_file(self, project_id: str) -> Path:
        key = project_id or DEFAULT_PROJECT_FILE_KEY
        return self.locks_dir / f"{key}.lock"


PATHS = Paths()


@dataclass(frozen=True)
class Timing:
    """Polling cadence and external-command deadlines (seconds)."""
    tick_interval: float = 0.1
    capture_timeout: float = 2.0
    list_timeout: float = 2.0
    diff_timeout: float = 10.0
    fork_timeout: float = 30.0
    # Consecutive ticks with has-session false before Running -> Stopped
    missed_ticks_to_stop: int = 3
    preview_lines: int = 100
    teaser_lines: int = 50
    worker_pool_size: int = 4
    # Diff is expensive; refresh the selected instance at most this often
    diff_refresh_interval: float = 2.0


TIMING = Timing()

# Default size for detached sessions before any client attaches
DEFAULT_COLS = 200
DEFAULT_ROWS = 50
HISTORY_LIMIT = 50000


def tmux_socket_name() -> Optional[str]:
    """Socket name for an isolated tmux server (tests), or None for default."""
    return os.environ.get("ASMGR_TMUX_SOCKET") or None
