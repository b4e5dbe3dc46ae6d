"""
Instance: one managed session and its lifecycle.

An Instance composes the persisted InstanceRecord with the multiplexer, the
agent profile and the diff engine. Lifecycle:

    Stopped --start()--> Running --stop() / session gone--> Stopped

Every change to the record is applied to a copy, written through the Store,
and only then adopted, so a failed write leaves the instance as it was.
Instances are driven from the Controller's worker thread only.
"""

import copy
import json
import os
from dataclasses import dataclass
from typing import Callable, List, Optional

from .activity import ActivityClassifier, ActivityResult, EMPTY_TEASER
from .agent_profiles import AgentProfile, get_profile
from .diff_engine import EMPTY_TREE, DiffEngine, DiffResult
from .exceptions import (
    CommandTimeout,
    ConfigError,
    InvariantViolation,
    MultiplexerError,
    NotFound,
    NotRunning,
    VCSError,
)
from .implementations import RealSubprocess
from .logging_config import get_logger
from .models import InstanceRecord, Window, new_instance_id
from .protocols import MultiplexerInterface, SubprocessInterface, WindowInfo
from .settings import DEFAULT_COLS, DEFAULT_ROWS, HISTORY_LIMIT, TIMING
from .status_constants import (
    AGENT_CLAUDE,
    DIFF_MODE_FULL,
    STATUS_RUNNING,
    STATUS_STOPPED,
)
from .status_patterns import CapturedLine, split_capture
from .store import Store

logger = get_logger("instance")

DETACH_KEY = "C-q"
DETACH_COMMAND = "detach-client"
FORK_NOTE = "Forked session"


@dataclass
class AttachInstruction:
    """What the presentation layer runs in the foreground to attach."""
    argv: List[str]
    session_name: str
    window_index: int = 0


@dataclass
class LiveWindow:
    """A multiplexer window merged with its persisted record, if any."""
    index: int
    name: str
    active: bool
    dead: bool
    followed: bool
    agent: str = ""


def resolve_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


class Instance:
    """A session entity bound to its collaborators."""

    def __init__(
        self,
        record: InstanceRecord,
        tmux: MultiplexerInterface,
        store: Store,
        diff_engine: Optional[DiffEngine] = None,
        runner: Optional[SubprocessInterface] = None,
        profile_lookup: Callable[[str], AgentProfile] = get_profile,
        check_commands: bool = True,
    ):
        self.record = record
        self.tmux = tmux
        self.store = store
        self.diff_engine = diff_engine or DiffEngine(runner)
        self.runner = runner or RealSubprocess()
        self.profile_lookup = profile_lookup
        self.check_commands = check_commands
        self.teaser: CapturedLine = EMPTY_TEASER

    @classmethod
    def create(
        cls,
        name: str,
        path: str,
        agent: str,
        tmux: MultiplexerInterface,
        store: Store,
        project_id: str = "",
        custom_command: str = "",
        auto_approve: bool = False,
        resume_id: str = "",
        group_id: str = "",
        **kwargs,
    ) -> "Instance":
        """Validate inputs, persist a Stopped record, return its Instance."""
        name = name.strip()
        if not name:
            raise ConfigError("Session name cannot be empty")
        profile_lookup = kwargs.get("profile_lookup", get_profile)
        profile = profile_lookup(agent)
        path = resolve_path(path)
        if not os.path.isdir(path):
            raise ConfigError(f"Directory does not exist: {path}")
        if profile.build_argv is not None:
            # Custom agents fail early without a command
            profile.argv(path, None, auto_approve, custom_command)
        record = InstanceRecord(
            id=new_instance_id(agent, name),
            name=name,
            path=path,
            agent=agent,
            project_id=project_id,
            group_id=group_id,
            custom_command=custom_command,
            auto_approve=auto_approve and profile.supports_auto_approve,
            resume_id=resume_id if profile.supports_resume else "",
        )
        store.add_instance(record)
        logger.info("Created %s session %s at %s", agent, record.id, path)
        return cls(record, tmux, store, **kwargs)

    # ── Record helpers ────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def session_name(self) -> str:
        return self.record.session_name

    @property
    def is_running(self) -> bool:
        return self.record.status == STATUS_RUNNING

    @property
    def profile(self) -> AgentProfile:
        return self.profile_lookup(self.record.agent)

    def _commit(self, mutate: Callable[[InstanceRecord], object]):
        draft = copy.deepcopy(self.record)
        result = mutate(draft)
        draft.touch()
        self.store.update_instance(draft)
        self.record = draft
        return result

    def _require_running(self) -> None:
        if not self.is_running:
            raise NotRunning(f"Session '{self.name}' is not running")

    def _window(self, index: int, record: Optional[InstanceRecord] = None) -> Window:
        window = (record or self.record).get_window(index)
        if window is None:
            raise NotFound(f"Session '{self.name}' has no window {index}")
        return window

    def _window_argv(self, window: Window) -> List[str]:
        profile = self.profile_lookup(window.agent)
        if self.check_commands:
            profile.check_installed(window.custom_command)
        return profile.argv(
            self.record.path,
            window.resume_id or None,
            window.auto_approve,
            window.custom_command or None,
        )

    def _configure_window(self, index: int) -> None:
        for option, value in (("remain-on-exit", "on"), ("automatic-rename", "off")):
            try:
                self.tmux.set_option(self.session_name, option, value, index=index)
            except (MultiplexerError, NotFound) as e:
                logger.warning("Could not set %s on %s:%d: %s", option, self.session_name, index, e)

    def _configure_session(self) -> None:
        name = self.session_name
        for option, value in (
            ("history-limit", str(HISTORY_LIMIT)),
            ("mouse", "on"),
            ("window-size", "latest"),
        ):
            try:
                self.tmux.set_option(name, option, value)
            except (MultiplexerError, NotFound) as e:
                logger.warning("Could not set %s on %s: %s", option, name, e)
        self._configure_window(0)
        try:
            self.tmux.bind_detach(name, DETACH_KEY, DETACH_COMMAND)
        except (MultiplexerError, NotFound) as e:
            logger.warning("Could not bind detach key for %s: %s", name, e)

    def _record_snapshot(self, record: InstanceRecord) -> None:
        try:
            revision = self.diff_engine.current_revision(record.path) or EMPTY_TREE
        except (VCSError, CommandTimeout) as e:
            logger.info("No snapshot for %s: %s", record.id, e)
            return
        self.store.write_snapshot(record.id, revision)
        record.base_revision = revision

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> None:
        self.start_with_resume(None)

    def start_with_resume(self, resume_id: Optional[str]) -> None:
        """Launch the session; a no-op when it is already running."""
        if self.is_running and self.tmux.has_session(self.session_name):
            return

        def launch(record: InstanceRecord) -> None:
            primary = record.primary_window()
            if resume_id:
                record.resume_id = resume_id
                primary.resume_id = resume_id
            if not self.tmux.has_session(self.session_name):
                self.tmux.new_session(
                    self.session_name,
                    self._window_argv(primary),
                    record.path,
                    DEFAULT_COLS,
                    DEFAULT_ROWS,
                    window_name=primary.name,
                )
                self._configure_session()
                self._restore_tabs(record)
            else:
                logger.info("Adopting existing tmux session %s", self.session_name)
            self._record_snapshot(record)
            record.status = STATUS_RUNNING
            primary.dead = False

        self._commit(launch)
        logger.info("Started session %s", self.id)

    def _restore_tabs(self, record: InstanceRecord) -> None:
        """Recreate persisted tabs in a fresh session; indices follow tmux."""
        tabs = sorted((w for w in record.windows if w.index != 0), key=lambda w: w.index)
        for window in tabs:
            try:
                window.index = self.tmux.new_window(
                    self.session_name, window.name, self._window_argv(window), record.path,
                )
                window.dead = False
                self._configure_window(window.index)
            except (MultiplexerError, NotFound, ConfigError) as e:
                logger.warning("Could not restore tab %s of %s: %s", window.name, record.id, e)
                window.dead = True
        record.windows.sort(key=lambda w: w.index)

    def stop(self) -> None:
        """Kill the session. Idempotent."""
        self.tmux.kill_session(self.session_name)
        if self.is_running or any(not w.dead for w in self.record.windows):
            self._commit(self._mark_stopped)
            logger.info("Stopped session %s", self.id)

    @staticmethod
    def _mark_stopped(record: InstanceRecord) -> None:
        record.status = STATUS_STOPPED
        for window in record.windows:
            window.dead = True

    def mark_stopped(self) -> None:
        """Controller: the multiplexer no longer reports this session."""
        self._commit(self._mark_stopped)

    def mark_running(self) -> None:
        """Controller: the session exists although the record said Stopped.

        Adoption counts as a start, so session diffs get a fresh baseline.
        """
        def apply(record: InstanceRecord) -> None:
            self._record_snapshot(record)
            record.status = STATUS_RUNNING
        self._commit(apply)

    def attach(self, window_index: Optional[int] = None) -> AttachInstruction:
        self._require_running()
        if window_index is not None:
            self.tmux.select_window(self.session_name, window_index)
        return AttachInstruction(
            argv=self.tmux.attach_command(self.session_name),
            session_name=self.session_name,
            window_index=window_index or 0,
        )

    # ── Windows ───────────────────────────────────────────────────────

    def add_window(self, kind: str, name: str = "", custom_command: str = "",
                   auto_approve: bool = False, resume_id: str = "",
                   notes: str = "") -> Window:
        self._require_running()
        profile = self.profile_lookup(kind)
        window = Window(
            index=-1,
            name=name.strip() or kind,
            agent=kind,
            custom_command=custom_command,
            auto_approve=auto_approve and profile.supports_auto_approve,
            resume_id=resume_id if profile.supports_resume else "",
            notes=notes,
        )
        argv = self._window_argv(window)
        window.index = self.tmux.new_window(self.session_name, window.name, argv, self.record.path)
        self._configure_window(window.index)

        def apply(record: InstanceRecord) -> None:
            if record.get_window(window.index) is not None:
                # tmux reused an index of a tab we still remembered
                record.windows = [w for w in record.windows if w.index != window.index]
            record.windows.append(window)
            record.windows.sort(key=lambda w: w.index)
        self._commit(apply)
        logger.info("Added %s tab %d to %s", kind, window.index, self.id)
        return copy.deepcopy(window)

    def close_window(self, index: int) -> None:
        if index == 0:
            raise InvariantViolation("The primary window cannot be closed")
        self._window(index)
        if self.is_running:
            self.tmux.kill_window(self.session_name, index)

        def apply(record: InstanceRecord) -> None:
            record.windows = [w for w in record.windows if w.index != index]
        self._commit(apply)

    def rename_window(self, index: int, new_name: str) -> None:
        new_name = new_name.strip()
        if not new_name:
            raise InvariantViolation("Window name cannot be empty")
        self._window(index)
        if self.is_running:
            self.tmux.rename_window(self.session_name, index, new_name)

        def apply(record: InstanceRecord) -> None:
            self._window(index, record).name = new_name
        self._commit(apply)

    def restart_window(self, index: int) -> None:
        """Respawn a window's process in place (dead tab or wedged agent)."""
        self._require_running()
        window = self._window(index)
        self.tmux.respawn_window(self.session_name, index, self._window_argv(window), self.record.path)

        def apply(record: InstanceRecord) -> None:
            self._window(index, record).dead = False
        self._commit(apply)

    def follow_window(self, index: int, kind: str, name: str = "") -> Window:
        """Adopt a window opened outside the manager."""
        self._require_running()
        live = {w.index: w for w in self.tmux.list_windows(self.session_name)}
        if index not in live:
            raise NotFound(f"Session '{self.name}' has no window {index}")
        if self.record.get_window(index) is not None:
            return copy.deepcopy(self._window(index))
        self.profile_lookup(kind)
        window = Window(index=index, name=name.strip() or live[index].name, agent=kind,
                        dead=live[index].dead)

        def apply(record: InstanceRecord) -> None:
            record.windows.append(window)
            record.windows.sort(key=lambda w: w.index)
        self._commit(apply)
        return copy.deepcopy(window)

    def unfollow_window(self, index: int) -> None:
        if index == 0:
            raise InvariantViolation("The primary window is always tracked")
        self._window(index)

        def apply(record: InstanceRecord) -> None:
            record.windows = [w for w in record.windows if w.index != index]
        self._commit(apply)

    def list_live_windows(self) -> List[LiveWindow]:
        """Multiplexer windows merged with persisted records."""
        if not self.is_running:
            return [
                LiveWindow(w.index, w.name, False, True, True, w.agent)
                for w in self.record.windows
            ]
        result = []
        for info in self.tmux.list_windows(self.session_name):
            window = self.record.get_window(info.index)
            result.append(LiveWindow(
                index=info.index,
                name=window.name if window else info.name,
                active=info.active,
                dead=info.dead,
                followed=window is not None,
                agent=window.agent if window else "",
            ))
        return result

    def apply_window_states(self, live: List[WindowInfo]) -> bool:
        """Controller: sync dead flags from a list-windows result."""
        by_index = {w.index: w for w in live}
        changes = {}
        for window in self.record.windows:
            info = by_index.get(window.index)
            dead = info.dead if info is not None else True
            if dead != window.dead:
                changes[window.index] = dead
        if not changes:
            return False

        def apply(record: InstanceRecord) -> None:
            for index, dead in changes.items():
                self._window(index, record).dead = dead
        self._commit(apply)
        return True

    # ── Input / output ────────────────────────────────────────────────

    def send_prompt(self, index: int, text: str) -> None:
        self._require_running()
        self._window(index)
        self.tmux.send_keys(self.session_name, index, text)

    def send_key(self, index: int, key: str) -> None:
        self._require_running()
        self.tmux.send_key(self.session_name, index, key)

    def active_window_index(self) -> int:
        if not self.is_running:
            return 0
        for info in self.tmux.list_windows(self.session_name):
            if info.active:
                return info.index
        return 0

    def get_preview(self, lines: int = TIMING.preview_lines,
                    window_index: Optional[int] = None) -> str:
        self._require_running()
        index = self.active_window_index() if window_index is None else window_index
        return self.tmux.capture_pane(self.session_name, index, lines)

    def get_last_line(self) -> CapturedLine:
        return self.teaser

    def resize_pane(self, cols: int, rows: int) -> None:
        self._require_running()
        self.tmux.resize_pane(self.session_name, cols, rows)

    def classifier_for(self, index: int) -> ActivityClassifier:
        window = self.record.get_window(index)
        profile = self.profile_lookup(window.agent if window else self.record.agent)
        return ActivityClassifier(profile.filters, profile.waiting_markers)

    def detect_activity_for_window(self, index: int,
                                   previous_fingerprint: Optional[str] = None,
                                   width: int = 80) -> ActivityResult:
        self._require_running()
        capture = self.tmux.capture_pane(self.session_name, index, TIMING.teaser_lines)
        return self.classifier_for(index).classify(capture, previous_fingerprint, width)

    def get_suggestion(self, index: int = 0) -> str:
        """The agent's ghost-text prompt suggestion, if it shows one."""
        if not self.is_running:
            return ""
        window = self._window(index)
        capture = self.tmux.capture_pane(self.session_name, index, 30)
        return self.profile_lookup(window.agent).extract_suggestion(split_capture(capture))

    def get_diff(self, mode: str = DIFF_MODE_FULL) -> DiffResult:
        base = self.record.base_revision or self.store.read_snapshot(self.id)
        return self.diff_engine.diff(self.record.path, mode, base)

    def list_resume_candidates(self):
        return self.profile.list_conversations(self.record.path)

    # ── Metadata ──────────────────────────────────────────────────────

    def rename(self, new_name: str) -> None:
        new_name = new_name.strip()
        if not new_name:
            raise InvariantViolation("Session name cannot be empty")

        def apply(record: InstanceRecord) -> None:
            record.name = new_name
        self._commit(apply)

    def set_notes(self, notes: str, window_index: Optional[int] = None) -> None:
        def apply(record: InstanceRecord) -> None:
            if window_index is None:
                record.notes = notes
            else:
                self._window(window_index, record).notes = notes
        self._commit(apply)

    def set_colors(self, color: str = "", bg_color: str = "", full_row: bool = False) -> None:
        def apply(record: InstanceRecord) -> None:
            record.color = color
            record.bg_color = bg_color
            record.full_row_color = full_row
        self._commit(apply)

    def toggle_favorite(self) -> bool:
        def apply(record: InstanceRecord) -> bool:
            record.favorite = not record.favorite
            return record.favorite
        return self._commit(apply)

    # ── Fork ──────────────────────────────────────────────────────────

    def _fork_conversation(self, resume_id: str) -> str:
        """Ask Claude for a forked copy of a conversation; '' on failure."""
        profile = self.profile_lookup(AGENT_CLAUDE)
        argv = [profile.command, "--resume", resume_id, "--fork-session",
                "--output-format", "json", "-p", "."]
        try:
            result = self.runner.run(argv, timeout=TIMING.fork_timeout, cwd=self.record.path)
        except FileNotFoundError as e:
            logger.warning("Cannot fork conversation %s: %s", resume_id, e)
            return ""
        if not result.ok:
            logger.warning("Fork of %s failed: %s", resume_id, result.stderr.strip())
            return ""
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("Unexpected fork output for %s", resume_id)
            return ""
        return data.get("session_id", "") if isinstance(data, dict) else ""

    def _fork_resume_id(self) -> str:
        if self.record.agent != AGENT_CLAUDE:
            return ""
        source = self.record.resume_id
        if not source:
            candidates = self.profile.list_conversations(self.record.path)
            source = candidates[0].session_id if candidates else ""
        return self._fork_conversation(source) if source else ""

    def fork(self, new_name: str, as_tab: bool = False):
        """Clone this session.

        As a tab: a new window of this session running a forked
        conversation; it shares the session-start snapshot. Otherwise a new
        Stopped sibling Instance with the same path and agent settings.
        Returns the new Window or Instance.
        """
        new_name = new_name.strip() or f"{self.name}-fork"
        resume_id = self._fork_resume_id()
        if as_tab:
            return self.add_window(
                self.record.agent,
                new_name,
                custom_command=self.record.custom_command,
                auto_approve=self.record.auto_approve,
                resume_id=resume_id,
                notes=FORK_NOTE,
            )
        record = InstanceRecord(
            id=new_instance_id(self.record.agent, new_name),
            name=new_name,
            path=self.record.path,
            agent=self.record.agent,
            project_id=self.record.project_id,
            group_id=self.record.group_id,
            custom_command=self.record.custom_command,
            auto_approve=self.record.auto_approve,
            resume_id=resume_id,
            notes=f"Forked from {self.name}",
            color=self.record.color,
            bg_color=self.record.bg_color,
        )
        self.store.add_instance(record)
        return Instance(
            record, self.tmux, self.store,
            diff_engine=self.diff_engine, runner=self.runner,
            profile_lookup=self.profile_lookup, check_commands=self.check_commands,
        )
