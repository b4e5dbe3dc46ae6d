"""
Controller: the single owner of runtime state.

All user commands and periodic ticks run on one worker thread, taken from
one ordered queue, so commands against an instance execute in submission
order and a tick never lands between a command and its effects. Blocking
multiplexer and git calls are fanned out to a small thread pool; their
results are reconciled back on the worker before anything is published.

The presentation layer reads state through get_snapshot() and is told
about changes through subscribe(); callbacks fire only when something
visible changed.

Shutdown stops ticking and leaves sessions running: tmux keeps them alive
for the next start.
"""

import copy
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .activity import EMPTY_TEASER
from .agent_profiles import AgentProfile, get_profile
from .diff_engine import DiffEngine, DiffResult
from .exceptions import (
    AsmgrError,
    CommandTimeout,
    MultiplexerError,
    MultiplexerUnavailable,
    NotFound,
    ParseError,
    SoftError,
    StoreIOError,
)
from .history_index import HistoryIndex, SearchMatch
from .history_parsers import ConversationEntry, ConversationMessage, terminal_capture_entries
from .implementations import RealSubprocess
from .instance import AttachInstruction, Instance, LiveWindow
from .logging_config import get_logger, get_structured_logger
from .models import Group, InstanceRecord, UISettings, Window
from .protocols import MultiplexerInterface, SubprocessInterface, WindowInfo
from .settings import SESSION_PREFIX, TIMING
from .status_constants import (
    ACTIVITY_IDLE,
    AGENT_TERMINAL,
    DIFF_MODE_FULL,
    DIFF_MODE_SESSION,
)
from .status_patterns import CapturedLine, strip_ansi
from .store import Store

logger = get_logger("controller")
command_log = get_structured_logger("controller.commands")

PREVIEW_TAB_PREVIEW = "preview"
PREVIEW_TAB_DIFF = "diff"
PREVIEW_TAB_NOTES = "notes"
PREVIEW_TABS = (PREVIEW_TAB_PREVIEW, PREVIEW_TAB_DIFF, PREVIEW_TAB_NOTES)

# Scrollback indexed per terminal tab when search opens
TERMINAL_HISTORY_LINES = 2000

Callback = Callable[["ControllerSnapshot"], None]


@dataclass
class ControllerSnapshot:
    """A consistent, immutable-by-convention view for the presentation layer."""
    project_id: str = ""
    instances: List[InstanceRecord] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    activities: Dict[str, str] = field(default_factory=dict)
    teasers: Dict[str, CapturedLine] = field(default_factory=dict)
    selected_id: Optional[str] = None
    preview: str = ""
    preview_tab: str = PREVIEW_TAB_PREVIEW
    diff: Optional[DiffResult] = None
    diff_mode: str = DIFF_MODE_FULL
    last_error: Optional[str] = None
    version: int = 0

    def find(self, instance_id: str) -> Optional[InstanceRecord]:
        for inst in self.instances:
            if inst.id == instance_id:
                return inst
        return None

    def visible_key(self) -> Tuple:
        """Everything a subscriber can see; version excluded."""
        return (
            self.project_id,
            tuple(
                (i.id, i.name, i.status, i.group_id, i.notes, i.color, i.bg_color,
                 i.favorite, i.full_row_color,
                 tuple((w.index, w.name, w.agent, w.dead, w.notes) for w in i.windows))
                for i in self.instances
            ),
            tuple((g.id, g.name, g.collapsed, g.color, g.bg_color, tuple(g.member_ids))
                  for g in self.groups),
            tuple(sorted(self.activities.items())),
            tuple(sorted((k, v.raw) for k, v in self.teasers.items())),
            self.selected_id,
            self.preview,
            self.preview_tab,
            (self.diff.added, self.diff.removed, self.diff.content, self.diff.error,
             self.diff.note) if self.diff else None,
            self.diff_mode,
            self.last_error,
        )


@dataclass
class _Observation:
    """What one instance's fan-out capture saw this tick."""
    instance_id: str
    windows: List[WindowInfo]
    active_index: int
    capture: str
    width: int = 80


class Controller:
    """Owns instances, the tick loop and the command queue."""

    def __init__(
        self,
        store: Store,
        tmux: MultiplexerInterface,
        diff_engine: Optional[DiffEngine] = None,
        runner: Optional[SubprocessInterface] = None,
        tick_interval: float = TIMING.tick_interval,
        pool_size: int = TIMING.worker_pool_size,
        profile_lookup: Callable[[str], AgentProfile] = get_profile,
        history_index: Optional[HistoryIndex] = None,
        check_commands: bool = True,
        missed_ticks_to_stop: int = TIMING.missed_ticks_to_stop,
    ):
        self.store = store
        self.tmux = tmux
        self.runner = runner or RealSubprocess()
        self.diff_engine = diff_engine or DiffEngine(self.runner)
        self.tick_interval = tick_interval
        self.profile_lookup = profile_lookup
        self.history_index = history_index or HistoryIndex()
        self.check_commands = check_commands
        self.missed_ticks_to_stop = missed_ticks_to_stop

        self.project_id = ""
        self._owns_lock = False
        self._instances: Dict[str, Instance] = {}
        self._order: List[str] = []
        self._groups: List[Group] = []

        self._activities: Dict[str, str] = {}
        self._fingerprints: Dict[Tuple[str, int], str] = {}
        self._missed: Dict[str, int] = {}
        self._selected_id: Optional[str] = None
        self._preview = ""
        self._preview_tab = PREVIEW_TAB_PREVIEW
        self._diff: Optional[DiffResult] = None
        self._diff_mode = DIFF_MODE_FULL
        self._last_diff_at = 0.0
        self._pane_width = 80
        self._last_error: Optional[Tuple[str, str]] = None

        self._snapshot = ControllerSnapshot()
        self._published_key: Tuple = self._snapshot.visible_key()
        self._snapshot_lock = threading.Lock()
        self._subscribers: List[Callback] = []

        self._queue: "queue.Queue[Optional[Tuple[Callable, tuple, dict, Future]]]" = queue.Queue()
        self._pool = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="asmgr-io")
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ── Thread & queue ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the worker thread that runs commands and ticks."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="asmgr-controller", daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop ticking and release the project. Sessions keep running."""
        if self._thread is not None:
            self._stop_event.set()
            self._queue.put(None)
            self._thread.join(timeout)
            self._thread = None
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._release_lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None

    def _on_worker(self) -> bool:
        return self._thread is None or threading.current_thread() is self._thread

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Queue a command behind everything submitted before it."""
        future: Future = Future()
        if self._on_worker():
            self._execute(fn, args, kwargs, future)
        else:
            self._queue.put((fn, args, kwargs, future))
        return future

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run a command on the worker and wait for its result."""
        return self.submit(fn, *args, **kwargs).result()

    @staticmethod
    def _execute(fn: Callable, args: tuple, kwargs: dict, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)

    def _drain(self) -> bool:
        """Run every queued command. Returns False once shutdown is queued."""
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return True
            if item is None:
                return False
            self._execute(*item)

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            timeout = max(0.0, next_tick - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = ()
            if item is None:
                break
            if item:
                self._execute(*item)
            if time.monotonic() < next_tick:
                continue
            # Commands submitted before this tick run first
            if not self._drain():
                break
            try:
                self.tick()
            except Exception:
                logger.exception("Tick failed")
            next_tick = time.monotonic() + self.tick_interval

    # ── Errors ────────────────────────────────────────────────────────

    def _command(self, kind: str, fn: Callable, *args, **kwargs) -> Any:
        """Run a façade command on the worker, maintaining the error slot."""

        def run():
            try:
                result = fn(*args, **kwargs)
            except SoftError:
                raise
            except AsmgrError as e:
                command_log.error("Command failed", command=kind,
                                  project=self.project_id or "default", error=e)
                self._last_error = (kind, str(e))
                self._publish()
                raise
            if self._last_error and self._last_error[0] == kind:
                self._last_error = None
            self._publish()
            return result

        return self.call(run)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error[1] if self._last_error else None

    def clear_error(self) -> None:
        def run():
            self._last_error = None
            self._publish()
        self.call(run)

    # ── Projects ──────────────────────────────────────────────────────

    def _release_lock(self) -> None:
        if self._owns_lock:
            self.store.release_project_lock(self.project_id)
            self._owns_lock = False

    def open_project(self, project_id: Optional[str] = None, lock: bool = True) -> None:
        """Load a project's instances; a corrupt file is set aside."""
        def run():
            target = self.store.get_active_project() if project_id is None else project_id
            self.store.get_project(target)
            if lock:
                self.store.acquire_project_lock(target)
            if target != self.project_id or not lock:
                self._release_lock()
            self._owns_lock = lock or (self._owns_lock and target == self.project_id)
            self.project_id = target
            try:
                records, groups = self.store.load_all(target)
            except ParseError as e:
                backup = self.store.start_empty(target)
                self._last_error = ("load", f"Corrupt project file moved to {backup}: {e.reason}")
                records, groups = [], []
            self._instances = {r.id: self._wrap(r) for r in records}
            self._order = [r.id for r in records]
            self._groups = groups
            self._activities.clear()
            self._fingerprints.clear()
            self._missed.clear()
            settings = self.store.get_settings(target)
            self._selected_id = settings.marked_session_id if settings.marked_session_id in self._instances else (
                self._order[0] if self._order else None)
            self._preview = ""
            self._diff = None
            self.history_index.set_instances(records)
            logger.info("Opened project %r with %d sessions", target, len(records))
            self._publish()

        self.call(run)

    def switch_project(self, project_id: str) -> None:
        self._command("switch_project", self._switch_project, project_id)

    def _switch_project(self, project_id: str) -> None:
        self.open_project(project_id)
        self.store.set_active_project(project_id)

    def _wrap(self, record: InstanceRecord) -> Instance:
        return Instance(
            record, self.tmux, self.store,
            diff_engine=self.diff_engine, runner=self.runner,
            profile_lookup=self.profile_lookup, check_commands=self.check_commands,
        )

    def _refresh_groups(self) -> None:
        records, groups = self.store.load_all(self.project_id)
        self._groups = groups
        by_id = {r.id: r for r in records}
        for inst_id, inst in self._instances.items():
            if inst_id in by_id:
                inst.record.group_id = by_id[inst_id].group_id
        self._order = [r.id for r in records]

    # ── Snapshot & subscriptions ──────────────────────────────────────

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register for change notifications. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def get_snapshot(self) -> ControllerSnapshot:
        """A private copy of the last published state."""
        with self._snapshot_lock:
            return copy.deepcopy(self._snapshot)

    def _build_snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            project_id=self.project_id,
            instances=[copy.deepcopy(self._instances[i].record) for i in self._order if i in self._instances],
            groups=copy.deepcopy(self._groups),
            activities=dict(self._activities),
            teasers={i: inst.teaser for i, inst in self._instances.items()},
            selected_id=self._selected_id,
            preview=self._preview,
            preview_tab=self._preview_tab,
            diff=self._diff,
            diff_mode=self._diff_mode,
            last_error=self.last_error,
        )

    def _publish(self) -> bool:
        """Swap in a new snapshot and notify, only if something visible changed."""
        candidate = self._build_snapshot()
        key = candidate.visible_key()
        with self._snapshot_lock:
            if key == self._published_key:
                return False
            candidate.version = self._snapshot.version + 1
            self._snapshot = candidate
            self._published_key = key
        for callback in list(self._subscribers):
            try:
                callback(copy.deepcopy(candidate))
            except Exception:
                logger.exception("Subscriber failed")
        return True

    # ── Tick ──────────────────────────────────────────────────────────

    def _observe(self, inst: Instance) -> Optional[_Observation]:
        """Pool worker: list windows and capture the active one."""
        try:
            windows = self.tmux.list_windows(inst.session_name)
            active = next((w.index for w in windows if w.active), 0)
            capture = self.tmux.capture_pane(inst.session_name, active, TIMING.teaser_lines)
        except (CommandTimeout, MultiplexerError, MultiplexerUnavailable, NotFound) as e:
            logger.debug("Skipping %s this tick: %s", inst.id, e)
            return None
        return _Observation(inst.id, windows, active, capture)

    def _capture_preview(self, inst: Instance) -> Optional[str]:
        try:
            return inst.get_preview(TIMING.preview_lines)
        except (CommandTimeout, MultiplexerError, MultiplexerUnavailable, NotFound,
                SoftError) as e:
            logger.debug("No preview for %s this tick: %s", inst.id, e)
            return None

    def _compute_diff(self, inst: Instance, mode: str) -> Optional[DiffResult]:
        try:
            return inst.get_diff(mode)
        except CommandTimeout as e:
            logger.debug("Diff timed out for %s: %s", inst.id, e)
            return None

    def tick(self) -> bool:
        """One observation pass. Runs on the worker; returns True if published."""
        try:
            live = set(self.tmux.list_sessions(SESSION_PREFIX))
        except (CommandTimeout, MultiplexerError) as e:
            logger.debug("Skipping tick: %s", e)
            return False
        except MultiplexerUnavailable as e:
            self._last_error = ("tick", str(e))
            return self._publish()
        if self._last_error and self._last_error[0] == "tick":
            self._last_error = None

        self._reconcile_status(live)

        running = [self._instances[i] for i in self._order
                   if i in self._instances and self._instances[i].is_running]
        observations = [self._pool.submit(self._observe, inst) for inst in running]

        selected = self._instances.get(self._selected_id) if self._selected_id else None
        preview_future = None
        diff_future = None
        if selected is not None and selected.is_running:
            preview_future = self._pool.submit(self._capture_preview, selected)
        now = time.monotonic()
        if (selected is not None and self._preview_tab == PREVIEW_TAB_DIFF
                and now - self._last_diff_at >= TIMING.diff_refresh_interval):
            diff_future = self._pool.submit(self._compute_diff, selected, self._diff_mode)

        for future in observations:
            observation = future.result()
            if observation is not None:
                self._apply_observation(observation)

        if preview_future is not None:
            preview = preview_future.result()
            if preview is not None:
                self._preview = preview
        elif selected is not None and not selected.is_running:
            self._preview = ""
        if diff_future is not None:
            diff = diff_future.result()
            if diff is not None:
                self._diff = diff
                self._last_diff_at = now
        return self._publish()

    def _reconcile_status(self, live: set) -> None:
        for inst_id in list(self._order):
            inst = self._instances.get(inst_id)
            if inst is None:
                continue
            present = inst.session_name in live
            try:
                if present:
                    self._missed[inst_id] = 0
                    if not inst.is_running:
                        logger.info("Session %s found alive, marking running", inst_id)
                        inst.mark_running()
                elif inst.is_running:
                    missed = self._missed.get(inst_id, 0) + 1
                    self._missed[inst_id] = missed
                    if missed >= self.missed_ticks_to_stop:
                        logger.info("Session %s is gone, marking stopped", inst_id)
                        inst.mark_stopped()
                        self._activities.pop(inst_id, None)
                        inst.teaser = EMPTY_TEASER
                        self._missed[inst_id] = 0
            except StoreIOError as e:
                self._last_error = ("store", str(e))

    def _apply_observation(self, observation: _Observation) -> None:
        inst = self._instances.get(observation.instance_id)
        if inst is None or not inst.is_running:
            return
        try:
            inst.apply_window_states(observation.windows)
        except StoreIOError as e:
            self._last_error = ("store", str(e))
        key = (inst.id, observation.active_index)
        result = inst.classifier_for(observation.active_index).classify(
            observation.capture, self._fingerprints.get(key), self._pane_width,
        )
        self._fingerprints[key] = result.fingerprint
        self._activities[inst.id] = result.activity
        inst.teaser = result.teaser

    # ── Lookup ────────────────────────────────────────────────────────

    def _get(self, instance_id: str) -> Instance:
        inst = self._instances.get(instance_id)
        if inst is None:
            raise NotFound(f"No session with id '{instance_id}'")
        return inst

    def get_instance(self, instance_id: str) -> Instance:
        return self.call(self._get, instance_id)

    def find_by_name(self, name: str) -> Optional[InstanceRecord]:
        """First instance whose name or id matches (CLI convenience)."""
        for inst_id in self._order:
            record = self._instances[inst_id].record
            if name in (record.name, record.id):
                return copy.deepcopy(record)
        return None

    def activity_of(self, instance_id: str) -> str:
        return self._activities.get(instance_id, ACTIVITY_IDLE)

    # ── Instance commands ─────────────────────────────────────────────

    def create_instance(self, name: str, path: str, agent: str, start: bool = False,
                        **kwargs) -> InstanceRecord:
        def run() -> InstanceRecord:
            inst = Instance.create(
                name, path, agent, self.tmux, self.store,
                project_id=self.project_id,
                diff_engine=self.diff_engine, runner=self.runner,
                profile_lookup=self.profile_lookup, check_commands=self.check_commands,
                **kwargs,
            )
            self._instances[inst.id] = inst
            self._order.append(inst.id)
            if inst.record.group_id:
                self._refresh_groups()
            self.history_index.set_instances(self._records())
            if self._selected_id is None:
                self._selected_id = inst.id
            if start:
                inst.start()
            return copy.deepcopy(inst.record)
        return self._command("create", run)

    def _records(self) -> List[InstanceRecord]:
        return [self._instances[i].record for i in self._order]

    def start_instance(self, instance_id: str, resume_id: Optional[str] = None) -> None:
        def run():
            self._get(instance_id).start_with_resume(resume_id)
            self._missed.pop(instance_id, None)
        self._command("start", run)

    def stop_instance(self, instance_id: str) -> None:
        def run():
            self._get(instance_id).stop()
            self._activities.pop(instance_id, None)
            self._instances[instance_id].teaser = EMPTY_TEASER
        self._command("stop", run)

    def delete_instance(self, instance_id: str, kill: bool = True) -> None:
        def run():
            inst = self._get(instance_id)
            if kill:
                inst.stop()
            self.store.remove_instance(self.project_id, instance_id)
            del self._instances[instance_id]
            self._order.remove(instance_id)
            self._activities.pop(instance_id, None)
            self._refresh_groups()
            if self._selected_id == instance_id:
                self._selected_id = self._order[0] if self._order else None
                self._preview = ""
                self._diff = None
            self.history_index.set_instances(self._records())
        self._command("delete", run)

    def attach(self, instance_id: str, window_index: Optional[int] = None) -> AttachInstruction:
        return self._command("attach", lambda: self._get(instance_id).attach(window_index))

    def add_window(self, instance_id: str, kind: str, name: str = "", **kwargs) -> Window:
        return self._command("window", lambda: self._get(instance_id).add_window(kind, name, **kwargs))

    def close_window(self, instance_id: str, index: int) -> None:
        self._command("window", lambda: self._get(instance_id).close_window(index))

    def rename_window(self, instance_id: str, index: int, new_name: str) -> None:
        self._command("window", lambda: self._get(instance_id).rename_window(index, new_name))

    def restart_window(self, instance_id: str, index: int) -> None:
        self._command("window", lambda: self._get(instance_id).restart_window(index))

    def follow_window(self, instance_id: str, index: int, kind: str, name: str = "") -> Window:
        return self._command("window", lambda: self._get(instance_id).follow_window(index, kind, name))

    def unfollow_window(self, instance_id: str, index: int) -> None:
        self._command("window", lambda: self._get(instance_id).unfollow_window(index))

    def list_live_windows(self, instance_id: str) -> List[LiveWindow]:
        return self._command("window", lambda: self._get(instance_id).list_live_windows())

    def send_prompt(self, instance_id: str, text: str, window_index: int = 0) -> None:
        self._command("send", lambda: self._get(instance_id).send_prompt(window_index, text))

    def send_key(self, instance_id: str, key: str, window_index: int = 0) -> None:
        self._command("send", lambda: self._get(instance_id).send_key(window_index, key))

    def accept_suggestion(self, instance_id: str, window_index: int = 0) -> str:
        """Send the agent's own suggested prompt, if any. Returns it."""
        def run() -> str:
            inst = self._get(instance_id)
            suggestion = inst.get_suggestion(window_index)
            if suggestion:
                inst.send_prompt(window_index, suggestion)
            return suggestion
        return self._command("send", run)

    def fork(self, instance_id: str, new_name: str, as_tab: bool = False):
        def run():
            result = self._get(instance_id).fork(new_name, as_tab)
            if isinstance(result, Instance):
                self._instances[result.id] = result
                self._order.append(result.id)
                self._refresh_groups()
                self.history_index.set_instances(self._records())
                return copy.deepcopy(result.record)
            return result
        return self._command("fork", run)

    def get_preview(self, instance_id: str, lines: int = TIMING.preview_lines) -> str:
        return self._command("preview", lambda: self._get(instance_id).get_preview(lines))

    def get_last_line(self, instance_id: str) -> CapturedLine:
        return self.call(lambda: self._get(instance_id).get_last_line())

    def resize_pane(self, instance_id: str, cols: int, rows: int) -> None:
        def run():
            self._pane_width = max(20, cols)
            self._get(instance_id).resize_pane(cols, rows)
        self._command("resize", run)

    def detect_activity(self, instance_id: str, window_index: int = 0):
        def run():
            inst = self._get(instance_id)
            key = (instance_id, window_index)
            result = inst.detect_activity_for_window(window_index, self._fingerprints.get(key),
                                                     self._pane_width)
            self._fingerprints[key] = result.fingerprint
            return result
        return self._command("activity", run)

    def get_diff(self, instance_id: str, mode: Optional[str] = None) -> DiffResult:
        return self._command("diff", lambda: self._get(instance_id).get_diff(mode or self._diff_mode))

    def list_resume_candidates(self, instance_id: str):
        return self.call(lambda: self._get(instance_id).list_resume_candidates())

    def rename_instance(self, instance_id: str, new_name: str) -> None:
        self._command("edit", lambda: self._get(instance_id).rename(new_name))

    def set_notes(self, instance_id: str, notes: str, window_index: Optional[int] = None) -> None:
        self._command("edit", lambda: self._get(instance_id).set_notes(notes, window_index))

    def set_colors(self, instance_id: str, color: str = "", bg_color: str = "",
                   full_row: bool = False) -> None:
        self._command("edit", lambda: self._get(instance_id).set_colors(color, bg_color, full_row))

    def toggle_favorite(self, instance_id: str) -> bool:
        return self._command("edit", lambda: self._get(instance_id).toggle_favorite())

    # ── Selection & view state ────────────────────────────────────────

    def select(self, instance_id: Optional[str]) -> None:
        def run():
            if instance_id is not None:
                self._get(instance_id)
            if instance_id != self._selected_id:
                self._selected_id = instance_id
                self._preview = ""
                self._diff = None
                self._last_diff_at = 0.0
            self._publish()
        self.call(run)

    def set_preview_tab(self, tab: str) -> None:
        if tab not in PREVIEW_TABS:
            raise ValueError(f"Unknown preview tab '{tab}'")

        def run():
            self._preview_tab = tab
            self._last_diff_at = 0.0
            self._publish()
        self.call(run)

    def set_diff_mode(self, mode: str) -> None:
        if mode not in (DIFF_MODE_FULL, DIFF_MODE_SESSION):
            raise ValueError(f"Unknown diff mode '{mode}'")

        def run():
            self._diff_mode = mode
            self._last_diff_at = 0.0
            self._publish()
        self.call(run)

    def save_settings(self, settings: UISettings) -> None:
        self._command("settings", self.store.save_settings, self.project_id, settings)

    def get_settings(self) -> UISettings:
        return self.store.get_settings(self.project_id)

    # ── Groups ────────────────────────────────────────────────────────

    def _group_command(self, fn: Callable, *args) -> Any:
        def run():
            result = fn(self.project_id, *args)
            self._refresh_groups()
            return result
        return self._command("group", run)

    def create_group(self, name: str) -> Group:
        return self._group_command(self.store.create_group, name)

    def rename_group(self, group_id: str, name: str) -> None:
        self._group_command(self.store.rename_group, group_id, name)

    def delete_group(self, group_id: str) -> None:
        self._group_command(self.store.delete_group, group_id)

    def toggle_group_collapsed(self, group_id: str) -> bool:
        return self._group_command(self.store.toggle_group_collapsed, group_id)

    def set_group_colors(self, group_id: str, color: str = "", bg_color: str = "") -> None:
        self._group_command(self.store.set_group_colors, group_id, color, bg_color)

    def assign_to_group(self, instance_id: str, group_id: Optional[str]) -> None:
        self._group_command(self.store.assign_to_group, instance_id, group_id)

    def reorder_instances(self, ids: List[str]) -> None:
        self._group_command(self.store.reorder_instances, ids)

    # ── Search ────────────────────────────────────────────────────────

    def _terminal_entries(self) -> List[ConversationEntry]:
        entries: List[ConversationEntry] = []
        now = datetime.now(timezone.utc)
        for inst in list(self._instances.values()):
            if not inst.is_running:
                continue
            for window in inst.record.windows:
                if window.agent != AGENT_TERMINAL or window.dead:
                    continue
                try:
                    capture = self.tmux.capture_pane(inst.session_name, window.index,
                                                     TERMINAL_HISTORY_LINES)
                except (CommandTimeout, MultiplexerError, MultiplexerUnavailable, NotFound) as e:
                    logger.debug("No scrollback for %s:%d: %s", inst.id, window.index, e)
                    continue
                entries.extend(terminal_capture_entries(
                    strip_ansi(capture), inst.id, window.index, inst.record.path, now,
                    source=f"tmux:{inst.session_name}:{window.index}",
                ))
        return entries

    def build_history_index(self) -> int:
        """(Re)build the search index. Blocking; call from a background worker."""
        records, terminal = self.call(lambda: (copy.deepcopy(self._records()), self._terminal_entries()))
        return self.history_index.build(records, terminal)

    def search(self, query: str, limit: Optional[int] = None) -> List[SearchMatch]:
        return self.history_index.search(query, limit)

    def load_conversation(self, entry: ConversationEntry) -> List[ConversationMessage]:
        """Full conversation behind a search match. Reads files; off the UI thread."""
        return self.history_index.load_conversation(entry)
