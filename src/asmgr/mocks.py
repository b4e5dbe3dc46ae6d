"""
In-memory implementations of the protocol interfaces for tests.

MockTmux models sessions and windows closely enough that Instance and
Controller logic can be exercised without a tmux server. MockSubprocess
replays canned CommandResults keyed on argv prefixes.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import CommandTimeout, MultiplexerError, MultiplexerUnavailable, NotFound
from .protocols import CommandResult, WindowInfo


@dataclass
class MockWindow:
    name: str
    cmd: List[str] = field(default_factory=list)
    cwd: str = ""
    content: str = ""
    dead: bool = False
    options: Dict[str, str] = field(default_factory=dict)


@dataclass
class MockSession:
    cwd: str
    cols: int = 200
    rows: int = 50
    windows: Dict[int, MockWindow] = field(default_factory=dict)
    active: int = 0
    options: Dict[str, str] = field(default_factory=dict)


class MockTmux:
    """Mock implementation of MultiplexerInterface."""

    def __init__(self):
        self.sessions: Dict[str, MockSession] = {}
        self.sent_keys: List[Tuple[str, int, str]] = []
        self.sent_special: List[Tuple[str, int, str]] = []
        self.bindings: Dict[str, Tuple[str, str]] = {}
        self.capture_calls: int = 0
        # Test hooks
        self.available = True
        self.fail_new_session: Optional[str] = None
        self.timeout_captures = False

    def _ensure_available(self) -> None:
        if not self.available:
            raise MultiplexerUnavailable("tmux not found")

    def _session(self, name: str) -> MockSession:
        self._ensure_available()
        session = self.sessions.get(name)
        if session is None:
            raise NotFound(f"can't find session: {name}")
        return session

    def _window(self, name: str, index: int) -> MockWindow:
        session = self._session(name)
        window = session.windows.get(index)
        if window is None:
            raise NotFound(f"can't find window: {name}:{index}")
        return window

    # ── Test helpers ──────────────────────────────────────────────────

    def set_pane_content(self, name: str, index: int, content: str) -> None:
        if name not in self.sessions:
            self.sessions[name] = MockSession(cwd="/")
        session = self.sessions[name]
        if index not in session.windows:
            session.windows[index] = MockWindow(name=f"win{index}")
        session.windows[index].content = content

    def mark_dead(self, name: str, index: int) -> None:
        self._window(name, index).dead = True

    def add_external_window(self, name: str, window_name: str) -> int:
        """Simulate a window the user opened from inside tmux."""
        session = self._session(name)
        index = max(session.windows, default=-1) + 1
        session.windows[index] = MockWindow(name=window_name)
        return index

    # ── MultiplexerInterface ──────────────────────────────────────────

    def has_session(self, name: str) -> bool:
        self._ensure_available()
        return name in self.sessions

    def new_session(self, name: str, cmd: List[str], cwd: str,
                    cols: int, rows: int, window_name: Optional[str] = None) -> None:
        self._ensure_available()
        if self.fail_new_session is not None:
            raise MultiplexerError("Failed to create session", self.fail_new_session)
        if name in self.sessions:
            raise MultiplexerError("Failed to create session", f"duplicate session: {name}")
        self.sessions[name] = MockSession(
            cwd=cwd, cols=cols, rows=rows,
            windows={0: MockWindow(name=window_name or "shell", cmd=list(cmd), cwd=cwd)},
        )

    def kill_session(self, name: str) -> None:
        self._ensure_available()
        self.sessions.pop(name, None)

    def list_sessions(self, prefix: str = "") -> List[str]:
        self._ensure_available()
        return sorted(n for n in self.sessions if n.startswith(prefix))

    def list_windows(self, name: str) -> List[WindowInfo]:
        session = self._session(name)
        return [
            WindowInfo(index=i, name=w.name, active=i == session.active, dead=w.dead)
            for i, w in sorted(session.windows.items())
        ]

    def new_window(self, name: str, window_name: str, cmd: List[str], cwd: str) -> int:
        session = self._session(name)
        index = max(session.windows, default=-1) + 1
        session.windows[index] = MockWindow(name=window_name, cmd=list(cmd), cwd=cwd)
        return index

    def kill_window(self, name: str, index: int) -> None:
        self._ensure_available()
        session = self.sessions.get(name)
        if session is not None:
            session.windows.pop(index, None)
            if not session.windows:
                del self.sessions[name]

    def rename_window(self, name: str, index: int, window_name: str) -> None:
        self._window(name, index).name = window_name

    def select_window(self, name: str, index: int) -> None:
        self._window(name, index)
        self.sessions[name].active = index

    def respawn_window(self, name: str, index: int, cmd: List[str], cwd: str) -> None:
        window = self._window(name, index)
        window.cmd = list(cmd)
        window.cwd = cwd
        window.dead = False

    def send_keys(self, name: str, index: int, text: str) -> None:
        self._window(name, index)
        self.sent_keys.append((name, index, text))

    def send_key(self, name: str, index: int, key: str) -> None:
        self._window(name, index)
        self.sent_special.append((name, index, key))

    def capture_pane(self, name: str, index: int, lines: int) -> str:
        self.capture_calls += 1
        if self.timeout_captures:
            raise CommandTimeout(["tmux", "capture-pane"], 2.0)
        content = self._window(name, index).content
        if not content:
            return ""
        return "\n".join(content.split("\n")[-lines:])

    def resize_pane(self, name: str, cols: int, rows: int) -> None:
        session = self._session(name)
        session.cols = cols
        session.rows = rows

    def bind_detach(self, name: str, key_seq: str, cmd: str) -> None:
        self._session(name)
        self.bindings[name] = (key_seq, cmd)

    def set_option(self, name: str, option: str, value: str,
                   index: Optional[int] = None) -> None:
        if index is None:
            self._session(name).options[option] = value
        else:
            self._window(name, index).options[option] = value

    def attach_command(self, name: str) -> List[str]:
        return ["tmux", "attach-session", "-t", f"={name}"]


class MockSubprocess:
    """Mock implementation of SubprocessInterface.

    Responses are matched by the longest registered argv prefix; unmatched
    commands succeed with empty output. Every call is recorded.
    """

    def __init__(self):
        self.calls: List[Tuple[List[str], Optional[str]]] = []
        self._responses: List[Tuple[List[str], Callable[[List[str]], CommandResult]]] = []

    def respond(self, prefix: List[str], stdout: str = "", stderr: str = "",
                returncode: int = 0) -> None:
        result = CommandResult(returncode, stdout, stderr)
        self._responses.append((list(prefix), lambda _cmd: result))

    def respond_with(self, prefix: List[str], fn: Callable[[List[str]], CommandResult]) -> None:
        self._responses.append((list(prefix), fn))

    def run(self, cmd: List[str], timeout: Optional[float] = None,
            cwd: Optional[str] = None) -> CommandResult:
        self.calls.append((list(cmd), cwd))
        best = None
        for prefix, fn in self._responses:
            if cmd[:len(prefix)] == prefix and (best is None or len(prefix) >= len(best[0])):
                best = (prefix, fn)
        if best is None:
            return CommandResult(0, "", "")
        return best[1](cmd)
