"""
Protocol definitions for external dependencies.

These interfaces allow dependency injection for testing, enabling us to
swap real implementations (subprocess calls to tmux and git) with mock
implementations in tests.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable


@dataclass
class CommandResult:
    """Outcome of one external command."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class WindowInfo:
    """A window as reported by the multiplexer."""
    index: int
    name: str
    active: bool = False
    dead: bool = False


@runtime_checkable
class SubprocessInterface(Protocol):
    """Interface for running external commands with a deadline."""

    def run(self, cmd: List[str], timeout: Optional[float] = None,
            cwd: Optional[str] = None) -> CommandResult:
        """Run a command to completion.

        Args:
            cmd: command and arguments
            timeout: seconds before the child is killed
            cwd: working directory for the child

        Returns:
            CommandResult with decoded stdout/stderr

        Raises:
            CommandTimeout: the deadline passed and the child was killed
            FileNotFoundError: the executable does not exist
        """
        ...


@runtime_checkable
class MultiplexerInterface(Protocol):
    """Interface for terminal-multiplexer operations.

    All calls are synchronous. Implementations raise MultiplexerUnavailable
    when the binary cannot run, MultiplexerError on failure, NotFound when
    an operation needs a session or window that does not exist, and
    CommandTimeout when the deadline passes.
    """

    def has_session(self, name: str) -> bool:
        ...

    def new_session(self, name: str, cmd: List[str], cwd: str,
                    cols: int, rows: int, window_name: Optional[str] = None) -> None:
        """Launch a detached session running cmd (a shell when empty)."""
        ...

    def kill_session(self, name: str) -> None:
        """Kill a session. Missing sessions are not an error."""
        ...

    def list_sessions(self, prefix: str = "") -> List[str]:
        ...

    def list_windows(self, name: str) -> List[WindowInfo]:
        ...

    def new_window(self, name: str, window_name: str, cmd: List[str], cwd: str) -> int:
        """Append a window and return the index the multiplexer assigned."""
        ...

    def kill_window(self, name: str, index: int) -> None:
        """Kill a window. Missing windows are not an error."""
        ...

    def rename_window(self, name: str, index: int, window_name: str) -> None:
        ...

    def select_window(self, name: str, index: int) -> None:
        ...

    def respawn_window(self, name: str, index: int, cmd: List[str], cwd: str) -> None:
        """Restart a window's process in place."""
        ...

    def send_keys(self, name: str, index: int, text: str) -> None:
        """Type literal text followed by Enter."""
        ...

    def send_key(self, name: str, index: int, key: str) -> None:
        """Send one symbolic key such as 'Escape' or 'C-c'."""
        ...

    def capture_pane(self, name: str, index: int, lines: int) -> str:
        """Return the last `lines` lines of a window, ANSI preserved."""
        ...

    def resize_pane(self, name: str, cols: int, rows: int) -> None:
        ...

    def bind_detach(self, name: str, key_seq: str, cmd: str) -> None:
        """Bind key_seq to cmd while the named session is the active one."""
        ...

    def set_option(self, name: str, option: str, value: str,
                   index: Optional[int] = None) -> None:
        """Set a session option, or a window option when index is given."""
        ...

    def attach_command(self, name: str) -> List[str]:
        """argv that attaches the user's terminal to the session."""
        ...
